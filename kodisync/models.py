from enum import Enum
from pydantic import BaseModel, Field
from typing import Literal, Optional, Union

class CurrentItem(BaseModel):
    # Kodi reports -1 for season/episode and "" for showtitle on non-episodes
    showtitle: Optional[str] = None
    season: Optional[int] = None
    episode: Optional[int] = None
    title: Optional[str] = None
    label: Optional[str] = None

    def has_show_info(self) -> bool:
        return bool(self.showtitle) and self.season not in (None, -1) and self.episode not in (None, -1)

class PlaybackProperties(BaseModel):
    speed: int = 0  # 0 paused, 1 playing, anything else is seeking/scrubbing
    position_ms: int = 0
    duration_ms: int = 0

class ExpectedUnknown(BaseModel):
    state: Literal["unknown"] = "unknown"

class ExpectedPaused(BaseModel):
    state: Literal["pause"] = "pause"
    position_ms: int

class ExpectedPlaying(BaseModel):
    state: Literal["play"] = "play"
    position_ms: int
    observed_at_ms: int  # wall clock when playback was confirmed at position_ms

ExpectedState = Union[ExpectedUnknown, ExpectedPaused, ExpectedPlaying]

UNKNOWN = ExpectedUnknown()

class DriftReason(str, Enum):
    NO_BASELINE = "no_baseline"
    NEWLY_PAUSED = "newly_paused"
    SEEKED_WHILE_PAUSED = "seeked_while_paused"
    NEWLY_PLAYING = "newly_playing"
    SEEKED_WHILE_PLAYING = "seeked_while_playing"

class DriftVerdict(BaseModel):
    address: str
    synced: bool
    reason: Optional[DriftReason] = None
    # Where the peer should have been; only set for seeked_* reasons
    expected_position_ms: Optional[int] = None
    observed_position_ms: Optional[int] = None

class PeerSnapshot(BaseModel):
    """Read-only view of one peer for the status server."""
    address: str
    now_playing: str
    available: bool = True
    speed: Optional[int] = None
    position_ms: Optional[int] = None
    duration_ms: Optional[int] = None
    expected: ExpectedState = Field(default_factory=ExpectedUnknown, discriminator="state")
