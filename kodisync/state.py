import asyncio
import logging
import time
from typing import Optional
from .config import settings
from .clients.kodi_client import KodiClient, KodiError
from .models import (
    UNKNOWN, CurrentItem, DriftReason, ExpectedPaused, ExpectedPlaying,
    ExpectedState, PeerSnapshot, PlaybackProperties,
)

logger = logging.getLogger(__name__)

def now_ms() -> int:
    return int(time.time() * 1000)

async def wait_ms(ms: float):
    await asyncio.sleep(max(0, ms) / 1000.0)

def format_ms(stamp: int) -> str:
    """Human readable [h]MM:SS.mmm for log lines."""
    stamp = int(stamp)
    ms = stamp % 1000
    s = (stamp // 1000) % 60
    m = (stamp // 1000 // 60) % 60
    h = stamp // 1000 // 60 // 60
    return (f"{h}h" if h > 0 else "") + f"{m:02d}:{s:02d}.{ms:03d}"

class Peer:
    """
    Local model of one Kodi instance: what it last reported plus the state we
    expect it to be in after the last command we sent it.

    The expected state only ever changes as a result of pause/play/seek issued
    from here, or gets dropped back to unknown. Passive reads never set it.
    """

    def __init__(self, address: str, client=None):
        self.address = address
        self.client = client or KodiClient(address)
        self.player_id: Optional[int] = None
        self.current_item: Optional[CurrentItem] = None
        self.speed: int = 0
        self.position: int = 0
        self.duration: int = 0
        self.last_query_time: int = 0
        self.expected: ExpectedState = UNKNOWN
        self.prior_expected: Optional[ExpectedState] = None
        self.available = False
        self.last_error: Optional[str] = None

    @property
    def has_baseline(self) -> bool:
        return self.expected.state != "unknown"

    def _fail(self, action: str, error: Exception):
        logger.error(f"{action} failed on {self.address}: {error}")
        self.last_error = str(error)
        self.available = False
        self.expected = UNKNOWN

    def _apply_properties(self, props: PlaybackProperties):
        self.speed = props.speed
        self.position = props.position_ms
        self.duration = props.duration_ms

    async def refresh(self) -> bool:
        """Find the active video player and, if there is one, read what it's playing and where."""
        try:
            self.player_id = await self.client.get_active_player()
        except KodiError as e:
            self.player_id = None
            self._fail("Player lookup", e)
            return False

        if self.player_id is None:
            # Nothing to sync against
            self.available = True
            self.last_error = None
            self.current_item = None
            self.expected = UNKNOWN
            return True

        self.last_query_time = now_ms()
        item, props = await asyncio.gather(
            self.client.get_current_item(self.player_id),
            self.client.get_playback_properties(self.player_id),
            return_exceptions=True
        )
        for result in (item, props):
            if isinstance(result, KodiError):
                self.player_id = None
                self._fail("Status refresh", result)
                return False
            if isinstance(result, BaseException):
                raise result

        if self.current_item is not None and item != self.current_item and self.has_baseline:
            logger.info(f"{self.address} changed video to {item.title or item.label}")
            self.expected = UNKNOWN
        self.current_item = item
        self._apply_properties(props)
        self.available = True
        self.last_error = None
        return True

    async def refresh_playback(self) -> bool:
        try:
            self.last_query_time = now_ms()
            props = await self.client.get_playback_properties(self.player_id)
        except KodiError as e:
            self._fail("Playback refresh", e)
            return False
        self._apply_properties(props)
        return True

    async def pause(self) -> bool:
        try:
            await self.client.set_pause(self.player_id, True)
        except KodiError as e:
            self._fail("Pause", e)
            return False
        self.speed = 0
        self.expected = ExpectedPaused(position_ms=self.position)
        return True

    async def play(self) -> bool:
        try:
            self.speed = await self.client.set_pause(self.player_id, False)
        except KodiError as e:
            self._fail("Play", e)
            return False
        self.expected = ExpectedPlaying(position_ms=self.position, observed_at_ms=now_ms())
        return True

    async def seek(self, target: int) -> bool:
        if self.duration <= 0:
            self._fail("Seek", KodiError(f"unknown duration, cannot seek to {format_ms(target)}"))
            return False
        try:
            await self.client.seek(self.player_id, 100 * target / self.duration)
        except KodiError as e:
            self._fail("Seek", e)
            return False
        # Seeking isn't accurate and the new position isn't reported straight away
        await wait_ms(settings.SEEK_SETTLE_MS)
        if not await self.refresh_playback():
            return False
        if self.speed == 1:
            self.expected = ExpectedPlaying(position_ms=self.position, observed_at_ms=now_ms())
        else:
            self.expected = ExpectedPaused(position_ms=self.position)
        return True

    def mark_unsynced(self, reason: DriftReason, expected_position: Optional[int] = None):
        if reason == DriftReason.NEWLY_PAUSED:
            logger.info(f"{self.address} is newly paused")
        elif reason == DriftReason.NEWLY_PLAYING:
            logger.info(f"{self.address} is newly playing")
        elif reason == DriftReason.SEEKED_WHILE_PAUSED:
            logger.info(f"{self.address} has seeked while paused from {format_ms(expected_position)} to {format_ms(self.position)}")
        elif reason == DriftReason.SEEKED_WHILE_PLAYING:
            logger.info(f"{self.address} has seeked while playing from ~{format_ms(expected_position)} to {format_ms(self.position)}")
        self.prior_expected = self.expected
        self.expected = UNKNOWN

    def now_playing(self) -> str:
        if self.last_error is not None:
            return f"unreachable ({self.last_error})"
        if self.player_id is None or self.current_item is None:
            return "not playing a video"
        item = self.current_item
        if item.showtitle and item.season is not None and item.episode is not None:
            return f'{item.showtitle} {item.season:02d}x{item.episode:02d}, "{item.title}"'
        return item.title or item.label or ""

    def snapshot(self) -> PeerSnapshot:
        playing = self.player_id is not None
        return PeerSnapshot(
            address=self.address,
            now_playing=self.now_playing(),
            available=self.available,
            speed=self.speed if playing else None,
            position_ms=self.position if playing else None,
            duration_ms=self.duration if playing else None,
            expected=self.expected,
        )
