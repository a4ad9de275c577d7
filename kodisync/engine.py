import asyncio
import logging
import time
from typing import Dict, List, Sequence
from .config import settings
from .models import CurrentItem, DriftReason, DriftVerdict, ExpectedPaused
from .state import Peer, format_ms, wait_ms

logger = logging.getLogger(__name__)

class InvariantViolation(RuntimeError):
    """The engine reached a state its own classification should have made impossible."""

def near_enough(value: int, target: int) -> bool:
    return abs(value - target) < settings.SYNC_THRESHOLD_MS

def items_match(a: CurrentItem, b: CurrentItem) -> bool:
    # Episodes are identified by show/season/episode when both sides have it,
    # titles can differ between scrapers so they're ignored in that case
    if a.has_show_info() and b.has_show_info():
        return a.showtitle == b.showtitle and a.season == b.season and a.episode == b.episode
    # Empty titles/labels (e.g. a stream with no metadata) don't count as a match
    return bool(a.title) and a.title == b.title or bool(a.label) and a.label == b.label

def content_matches(peers: Sequence[Peer]) -> bool:
    """Compares the reachable peers only; an unreachable one has nothing to compare."""
    present = [p for p in peers if p.available]
    if not present:
        return False
    if any(p.player_id is None or p.current_item is None for p in present):
        return False
    if len(present) < 2:
        return True
    reference = present[0].current_item
    return all(items_match(p.current_item, reference) for p in present[1:])

def earliest_position(peers: Sequence[Peer]) -> int:
    return min(p.position for p in peers)

class SyncEngine:
    def __init__(self, peers: List[Peer]):
        self.peers = peers

        # Observability only, read by the status server
        self.last_cycle_at: float = 0.0
        self.last_unsynced_count: int = 0
        self.content_match: bool = False
        self.full_resyncs: int = 0
        self.primary_syncs: int = 0

    def classify(self, peer: Peer) -> DriftVerdict:
        """
        Compares the peer's latest observation to its expected state.
        Doesn't touch the peer, so classifying the same snapshot twice gives the same answer.
        """
        expected = peer.expected
        if not peer.available or expected.state == "unknown":
            return DriftVerdict(address=peer.address, synced=False, reason=DriftReason.NO_BASELINE)

        if peer.speed == 0:
            if expected.state != "pause":
                return DriftVerdict(address=peer.address, synced=False, reason=DriftReason.NEWLY_PAUSED)
            if not near_enough(peer.position, expected.position_ms):
                return DriftVerdict(
                    address=peer.address, synced=False, reason=DriftReason.SEEKED_WHILE_PAUSED,
                    expected_position_ms=expected.position_ms, observed_position_ms=peer.position
                )
            return DriftVerdict(address=peer.address, synced=True)

        if peer.speed == 1:
            if expected.state != "play":
                return DriftVerdict(address=peer.address, synced=False, reason=DriftReason.NEWLY_PLAYING)
            # Where it should be if it's been playing undisturbed since we started it
            target = expected.position_ms + peer.last_query_time - expected.observed_at_ms
            if not near_enough(peer.position, target):
                return DriftVerdict(
                    address=peer.address, synced=False, reason=DriftReason.SEEKED_WHILE_PLAYING,
                    expected_position_ms=target, observed_position_ms=peer.position
                )
            return DriftVerdict(address=peer.address, synced=True)

        # Any other speed means it's mid-seek or scrubbing; judge it next time
        return DriftVerdict(address=peer.address, synced=True)

    def apply_verdicts(self, peers: Sequence[Peer]) -> List[Peer]:
        """Drops the baseline of every peer that drifted. Returns all unsynced peers."""
        unsynced = []
        for peer in peers:
            verdict = self.classify(peer)
            if verdict.synced:
                continue
            if peer.has_baseline:
                peer.mark_unsynced(verdict.reason, verdict.expected_position_ms)
            unsynced.append(peer)
        return unsynced

    async def full_resync(self, peers: Sequence[Peer]):
        """Pause everybody and seek to the earliest position."""
        logger.info("Syncing all together")
        self.full_resyncs += 1

        async def prepare(peer: Peer) -> bool:
            # Already paused peers are left alone so their position isn't disturbed
            if peer.speed != 0 and not await peer.pause():
                return False
            return await peer.refresh_playback()

        results = await asyncio.gather(*(prepare(p) for p in peers))
        ready = [p for p, ok in zip(peers, results) if ok]
        if not ready:
            logger.warning("No hosts could be paused, will retry")
            return

        target = earliest_position(ready)
        logger.info(f"Seeking all to {format_ms(target)}")
        await asyncio.gather(*(p.seek(target) for p in ready))
        logger.info("Ready")

    async def staggered_play(self, peers: Sequence[Peer], zero_point: int) -> Dict[str, int]:
        """
        Plays each peer after waiting for its position minus the zero point,
        so peers that are further ahead start later and all pass the zero point together.
        Returns the wait applied to each peer, keyed by address.
        """
        waits = {p.address: p.position - zero_point for p in peers}

        async def play_after(peer: Peer, wait_time: int):
            await wait_ms(wait_time)
            logger.info(f"Playing {peer.address} having waited {wait_time}ms")
            await peer.play()

        tasks = [asyncio.create_task(play_after(p, waits[p.address])) for p in peers]
        await asyncio.gather(*tasks)
        return waits

    async def sync_to_playing_primary(self, primary: Peer, secondaries: Sequence[Peer]):
        """Primary just started playing or seeked while playing: pause everyone, line up, stagger play."""
        logger.info("Pausing all to let everyone sync")
        everyone = [primary, *secondaries]
        paused = await asyncio.gather(*(p.pause() for p in everyone))
        if not paused[0] or not await primary.refresh_playback():
            logger.warning(f"Lost {primary.address} while pausing, will retry")
            return
        logger.info(f"primary is at {format_ms(primary.position)}")

        followers = [s for s, ok in zip(secondaries, paused[1:]) if ok]
        logger.info(f"Seeking others to {format_ms(primary.position)}")
        seeked = await asyncio.gather(*(s.seek(primary.position) for s in followers))
        participants = [primary] + [s for s, ok in zip(followers, seeked) if ok]

        zero_point = earliest_position(participants)
        logger.info("Staggering play commands to sync")
        await self.staggered_play(participants, zero_point)
        logger.info("Ready")

    async def sync_to_paused_primary(self, primary: Peer, secondaries: Sequence[Peer]):
        """Primary paused or seeked while paused: it defines the target, others follow."""
        target = primary.position
        primary.expected = ExpectedPaused(position_ms=target)

        async def follow(peer: Peer):
            logger.info(f"Pausing and seeking {peer.address} to {format_ms(target)}")
            if not await peer.pause():
                return
            if await peer.seek(target) and peer.speed == 0:
                peer.expected = ExpectedPaused(position_ms=target)

        await asyncio.gather(*(follow(s) for s in secondaries))
        logger.info("Ready")

    async def reconcile(self, unsynced: Sequence[Peer]) -> bool:
        """
        Picks and runs a correction for the unsynced peers. Unreachable peers
        count towards the choice but are left out of the commands; they rejoin
        once they answer again. Returns whether any commands were issued.
        """
        reachable = [p for p in unsynced if p.available]
        if not reachable:
            return False

        if len(unsynced) > 1:
            await self.full_resync([p for p in self.peers if p.available])
            return True

        primary = reachable[0]
        secondaries = [p for p in self.peers if p is not primary and p.available]
        self.primary_syncs += 1

        if primary.speed == 1:
            await self.sync_to_playing_primary(primary, secondaries)
        elif primary.speed == 0:
            await self.sync_to_paused_primary(primary, secondaries)
        else:
            raise InvariantViolation(
                f"Unexpected speed {primary.speed} on {primary.address}; "
                "only playing or paused hosts can be synced to"
            )
        return True

    async def run_cycle(self) -> int:
        """
        One poll: refresh every peer, check they're playing the same thing,
        classify drift and correct it. Returns how long to sleep before the next cycle in ms.
        """
        await asyncio.gather(*(p.refresh() for p in self.peers))
        self.last_cycle_at = time.time()

        self.content_match = content_matches(self.peers)
        if not self.content_match:
            summary = "\n".join(f"- {p.address}: {p.now_playing()}" for p in self.peers)
            logger.info(f"Not all hosts are playing the same thing.\n{summary}")
            return settings.MISMATCH_INTERVAL_MS

        unsynced = self.apply_verdicts(self.peers)
        self.last_unsynced_count = len(unsynced)
        if not await self.reconcile(unsynced):
            return settings.POLL_INTERVAL_MS
        return 0
