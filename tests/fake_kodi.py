import json
import httpx
from typing import List, Optional, Set, Tuple
from kodisync.clients.kodi_client import KodiError
from kodisync.models import CurrentItem, PlaybackProperties

class FakeKodiClient:
    """In-memory stand-in for KodiClient that records every command."""

    def __init__(self, address: str, position: int = 0, speed: int = 0, duration: int = 3_600_000,
                 item: Optional[CurrentItem] = None, player_id: Optional[int] = 1, seek_offset: int = 0):
        self.address = address
        self.player_id = player_id
        self.item = item or CurrentItem(title="Big Buck Bunny", label="Big Buck Bunny", season=-1, episode=-1, showtitle="")
        self.speed = speed
        self.position = position
        self.duration = duration
        self.seek_offset = seek_offset  # Kodi seeks aren't exact
        self.failing: Set[str] = set()
        self.calls: List[Tuple] = []
        self.closed = False

    def _check(self, name: str):
        if name in self.failing:
            raise KodiError(f"{name} failed on {self.address}")

    async def get_active_player(self):
        self._check("get_active_player")
        return self.player_id

    async def get_current_item(self, player_id):
        self._check("get_current_item")
        return self.item.model_copy()

    async def get_playback_properties(self, player_id):
        self._check("get_playback_properties")
        return PlaybackProperties(speed=self.speed, position_ms=self.position, duration_ms=self.duration)

    async def set_pause(self, player_id, paused):
        self._check("set_pause")
        self.calls.append(("pause" if paused else "play",))
        self.speed = 0 if paused else 1
        return self.speed

    async def seek(self, player_id, percentage):
        self._check("seek")
        target = int(round(percentage * self.duration / 100))
        self.calls.append(("seek", target))
        self.position = target + self.seek_offset

    async def aclose(self):
        self.closed = True

def rpc_transport(results, requests=None):
    """MockTransport answering each JSON-RPC method from a dict of canned results."""
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if requests is not None:
            requests.append(body)
        result = results[body["method"]]
        if isinstance(result, httpx.Response):
            return result
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], **result})
    return httpx.MockTransport(handler)
