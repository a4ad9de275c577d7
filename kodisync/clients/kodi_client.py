import logging
import httpx
import itertools
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit
from ..config import settings
from ..models import CurrentItem, PlaybackProperties

logger = logging.getLogger(__name__)

KODI_DEFAULT_PORT = 8080

class KodiError(Exception):
    """Any failure talking to a Kodi instance: unreachable, bad response or JSON-RPC error."""

def build_url(address: str) -> str:
    """
    Turns a host string like "localhost" or "my.friends.server:1234" into a
    full JSON-RPC endpoint URL.
    """
    address = address.strip()
    if not address.lower().startswith(("http:", "https:")):
        address = f"http:{address}"
    # "http:host" is not parseable as a netloc, normalise to "http://host"
    scheme, _, rest = address.partition(":")
    if not rest.startswith("//"):
        rest = "//" + rest
    parts = urlsplit(f"{scheme}:{rest}")

    netloc = parts.netloc
    if parts.port is None:
        netloc = f"{netloc}:{KODI_DEFAULT_PORT}"
    path = parts.path if parts.path not in ("", "/") else "/jsonrpc"
    return urlunsplit((parts.scheme.lower(), netloc, path, parts.query, parts.fragment))

def time_to_ms(time: Dict[str, int]) -> int:
    return (
        time.get("hours", 0) * 60 * 60 * 1000
        + time.get("minutes", 0) * 60 * 1000
        + time.get("seconds", 0) * 1000
        + time.get("milliseconds", 0)
    )

class KodiClient:
    def __init__(self, address: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.address = address
        self.url = build_url(address)
        auth = None
        if settings.KODI_USERNAME and "@" not in urlsplit(self.url).netloc:
            auth = httpx.BasicAuth(settings.KODI_USERNAME, settings.KODI_PASSWORD or "")
        self.client = httpx.AsyncClient(
            auth=auth,
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
            transport=transport
        )
        self._ids = itertools.count(1)

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        payload = {"jsonrpc": "2.0", "method": method, "id": next(self._ids)}
        if params:
            payload["params"] = params
        try:
            resp = await self.client.post(self.url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise KodiError(f"{method} failed on {self.address}: {e}") from e
        except ValueError as e:
            raise KodiError(f"{method} on {self.address} returned invalid JSON") from e

        if not isinstance(data, dict):
            raise KodiError(f"{method} on {self.address} returned unexpected payload")
        if "error" in data:
            error = data["error"] or {}
            raise KodiError(f"{method} on {self.address} returned error {error.get('code')}: {error.get('message')}")
        if "result" not in data:
            raise KodiError(f"{method} on {self.address} returned no result")
        logger.debug(f"{self.address} {method} -> {data['result']}")
        return data["result"]

    async def get_active_player(self) -> Optional[int]:
        players = await self.call("Player.GetActivePlayers")
        if not isinstance(players, list) or not all(isinstance(p, dict) for p in players):
            raise KodiError(f"Player.GetActivePlayers on {self.address} returned malformed players: {players!r}")
        for player in players:
            if player.get("type") == "video":
                return player.get("playerid")
        return None

    async def get_current_item(self, player_id: int) -> CurrentItem:
        result = await self.call("Player.GetItem", {
            "playerid": player_id,
            "properties": ["tvshowid", "showtitle", "season", "episode", "title"],
        })
        item = result.get("item") if isinstance(result, dict) else None
        if not isinstance(item, dict):
            raise KodiError(f"Player.GetItem on {self.address} returned no item")
        try:
            return CurrentItem(
                showtitle=item.get("showtitle"),
                season=item.get("season"),
                episode=item.get("episode"),
                title=item.get("title"),
                label=item.get("label"),
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise KodiError(f"Player.GetItem on {self.address} returned malformed item: {e}") from e

    async def get_playback_properties(self, player_id: int) -> PlaybackProperties:
        result = await self.call("Player.GetProperties", {
            "playerid": player_id,
            "properties": ["speed", "time", "totaltime"],
        })
        try:
            return PlaybackProperties(
                speed=result["speed"],
                position_ms=time_to_ms(result["time"]),
                duration_ms=time_to_ms(result["totaltime"]),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise KodiError(f"Player.GetProperties on {self.address} returned malformed properties: {e}") from e

    async def set_pause(self, player_id: int, paused: bool) -> int:
        """Returns the speed Kodi reports after the command."""
        result = await self.call("Player.PlayPause", {"playerid": player_id, "play": not paused})
        if isinstance(result, dict) and "speed" in result:
            return result["speed"]
        return 0 if paused else 1

    async def seek(self, player_id: int, percentage: float):
        # Kodi's time-based seek isn't any more accurate than percentage mode
        await self.call("Player.Seek", {"playerid": player_id, "value": {"percentage": percentage}})

    async def aclose(self):
        await self.client.aclose()
