import argparse
import asyncio
import logging
import signal
import sys
import uvicorn
from typing import List, Optional, Sequence

from .config import settings
from .engine import InvariantViolation, SyncEngine
from .state import Peer
from . import server

# Setup logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
# Silence noisy libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

logger = logging.getLogger("main")

class SyncService:
    def __init__(self, hosts: List[str], peers: Optional[List[Peer]] = None):
        self.stop_event = asyncio.Event()
        self.peers = peers if peers is not None else [Peer(host) for host in hosts]
        self.engine = SyncEngine(self.peers)

        # Link engine to server module
        server.engine = self.engine

    def stop(self):
        logger.info("Stopping after the current cycle...")
        self.stop_event.set()

    async def sync_loop(self):
        logger.info(f"Syncing {len(self.peers)} hosts: {', '.join(p.address for p in self.peers)}")
        while not self.stop_event.is_set():
            sleep_ms = await self.engine.run_cycle()
            if sleep_ms and not self.stop_event.is_set():
                try:
                    await asyncio.wait_for(self.stop_event.wait(), timeout=sleep_ms / 1000.0)
                except asyncio.TimeoutError:
                    pass

    async def start(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self.stop)
            except NotImplementedError:
                # Windows event loops don't support signal handlers
                pass

        server_task = None
        if settings.HTTP_SERVER_ENABLED:
            config = uvicorn.Config(server.app, host="0.0.0.0", port=settings.HTTP_SERVER_PORT, log_level="warning")
            server_task = asyncio.create_task(uvicorn.Server(config).serve())

        try:
            await self.sync_loop()
        finally:
            if server_task:
                server_task.cancel()
                await asyncio.gather(server_task, return_exceptions=True)
            await asyncio.gather(*(p.client.aclose() for p in self.peers), return_exceptions=True)

def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync playback of Kodi instances")
    parser.add_argument(
        "host",
        nargs="*",
        help="Kodi host (eg localhost or my.friends.server:1234); defaults to KODI_HOSTS",
    )
    return parser.parse_args(argv)

def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    hosts = args.host or settings.host_list
    if not hosts:
        logger.error("No Kodi hosts given; pass them as arguments or set KODI_HOSTS")
        return 2

    service = SyncService(hosts)
    try:
        asyncio.run(service.start())
    except InvariantViolation as e:
        logger.critical(f"Sync stopped: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    return 0

if __name__ == "__main__":
    sys.exit(main())
