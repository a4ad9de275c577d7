import time
from fastapi import FastAPI, Depends, HTTPException, Header
from fastapi.responses import PlainTextResponse
from typing import Optional, TYPE_CHECKING
from .config import settings

if TYPE_CHECKING:
    from .engine import SyncEngine

app = FastAPI(title="Kodi Sync")
engine: Optional["SyncEngine"] = None

def get_token(x_token: Optional[str] = Header(None, alias="X-Token")):
    if settings.HTTP_SERVER_TOKEN and x_token != settings.HTTP_SERVER_TOKEN:
        raise HTTPException(status_code=401, detail="Invalid token")

@app.get("/healthz")
def healthz():
    if not engine or not engine.last_cycle_at:
        return {"status": "starting"}

    # A cycle can legitimately take a while (settle delays, staggered play)
    age = time.time() - engine.last_cycle_at
    if age > (settings.SEEK_SETTLE_MS * 3 + settings.MISMATCH_INTERVAL_MS) / 1000.0 + 60:
        return {"status": "lagging", "last_cycle_age": age}

    return {"status": "ok"}

@app.get("/status", dependencies=[Depends(get_token)])
def status():
    if not engine:
        return {"status": "not_ready"}

    return {
        "content_match": engine.content_match,
        "last_cycle": engine.last_cycle_at,
        "peers": [p.snapshot().model_dump() for p in engine.peers],
        "config": {
            "threshold_ms": settings.SYNC_THRESHOLD_MS,
            "poll_interval_ms": settings.POLL_INTERVAL_MS
        }
    }

@app.get("/metrics", response_class=PlainTextResponse)
def metrics():
    # Simple prometheus-style text format
    if not engine:
        return ""

    lines = [
        f'kodisync_peers {len(engine.peers)}',
        f'kodisync_peers_with_baseline {sum(1 for p in engine.peers if p.has_baseline)}',
        f'kodisync_unsynced_last_cycle {engine.last_unsynced_count}',
        f'kodisync_content_match {int(engine.content_match)}',
        f'kodisync_full_resyncs_total {engine.full_resyncs}',
        f'kodisync_primary_syncs_total {engine.primary_syncs}',
        f'kodisync_last_cycle_timestamp {engine.last_cycle_at}'
    ]
    return "\n".join(lines)
