from fastapi import FastAPI, Depends, HTTPException, Header
from fastapi.responses import PlainTextResponse
from typing import Optional
from .state import OperationTable
from .config import settings

app = FastAPI(title="StreamMon Maintenance Sync")
table: Optional[OperationTable] = None

def get_token(x_token: Optional[str] = Header(None, alias="X-Token")):
    if settings.HTTP_SERVER_TOKEN and x_token != settings.HTTP_SERVER_TOKEN:
        raise HTTPException(status_code=401, detail="Invalid token")

@app.get("/healthz")
def healthz():
    if table is None:
        return {"status": "starting"}
    return {"status": "ok", "syncing_rules": len(table)}

@app.get("/status", dependencies=[Depends(get_token)])
def status():
    if table is None:
        return {"status": "not_ready"}

    return {
        "operations": [op.model_dump() for op in table.snapshot().values()],
        "config": {
            "poll_interval": settings.SYNC_POLL_INTERVAL_SECONDS,
            "base_url": settings.STREAMMON_BASE_URL,
        }
    }

@app.get("/metrics", response_class=PlainTextResponse)
def metrics():
    # Simple prometheus-style text format
    if table is None:
        return ""

    ops = table.snapshot().values()
    lines = [
        f'streammon_maint_syncing_rules {len(ops)}',
        f'streammon_maint_syncing_libraries {len({k for op in ops for k in op.sync_keys})}',
    ]
    return "\n".join(lines)
