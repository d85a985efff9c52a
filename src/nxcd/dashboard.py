"""대시보드 - FastAPI 기반 상태 조회 API (읽기 전용)"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from fastapi import FastAPI, Query
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

if TYPE_CHECKING:
    from .engine import Engine
    from .models import DeployRecord

_INDEX_HTML = """<!doctype html>
<html>
<head><meta charset="utf-8"><title>nxcd</title></head>
<body>
<h1>nxcd</h1>
<pre id="status">loading...</pre>
<script>
async function refresh() {
  const resp = await fetch("/api/status");
  document.getElementById("status").textContent =
    JSON.stringify(await resp.json(), null, 2);
}
refresh();
setInterval(refresh, 5000);
</script>
</body>
</html>
"""


class RepositoryInfo(BaseModel):
    owner: str
    name: str
    branch: str


class DispatchInfo(BaseModel):
    state: str
    pending: str | None = None
    current: str | None = None


class DetectorInfo(BaseModel):
    baseline: str | None = None
    interval: float
    last_polled_at: datetime | None = None
    last_error: str | None = None
    consecutive_failures: int = 0


class DeployInfo(BaseModel):
    commit_hash: str
    started_at: datetime
    finished_at: datetime
    returncode: int | None = None
    error: str | None = None
    succeeded: bool

    @classmethod
    def from_record(cls, record: DeployRecord) -> DeployInfo:
        return cls(
            commit_hash=record.commit_hash,
            started_at=record.started_at,
            finished_at=record.finished_at,
            returncode=record.returncode,
            error=record.error,
            succeeded=record.succeeded,
        )


class StatusResponse(BaseModel):
    repository: RepositoryInfo
    dispatch: DispatchInfo
    detector: DetectorInfo
    deploys: list[DeployInfo]


def create_app(*, engine: Engine) -> FastAPI:
    """FastAPI 앱을 생성하고 라우트를 등록한다."""

    app = FastAPI(title="nxcd dashboard", docs_url=None, redoc_url=None)

    def _recent(n: int) -> list[DeployInfo]:
        return [DeployInfo.from_record(r) for r in engine.executor.recent(n)]

    # --- API ---

    @app.get("/api/status", response_model=StatusResponse)
    def get_status():
        status = engine.status()
        return StatusResponse(
            repository=RepositoryInfo(**status["repository"]),
            dispatch=DispatchInfo(**status["dispatch"]),
            detector=DetectorInfo(**status["detector"]),
            deploys=_recent(5),
        )

    @app.get("/api/deploys", response_model=list[DeployInfo])
    def get_deploys(n: int = Query(20, ge=1, le=100)):
        return _recent(n)

    # --- Static UI ---

    @app.get("/", response_class=HTMLResponse)
    def root():
        return HTMLResponse(_INDEX_HTML)

    return app
