"""
api.main
========

HTTP layer over :class:`duewatch.engine.ComplianceEngine`.

Responses use the same camelCase projection as the CLI
(:pyfunc:`duewatch.dashboard.event_to_dict`).  Errors map as:

* unknown entity / event / requirement → 404
* illegal status transition            → 409
* misconfigured requirement            → 422
"""

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from duewatch.dashboard import event_to_dict
from duewatch.engine import ComplianceEngine
from duewatch.errors import ConfigurationError, DuewatchError, IllegalTransition
from duewatch.models import BusinessEntity, EventStatus, utcnow
from duewatch.settings import API_HOST, API_PORT
from duewatch.store import parse_shard
from .deps import close_resources, get_engine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    close_resources()


app = FastAPI(
    title="duewatch API",
    version="0.1.0",
    description="Compliance deadlines, reminders and dashboard rollups for business entities.",
    lifespan=lifespan,
)

# --- CORS ----------------------------------------------------------
# dev dashboard origins
origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept"],
)


# ---------- request bodies ----------
class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EntityIn(_CamelModel):
    id: str
    state: str
    entity_type: str
    formation_date: date
    name: Optional[str] = None


class EventRequest(_CamelModel):
    obligation_type: Optional[str] = None
    period: Optional[str] = None
    now: Optional[datetime] = None


class TickRequest(_CamelModel):
    now: Optional[datetime] = None
    limit: Optional[int] = None
    after_id: Optional[int] = None
    shard: Optional[str] = None
    backfill_after: Optional[int] = None


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, KeyError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, IllegalTransition):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (ConfigurationError, ValueError)):
        return HTTPException(status_code=422, detail=str(exc))
    logger.error(f"Unhandled engine error: {exc}")
    return HTTPException(status_code=500, detail=str(exc))


# ---------- health-check ----------
@app.get("/")
def root():
    return {"status": "ok", "msg": "duewatch API is alive"}


# ---------- GET /dashboard ----------
@app.get("/dashboard")
def dashboard(
    now: Optional[datetime] = Query(None, description="Evaluation time (defaults to now, UTC)"),
    upcoming_limit: int = Query(10, ge=0, alias="upcomingLimit"),
    business_entity_id: Optional[str] = Query(None, alias="businessEntityId"),
    within_days: Optional[int] = Query(None, ge=0, alias="withinDays"),
    engine: ComplianceEngine = Depends(get_engine),
) -> Dict[str, Any]:
    if business_entity_id is not None:
        try:
            engine.directory.get_entity(business_entity_id)
        except KeyError as exc:
            raise _http_error(exc)
    return engine.dashboard.snapshot(
        now or utcnow(),
        upcoming_limit=upcoming_limit,
        business_entity_id=business_entity_id,
        within_days=within_days,
    )


# ---------- POST /entities ----------
@app.post("/entities", status_code=201)
def add_entity(body: EntityIn, engine: ComplianceEngine = Depends(get_engine)):
    ent = BusinessEntity(body.id, body.state, body.entity_type, body.formation_date, name=body.name)
    engine.directory.add(ent)
    return {"id": ent.id}


# ---------- GET /entities/{id}/events ----------
@app.get("/entities/{entity_id}/events")
def list_entity_events(
    entity_id: str,
    status: Optional[str] = Query(None, description="Filter by status name, e.g. OVERDUE"),
    now: Optional[datetime] = None,
    engine: ComplianceEngine = Depends(get_engine),
) -> List[Dict[str, Any]]:
    try:
        engine.directory.get_entity(entity_id)
        wanted = EventStatus.parse(status) if status else None
    except (DuewatchError, KeyError, ValueError) as exc:
        raise _http_error(exc)
    events = engine.store.list_events(business_entity_id=entity_id, status=wanted)
    events.sort(key=lambda e: (e.due_date, e.id))
    now = now or utcnow()
    return [event_to_dict(e, now) for e in events]


# ---------- GET /entities/{id}/upcoming ----------
@app.get("/entities/{entity_id}/upcoming")
def upcoming_entity_events(
    entity_id: str,
    days: int = Query(90, ge=0, description="Window in days from now"),
    now: Optional[datetime] = None,
    engine: ComplianceEngine = Depends(get_engine),
) -> List[Dict[str, Any]]:
    try:
        engine.directory.get_entity(entity_id)
    except KeyError as exc:
        raise _http_error(exc)
    now = now or utcnow()
    events = engine.dashboard.upcoming(business_entity_id=entity_id, now=now, within_days=days)
    return [event_to_dict(e, now) for e in events]


# ---------- POST /entities/{id}/events ----------
@app.post("/entities/{entity_id}/events", status_code=201)
def create_entity_event(
    entity_id: str,
    body: Optional[EventRequest] = None,
    engine: ComplianceEngine = Depends(get_engine),
) -> Dict[str, Any]:
    """
    Create (or return the existing) event for the entity.

    Repeating the call with the same obligation and period returns the
    same event id.
    """
    body = body or EventRequest()
    try:
        event = engine.create_event(entity_id, body.obligation_type, body.period, body.now)
    except (DuewatchError, KeyError, ValueError) as exc:
        raise _http_error(exc)
    return event_to_dict(event, body.now or utcnow())


# ---------- POST /events/{id}/complete ----------
@app.post("/events/{event_id}/complete")
def complete_event(
    event_id: int,
    now: Optional[datetime] = None,
    engine: ComplianceEngine = Depends(get_engine),
) -> Dict[str, Any]:
    try:
        result = engine.complete_event(event_id, now)
    except (DuewatchError, KeyError, ValueError) as exc:
        raise _http_error(exc)
    return {
        "event": event_to_dict(result.event),
        "successor": event_to_dict(result.successor) if result.successor else None,
    }


# ---------- POST /tick ----------
@app.post("/tick")
def tick(body: Optional[TickRequest] = None, engine: ComplianceEngine = Depends(get_engine)) -> Dict[str, Any]:
    body = body or TickRequest()
    try:
        shard = parse_shard(body.shard) if body.shard else None
    except ValueError as exc:
        raise _http_error(exc)
    report = engine.run_sweep_tick(
        body.now, limit=body.limit, after_id=body.after_id, shard=shard, backfill_after=body.backfill_after
    )
    return report.summary()


# ---------- runner ----------
def serve() -> None:
    """Run the API under uvicorn (``pip install duewatch[server]``)."""
    import uvicorn

    uvicorn.run("api.main:app", host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    serve()
