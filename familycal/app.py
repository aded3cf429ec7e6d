from datetime import date
from typing import List, Optional
import logging
import os

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .db import create_db_engine, init_db
from .errors import ConcurrencyConflict, NotFoundError, ValidationError
from .models import (
    CalendarEvent,
    EventCreate,
    EventOccurrence,
    EventUpdate,
    OccurrenceScope,
    TaskCompletion,
)
from .service import CalendarService
from .time_utils import parse_local_datetime

logging.basicConfig(level=os.getenv("FAMILYCAL_LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

db_path = os.getenv("FAMILYCAL_DB", "familycal.db")
engine = create_db_engine(db_path)
init_db(engine)
calendar_service = CalendarService(engine)

app = FastAPI()

API = "/api/v1/calendar"


class CompletionRequest(BaseModel):
    member_id: int
    occurrence_date: date


@app.exception_handler(NotFoundError)
async def handle_not_found(request: Request, exc: NotFoundError):
    return JSONResponse({"detail": str(exc)}, status_code=404)


@app.exception_handler(ValidationError)
async def handle_validation_error(request: Request, exc: ValidationError):
    return JSONResponse({"detail": str(exc)}, status_code=400)


@app.exception_handler(ConcurrencyConflict)
async def handle_conflict(request: Request, exc: ConcurrencyConflict):
    logger.warning("Unresolved write conflict on %s: %s", request.url.path, exc)
    return JSONResponse({"detail": str(exc)}, status_code=409)


def _scope_args(scope: Optional[OccurrenceScope], occurrence_date: Optional[date]) -> bool:
    if (scope is None) != (occurrence_date is None):
        raise ValidationError("scope and occurrence_date must be given together")
    return scope is not None


@app.get(f"{API}/families/{{family_id}}/events", response_model=List[EventOccurrence])
def list_events(family_id: int, start: Optional[str] = None, end: Optional[str] = None):
    if start is None and end is None:
        return calendar_service.upcoming_occurrences(family_id)
    if start is None or end is None:
        raise ValidationError("start and end must be given together")
    try:
        range_start = parse_local_datetime(start)
        range_end = parse_local_datetime(end)
    except ValueError as exc:
        raise ValidationError(f"Invalid range bound: {exc}") from exc
    return calendar_service.occurrences_in_range(family_id, range_start, range_end)


@app.post(f"{API}/events", response_model=CalendarEvent, status_code=201)
def create_event(data: EventCreate):
    return calendar_service.create_event(data)


@app.get(f"{API}/events/{{event_id}}", response_model=CalendarEvent)
def get_event(event_id: int):
    return calendar_service.get_event(event_id)


@app.put(f"{API}/events/{{event_id}}", response_model=CalendarEvent)
def update_event(
    event_id: int,
    data: EventUpdate,
    scope: Optional[OccurrenceScope] = None,
    occurrence_date: Optional[date] = None,
):
    if _scope_args(scope, occurrence_date):
        return calendar_service.update_event_with_scope(event_id, occurrence_date, scope, data)
    return calendar_service.update_event(event_id, data)


@app.delete(f"{API}/events/{{event_id}}", status_code=204)
def delete_event(
    event_id: int,
    scope: Optional[OccurrenceScope] = None,
    occurrence_date: Optional[date] = None,
):
    if _scope_args(scope, occurrence_date):
        calendar_service.delete_event_with_scope(event_id, occurrence_date, scope)
    else:
        calendar_service.delete_event(event_id)
    return Response(status_code=204)


@app.post(f"{API}/events/{{event_id}}/completions", response_model=TaskCompletion)
def complete_task(event_id: int, data: CompletionRequest):
    return calendar_service.mark_task_completed(event_id, data.member_id, data.occurrence_date)


@app.delete(f"{API}/events/{{event_id}}/completions", status_code=204)
def remove_completion(event_id: int, member_id: int, occurrence_date: date):
    calendar_service.unmark_task_completed(event_id, member_id, occurrence_date)
    return Response(status_code=204)


@app.get(f"{API}/events/{{event_id}}/completions")
def event_completions(event_id: int, occurrence_date: Optional[date] = None):
    if occurrence_date is not None:
        return {"completed": calendar_service.is_task_completed(event_id, occurrence_date)}
    return calendar_service.task_completions(event_id)


@app.get(f"{API}/members/{{member_id}}/completions", response_model=List[TaskCompletion])
def member_completions(member_id: int):
    return calendar_service.task_completions_for_member(member_id)
