"""Event submission, validation, lookup and query routes."""

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from fednode.distribution.destinations import parse_destinations
from fednode.errors import ValidationError
from fednode.events.service import EventService, get_event_service

router = APIRouter(tags=["api-events"])


@router.post("/events")
async def submit_event(
    request: Request,
    event_type: str = Header(),
    event_destinations: str | None = Header(default=None),
    service: EventService = Depends(get_event_service),
) -> JSONResponse:
    destinations = parse_destinations(event_destinations) or None
    event = await service.submit_event(await request.body(), event_type, destinations)
    return JSONResponse(
        status_code=201,
        content={"eventUUID": event.event_uuid, "eventType": event.event_type.name},
        headers={"Location": f"/api/events/{event.event_uuid}"},
    )


@router.post("/events/validate")
async def validate_event(
    request: Request,
    event_type: str = Header(),
    service: EventService = Depends(get_event_service),
) -> PlainTextResponse:
    event = await service.validate_event(await request.body(), event_type)
    return PlainTextResponse(event.event_rdf, media_type="text/turtle")


@router.get("/events")
async def list_events(
    page: int = Query(default=1, ge=1),
    size: int = Query(default=25, ge=1, le=500),
    service: EventService = Depends(get_event_service),
) -> dict[str, object]:
    events = service.list_events(page=page, size=size)
    return {
        "items": [event.model_dump(by_alias=True, exclude_none=True) for event in events],
        "page": page,
        "size": size,
    }


@router.post("/events/query")
async def query_events(
    request: Request,
    service: EventService = Depends(get_event_service),
) -> JSONResponse:
    sparql = (await request.body()).decode("utf-8", errors="replace")
    return JSONResponse(await service.query_events(sparql))


@router.get("/events/fullevent/{event_uuid}")
async def request_full_event(
    event_uuid: str,
    event_destinations: str | None = Header(default=None),
    service: EventService = Depends(get_event_service),
) -> JSONResponse:
    destinations = parse_destinations(event_destinations)
    if len(destinations) != 1:
        raise ValidationError("exactly one Event-Destinations value is required")
    message_id = await service.request_full_event(event_uuid, next(iter(destinations)))
    return JSONResponse(status_code=202, content={"messageId": message_id})


@router.get("/events/{event_uuid}")
async def get_event(
    event_uuid: str,
    service: EventService = Depends(get_event_service),
) -> dict[str, object]:
    content = await service.get_event(event_uuid)
    return content.model_dump(by_alias=True, exclude_none=True)
