"""Peer message endpoint and ledger views."""

import hmac
import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from fednode.config import get_settings
from fednode.events.service import EventService, get_event_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["api-messages"])


@router.post("/message")
async def receive_message(
    request: Request,
    x_api_key: str | None = Header(default=None),
    service: EventService = Depends(get_event_service),
) -> JSONResponse:
    """Accept a message from the peer gateway.

    Once the key checks out the sender always gets 202; the processing
    outcome is recorded in the ledger.
    """
    expected = get_settings().inbound_api_key
    if not x_api_key or not hmac.compare_digest(x_api_key, expected):
        raise HTTPException(status_code=401, detail="invalid api key")
    try:
        payload = json.loads(await request.body())
    except json.JSONDecodeError:
        logger.warning("Peer message body is not valid JSON")
        return JSONResponse(status_code=202, content={"accepted": False})
    if not isinstance(payload, dict):
        return JSONResponse(status_code=202, content={"accepted": False})
    result = await service.receive_message(payload)
    return JSONResponse(status_code=202, content=result.to_dict())


@router.get("/message")
async def list_messages(
    view: str | None = None,
    page: int = Query(default=1, ge=1),
    size: int = Query(default=50, ge=1, le=500),
    service: EventService = Depends(get_event_service),
) -> dict[str, object]:
    items = service.list_messages(view, page=page, size=size)
    return {"items": [item.to_dict() for item in items], "page": page, "size": size}


@router.get("/message/{message_id}")
async def get_message(
    message_id: str,
    service: EventService = Depends(get_event_service),
) -> dict[str, object]:
    return service.get_message(message_id).to_dict()
