"""Webhook registration routes."""

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from fednode.webhooks.store import WebhookRegistration, WebhookStore

router = APIRouter(tags=["api-webhooks"])


class WebhookIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(alias="clientId", min_length=1)
    event_type: str = Field(alias="eventType", min_length=1)
    callback_url: str = Field(alias="callbackURL", min_length=1)
    api_key: str | None = Field(default=None, alias="apiKey")
    token_url: str | None = Field(default=None, alias="tokenURL")
    refresh_url: str | None = Field(default=None, alias="refreshURL")
    aud: str | None = None


@router.get("/webhooks")
async def list_webhooks() -> dict[str, object]:
    return {"items": [item.to_dict() for item in WebhookStore().list_all()]}


@router.post("/webhooks")
async def register_webhook(body: WebhookIn) -> JSONResponse:
    if body.token_url and not body.aud:
        raise HTTPException(status_code=400, detail="aud is required with tokenURL")
    registration = WebhookStore().register(
        WebhookRegistration(
            client_id=body.client_id,
            event_type=body.event_type,
            callback_url=body.callback_url,
            api_key=body.api_key,
            token_url=body.token_url,
            refresh_url=body.refresh_url,
            aud=body.aud,
        )
    )
    return JSONResponse(status_code=201, content=registration.to_dict())


@router.delete("/webhooks/{client_id}")
async def unregister_webhook(client_id: str) -> dict[str, object]:
    removed = WebhookStore().unregister(client_id)
    if removed == 0:
        raise HTTPException(status_code=404, detail="webhook not found")
    return {"deleted": removed}
