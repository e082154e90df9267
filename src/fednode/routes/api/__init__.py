"""API router aggregation."""

from fastapi import APIRouter

from fednode.routes.api import events, messages, webhooks

router = APIRouter(prefix="/api", tags=["api"])
router.include_router(events.router)
router.include_router(messages.router)
router.include_router(webhooks.router)
