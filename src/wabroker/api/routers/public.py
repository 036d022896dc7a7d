"""Public-facing routes (APP_ROLE=public)."""

from fastapi import APIRouter

from wabroker.api.routes import conversations, messages, users, webhooks_whatsapp

router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


router.include_router(webhooks_whatsapp.router)
router.include_router(conversations.router)
router.include_router(users.router)
router.include_router(messages.router)
