"""
Ticket Push Backend — FastAPI Entry Point

Initializes the FastAPI app and registers the dispatch and
push-token route handlers.
"""

from fastapi import FastAPI

from ticket_push.api.notifications import router as notifications_router
from ticket_push.api.push_tokens import router as push_tokens_router
from ticket_push.core.config import PROJECT_NAME

app = FastAPI(
    title=f"{PROJECT_NAME} API",
    description="Push notification dispatch for facility-maintenance tickets",
    version="0.1.0",
)

# --- Register API routers ---
app.include_router(notifications_router)
app.include_router(push_tokens_router)


@app.get("/health")
async def health_check():
    """Health check endpoint. Returns service status."""
    return {"status": "ok"}
