"""
Route registration: includes all API routers into the FastAPI app.
"""

from fastapi import FastAPI

from routes.health import router as health_router
from routes.chat import router as chat_router
from routes.tasks import router as tasks_router
from routes.approvals import router as approvals_router
from routes.conversations import router as conversations_router


def register_routes(app: FastAPI):
    """Mount all API routers onto the app."""
    app.include_router(health_router)
    app.include_router(chat_router)
    app.include_router(tasks_router)
    app.include_router(approvals_router)
    app.include_router(conversations_router)
