"""
Drive Assistant: AI assistant core for the cloud drive.
FastAPI backend; chat work runs on the Redis-backed task queue.
"""

import logging

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from auth import DRIVE_API_KEY, set_app
from core.agent_core import AgentCore
from profile import get_profile
from schema import init_db
from routes import register_routes

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    init_db()
    _redacted = DRIVE_API_KEY[-4:] if len(DRIVE_API_KEY) > 4 else "****"
    logger.info("API key: ****...%s", _redacted)
    logger.info("Set X-API-Key and X-User-Id headers to authenticate.")
    core = AgentCore()
    app.state.agent_core = core
    try:
        await core.start()
    except Exception as e:
        logger.error("Startup error: %s", e)
    yield
    await core.shutdown()


app = FastAPI(
    title="Drive Assistant",
    description="Multi-agent AI assistant API for the cloud drive",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan
)
set_app(app)

_profile = get_profile()
app.add_middleware(
    CORSMiddleware,
    allow_origins=_profile.web.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


app.add_middleware(SecurityHeadersMiddleware)

register_routes(app)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=_profile.web.host, port=_profile.web.port)
