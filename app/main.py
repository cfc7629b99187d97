import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from app.exceptions.handlers import (
    application_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from app.exceptions.errors import ApplicationException
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.exceptions import RequestValidationError
from app.core.config import settings
from app.core.identity import ClerkTokenVerifier, IdentityGate
from app.database.base import Base
from app.database.connection import engine, AsyncSessionLocal

from app.api.v1.routes import (
    health_router,
    coach_router,
    assignment_router,
    message_router,
    attachment_router,
    stream_router,
    chatbot_router,
    admin_router
)
from app.middlewares.identity_gate import IdentityGateMiddleware, whitelisted_routes
from app.middlewares.upload_limit import LimitUploadSizeMiddleware

from app.core.logger import get_logger

logger = get_logger("yamifit-coaching-core")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 FastAPI app is starting...")
    try:
        # Create database tables (async version); production schemas come from Alembic
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Application database tables ensured.")
    except Exception as e:
        logger.error(f"Failed to initialize application: {e}")
        raise e

    yield

    logger.info("🛑 FastAPI app is shutting down...")


# Enhanced Swagger configuration for development
swagger_ui_parameters = {
    "deepLinking": True,
    "displayRequestDuration": True,
    "tryItOutEnabled": True,
    "filter": True,
    "syntaxHighlight.theme": "arta",
}

if settings.IS_DEVELOPMENT:
    swagger_ui_parameters["persistAuthorization"] = True

app = FastAPI(
    title="YamiFit Coaching Core",
    version="1.0.0",
    lifespan=lifespan,
    description="""
    Coach assignment, coach <-> client chat, realtime events and the AI chatbot for YamiFit.

    ## Authentication

    Uses Clerk JWT tokens. Include your JWT token in the Authorization header:
    ```
    Authorization: Bearer <your-jwt-token>
    ```

    The realtime stream (`/api/v1/stream`) accepts the same token as a `token` query parameter.
    """,
    swagger_ui_parameters=swagger_ui_parameters,
)

app.state.identity_gate = IdentityGate(ClerkTokenVerifier(), AsyncSessionLocal)

app.add_middleware(
    LimitUploadSizeMiddleware,
    max_upload_size=settings.MAX_ATTACHMENT_BYTES,
    paths=["/api/v1/attachments"]
)

app.add_middleware(
    IdentityGateMiddleware,
    whitelisted_routes=whitelisted_routes
)

# Added last so it wraps the auth middleware and CORS preflights get answered
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(health_router, prefix="/api/v1")
app.include_router(coach_router, prefix="/api/v1")
app.include_router(assignment_router, prefix="/api/v1")
app.include_router(message_router, prefix="/api/v1")
app.include_router(attachment_router, prefix="/api/v1")
app.include_router(stream_router, prefix="/api/v1")
app.include_router(chatbot_router, prefix="/api/v1")
app.include_router(admin_router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
async def root():
    return {
        "message": "YamiFit Coaching Core API",
        "docs": "/docs",
        "development_mode": settings.IS_DEVELOPMENT,
        "version": "1.0.0"
    }


# Exception handlers
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host="127.0.0.1",
        port=8000,
        reload=settings.IS_DEVELOPMENT,
        timeout_keep_alive=30,
        timeout_graceful_shutdown=30
    )
