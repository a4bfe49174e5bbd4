import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.routing import APIRoute
from starlette.middleware.base import BaseHTTPMiddleware

from config import APP_NAME, APP_VERSION, AUTO_CREATE_TABLES, CALLS_ENABLED, ENVIRONMENT, LOG_LEVEL
from core.logging import configure_logging, request_id_var
from db import create_tables
from routers.calls import api as calls_api
from routers.messaging import api as messaging_api
from routers.notifications import api as notifications_api
from utils.pusher_client import create_broadcaster

log_level = configure_logging(environment=ENVIRONMENT, log_level=LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if AUTO_CREATE_TABLES:
        create_tables()

    # One broadcaster per process, injected into handlers via get_broadcaster
    app.state.broadcaster = create_broadcaster()
    logger.info(f"{APP_NAME} started | broadcaster={app.state.broadcaster.name}")

    if log_level <= logging.DEBUG:
        for route in app.routes:
            if isinstance(route, APIRoute):
                methods = ",".join(sorted(route.methods))
                logger.debug(f"{methods:8} {route.path}")

    try:
        yield
    finally:
        app.state.broadcaster.close()
        logger.info(f"{APP_NAME} stopped")


app = FastAPI(
    title=APP_NAME,
    description="Realtime messaging, presence and call signaling API",
    version=APP_VERSION,
    lifespan=lifespan,
    swagger_ui_parameters={
        "defaultModelsExpandDepth": -1,
        "docExpansion": "none",
        "displayRequestDuration": True,
        "filter": True,
    },
)


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    openapi_schema = get_openapi(
        title=APP_NAME,
        version=APP_VERSION,
        description="""
        Realtime API

        ## Authentication
        Every endpoint except / and /health requires a Bearer JWT.

        Format: `Authorization: Bearer <your_access_token>`
        """,
        routes=app.routes,
    )
    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "bearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
        }
    }
    openapi_schema["security"] = [{"bearerAuth": []}]
    app.openapi_schema = openapi_schema
    return openapi_schema


app.openapi = custom_openapi


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())[:8]
        token = request_id_var.set(request_id)
        request.state.request_id = request_id

        start_time = time.time()
        query_str = f"?{request.url.query}" if request.query_params else ""
        client_ip = request.client.host if request.client else "unknown"
        logger.info(
            f"REQUEST | id={request_id} | method={request.method} | path={request.url.path}{query_str} | ip={client_ip}"
        )

        try:
            response = await call_next(request)
            process_time = time.time() - start_time
            # get_current_user stores the resolved id on request.state
            user_id = getattr(request.state, "user_id", None)
            logger.info(
                f"RESPONSE | id={request_id} | method={request.method} | path={request.url.path} | "
                f"status={response.status_code} | time={process_time:.3f}s | user_id={user_id or 'anonymous'}"
            )
            response.headers["X-Request-ID"] = request_id
            return response
        except Exception as e:
            process_time = time.time() - start_time
            logger.error(
                f"ERROR | id={request_id} | method={request.method} | path={request.url.path} | "
                f"error={type(e).__name__}: {e} | time={process_time:.3f}s",
                exc_info=True,
            )
            raise
        finally:
            request_id_var.reset(token)


app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*", "Authorization", "Content-Type", "Accept", "Origin", "X-Requested-With"],
)

app.include_router(messaging_api.router)      # Direct messages, group messages, presence, typing
app.include_router(notifications_api.router)  # Pusher channel authorization
if CALLS_ENABLED:
    app.include_router(calls_api.router)      # Call signaling
else:
    logger.info("Calls feature disabled")


@app.get("/")
async def read_root():
    """
    Root endpoint to check if the server is running.
    Returns basic API information.
    """
    return {
        "status": "online",
        "message": f"Welcome to {APP_NAME}",
        "version": APP_VERSION,
        "environment": ENVIRONMENT,
    }


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring.
    """
    return {"status": "healthy"}
