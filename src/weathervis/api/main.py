from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from dotenv import load_dotenv
import logging
import os
from typing import Optional
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .routers.chat import router as chat_router
from .routers.weather import router as weather_router
from .routers.diag import router as diag_router
from ..infrastructure.log_store import LogStore, build_log_store
from ..observability.metrics import metrics_middleware_factory
from ..services import detached
from ..services.generation_client import GenerationClient
from ..services.weather_api import WeatherAPIClient

load_dotenv()  # Load environment variables from .env if present (WEATHER_API_KEY, MONGO_URL, etc.)

logging.basicConfig(level=logging.INFO)

API_NAME = "WeatherVis API"
API_VERSION = "0.1.0"

# Vite dev server
DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://127.0.0.1:5173"


def _cors_origins() -> list[str]:
    raw = os.getenv("WEATHERVIS_CORS_ORIGINS") or DEFAULT_CORS_ORIGINS
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def create_app(
    *,
    log_store: Optional[LogStore] = None,
    generation_client: Optional[GenerationClient] = None,
    weather_client: Optional[WeatherAPIClient] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        # Let in-flight log writes land before the store goes away.
        await detached.drain()
        await app.state.generation_client.aclose()
        await app.state.log_store.close()

    app = FastAPI(title=API_NAME, version=API_VERSION, lifespan=lifespan)
    app.state.log_store = log_store if log_store is not None else build_log_store()
    app.state.generation_client = generation_client if generation_client is not None else GenerationClient()
    app.state.weather_client = weather_client if weather_client is not None else WeatherAPIClient()

    # Observability: request latency histogram
    app.middleware("http")(metrics_middleware_factory())

    # Routers, also exposed under /api for the UI's VITE_API_BASE
    for router in (chat_router, weather_router, diag_router):
        app.include_router(router)
        app.include_router(router, prefix="/api")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    def root():
        return {"name": API_NAME, "version": API_VERSION, "status": "Api is up and running!"}

    @app.get("/health")
    @app.get("/api/health")
    def health():
        return {
            "status": "ok",
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "components": {
                "api": "ok",
                "log_store": type(app.state.log_store).__name__,
                "llm": app.state.generation_client.base_url,
            },
        }

    @app.get("/metrics")
    @app.get("/api/metrics")
    def metrics() -> Response:
        # Expose Prometheus metrics
        data = generate_latest(REGISTRY)
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()
