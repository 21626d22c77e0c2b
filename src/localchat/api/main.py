from __future__ import annotations

from dotenv import load_dotenv
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .routers.chat import router as chat_router
from .routers.diag import router as diag_router
from .routers.history import router as history_router
from .routers.keys import router as keys_router
from .routers.sessions import router as sessions_router
from .routers.settings import router as settings_router
from ..observability.metrics import metrics_middleware_factory

load_dotenv()  # OLLAMA_HOST, OLLAMA_MODEL, LOCALCHAT_* from .env if present

APP_NAME = "localchat"
APP_VERSION = "0.1.0"


def create_app() -> FastAPI:
    app = FastAPI(title="localchat API", version=APP_VERSION)

    # Observability: request latency histogram
    app.middleware("http")(metrics_middleware_factory())

    app.include_router(diag_router)
    app.include_router(diag_router, prefix="/api")
    for router in (sessions_router, chat_router, history_router, keys_router, settings_router):
        app.include_router(router, prefix="/api")

    # The browser UI may be served from a different local port
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    def root():
        return {"name": APP_NAME, "version": APP_VERSION}

    @app.get("/metrics")
    def metrics() -> Response:
        data = generate_latest(REGISTRY)
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()
