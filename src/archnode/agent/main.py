from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
from typing import Any

import httpx
import uvicorn
from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import ValidationError

from archnode.observability import configure_logging, install_http_observability
from archnode.schemas import HomeResponse, ManagerStoreRequest, ManagerStoreResponse, MessageResponse
from archnode.security import bearer_token_guard
from archnode.settings import APP_NAME, Settings, ensure_node_dirs, get_settings

from .coordinator import Coordinator
from .engine import XrayEngine
from .handlers import (
    UNPARSEABLE_BODY,
    HandlerError,
    parse_config_payload,
    query_stats,
    store_configs,
    store_manager,
)
from .state import NodeStateStore, PersistenceError

logger = logging.getLogger("archnode.agent")


def _app_version() -> str:
    try:
        return pkg_version("arch-node")
    except PackageNotFoundError:
        return "dev"


def build_engine(settings: Settings) -> XrayEngine:
    return XrayEngine(
        settings.resolved_xray_binary_path(),
        settings.xray_config_path,
        settings.xray_log_level,
        access_log=settings.xray_access_log,
        error_log=settings.xray_error_log,
        dry_run=settings.node_dry_run,
        grace_seconds=settings.node_shutdown_grace_seconds,
    )


def create_app(
    settings: Settings | None = None,
    *,
    store: NodeStateStore | None = None,
    engine: XrayEngine | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    store = store or NodeStateStore(Path(settings.node_state_file))
    engine = engine or build_engine(settings)
    version = _app_version()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not store.loaded:
            store.init()
        engine.init()
        await engine.start()

        stop = asyncio.Event()
        async with httpx.AsyncClient(
            timeout=settings.node_http_timeout_seconds,
            transport=http_transport,
        ) as client:
            coordinator = Coordinator(
                store,
                engine,
                client=client,
                interval=settings.node_sync_interval_seconds,
                app_version=version,
            )
            app.state.coordinator = coordinator
            task = asyncio.create_task(coordinator.run(stop), name="coordinator-sync")
            logger.info("node_started http_port=%s dry_run=%s", store.http_port, settings.node_dry_run)
            try:
                yield
            finally:
                stop.set()
                await asyncio.gather(task, return_exceptions=True)
                await engine.close(settings.node_shutdown_grace_seconds)
                logger.info("node_stopped")

    app = FastAPI(title="Arch Node", version=version, lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.engine = engine
    install_http_observability(app, component="agent")

    require_token = bearer_token_guard(lambda: store.http_token)

    @app.exception_handler(HandlerError)
    async def _handler_error(request: Request, exc: HandlerError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message})

    @app.get("/", response_model=HomeResponse)
    async def home() -> HomeResponse:
        return HomeResponse(app=APP_NAME, version=version)

    @app.get("/v1/stats", dependencies=[Depends(require_token)])
    async def stats() -> dict[str, Any]:
        return await query_stats(engine)

    @app.post("/v1/configs", response_model=MessageResponse, dependencies=[Depends(require_token)])
    async def configs_store(request: Request) -> MessageResponse:
        config = parse_config_payload(await request.body())
        store_configs(
            engine,
            config,
            client_name=request.headers.get("X-App-Name"),
            expected_name=settings.node_manager_app_name,
        )
        return MessageResponse(message="The configs stored successfully.")

    @app.post(
        "/v1/manager",
        response_model=ManagerStoreResponse,
        status_code=status.HTTP_201_CREATED,
        dependencies=[Depends(require_token)],
    )
    async def manager_store(request: Request) -> ManagerStoreResponse:
        raw = await request.body()
        try:
            # An empty body clears the manager.
            payload = json.loads(raw) if raw.strip() else {}
        except ValueError as exc:
            raise HandlerError(400, UNPARSEABLE_BODY) from exc
        if not isinstance(payload, dict):
            raise HandlerError(400, UNPARSEABLE_BODY)
        try:
            body = ManagerStoreRequest.model_validate(payload)
        except ValidationError as exc:
            raise HandlerError(422, f"Validation error: {exc.errors()[0]['msg']}") from exc
        return store_manager(store, body)

    @app.get("/metrics", dependencies=[Depends(require_token)])
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


def run() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    ensure_node_dirs(settings)

    store = NodeStateStore(Path(settings.node_state_file))
    try:
        store.init()
    except PersistenceError:
        logger.exception("state_init_failed path=%s", settings.node_state_file)
        raise SystemExit(1)

    uvicorn.run(
        create_app(settings, store=store),
        host=settings.node_host,
        port=store.http_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
