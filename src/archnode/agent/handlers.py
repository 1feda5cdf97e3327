from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from archnode.schemas import ManagerRead, ManagerStoreRequest, ManagerStoreResponse
from archnode.xray.compatibility import IncompatibleError, check_config_compatible
from archnode.xray.config import Config, ConfigValidationError, parse_config
from archnode.xray.validation import validate_config

from .engine import EngineControlError, XrayEngine
from .ports import PortAllocationError, PortConflictError, find_free_port, is_port_free, resolve_inbound_conflicts
from .state import Manager, NodeStateStore, PersistenceError

logger = logging.getLogger("archnode.agent.handlers")

UNPARSEABLE_BODY = "Cannot parse the request body."


class HandlerError(RuntimeError):
    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(message)


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    err = errors[0]
    loc = ".".join(str(part) for part in err.get("loc", ())) or "body"
    return f"{loc}: {err.get('msg', 'invalid')}"


def parse_config_payload(raw: bytes) -> Config:
    try:
        payload: Any = json.loads(raw or b"")
    except ValueError as exc:
        raise HandlerError(400, UNPARSEABLE_BODY) from exc
    if not isinstance(payload, dict):
        raise HandlerError(400, UNPARSEABLE_BODY)
    try:
        return parse_config(payload)
    except ValidationError as exc:
        raise HandlerError(400, f"{UNPARSEABLE_BODY} {_first_error(exc)}") from exc


def store_configs(
    engine: XrayEngine,
    config: Config,
    *,
    client_name: str | None,
    expected_name: str,
    is_free: Callable[[int], bool] = is_port_free,
    allocate: Callable[..., int] = find_free_port,
) -> Config:
    """
    Accept a config pushed by the manager and schedule it on the engine.

    Returns the config actually applied, which differs from the input only in
    the api inbound port.
    """
    try:
        validate_config(config)
    except ConfigValidationError as exc:
        raise HandlerError(422, f"Validation error: {exc}") from exc

    if client_name != expected_name:
        raise HandlerError(400, "Unknown client.")

    try:
        check_config_compatible(config)
    except IncompatibleError as exc:
        raise HandlerError(422, f"Validation error: {exc}") from exc

    try:
        inbounds = resolve_inbound_conflicts(config.inbounds, engine.config, is_free=is_free, allocate=allocate)
    except PortConflictError as exc:
        raise HandlerError(422, str(exc)) from exc
    except PortAllocationError as exc:
        raise HandlerError(422, str(exc)) from exc

    applied = config.model_copy(update={"inbounds": inbounds})
    engine.set_config(applied, source="api")
    engine.request_restart()
    logger.info("configs_stored inbounds=%s outbounds=%s", len(applied.inbounds), len(applied.outbounds))
    return applied


def store_manager(store: NodeStateStore, request: ManagerStoreRequest) -> ManagerStoreResponse:
    manager: Manager | None = None
    if request.url:
        try:
            manager = Manager(url=request.url, token=request.token or "")
        except ValidationError as exc:
            raise HandlerError(422, f"Validation error: {_first_error(exc)}") from exc

    try:
        store.set_manager(manager)
    except PersistenceError as exc:
        raise HandlerError(500, "Cannot save the manager.") from exc

    return ManagerStoreResponse(manager=ManagerRead(url=request.url or "", token=request.token or ""))


async def query_stats(engine: XrayEngine) -> dict[str, Any]:
    try:
        return await engine.query_stats()
    except EngineControlError as exc:
        logger.warning("stats_query_failed error=%s", exc)
        raise HandlerError(502, "Cannot query the Xray stats.") from exc
