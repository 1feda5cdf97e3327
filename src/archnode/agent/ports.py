from __future__ import annotations

import logging
import random
import socket
from collections.abc import Callable, Iterable

from archnode.enums import API_TAG, REMOTE_TAG
from archnode.xray.config import Config, Inbound

logger = logging.getLogger("archnode.agent.ports")

# Allocations stay outside the privileged range.
MIN_ALLOCATED_PORT = 1025
MAX_ALLOCATED_PORT = 65535
DEFAULT_ATTEMPTS = 100


class PortAllocationError(RuntimeError):
    pass


class PortConflictError(RuntimeError):
    def __init__(self, tag: str, port: int) -> None:
        self.tag = tag
        self.port = port
        super().__init__(f"The port '{tag}.{port}' is already in use")


def is_port_free(port: int, host: str = "0.0.0.0") -> bool:
    if port < 1 or port > MAX_ALLOCATED_PORT:
        return False
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind((host, port))
    except OSError:
        return False
    return True


def find_free_port(
    attempts: int = DEFAULT_ATTEMPTS,
    *,
    exclude: Iterable[int] = (),
    is_free: Callable[[int], bool] = is_port_free,
) -> int:
    excluded = set(exclude)
    for _ in range(max(1, attempts)):
        port = random.randint(MIN_ALLOCATED_PORT, MAX_ALLOCATED_PORT)
        if port in excluded:
            continue
        if is_free(port):
            return port
    raise PortAllocationError(f"no free port found after {attempts} attempts")


def resolve_inbound_conflicts(
    inbounds: list[Inbound],
    current: Config | None,
    *,
    is_free: Callable[[int], bool] = is_port_free,
    allocate: Callable[..., int] = find_free_port,
) -> list[Inbound]:
    """
    Check candidate inbounds against ports bound on this host.

    Returns the inbound list to run with: the api inbound always gets a freshly
    allocated port, since its address is internal to the node. A busy port is
    accepted only for the `remote` inbound, and only when the running config
    already has that same `remote` listener.
    """
    resolved: list[Inbound] = []
    for inbound in inbounds:
        if inbound.tag == API_TAG:
            try:
                port = allocate(exclude={inbound.port})
            except PortAllocationError as exc:
                raise PortAllocationError(f"API inbound port failed: {exc}") from exc
            logger.debug("api_inbound_port_reassigned requested=%s allocated=%s", inbound.port, port)
            resolved.append(inbound.model_copy(update={"port": port}))
            continue

        if not is_free(inbound.port):
            if inbound.tag != REMOTE_TAG:
                raise PortConflictError(inbound.tag, inbound.port)
            running = current.find_inbound(REMOTE_TAG) if current is not None else None
            if running is None or running.port != inbound.port:
                raise PortConflictError(inbound.tag, inbound.port)

        resolved.append(inbound)
    return resolved
