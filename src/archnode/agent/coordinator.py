from __future__ import annotations

import asyncio
import logging

import httpx
from pydantic import ValidationError

from archnode.settings import APP_NAME
from archnode.xray.config import Config, ConfigValidationError, equals, parse_config
from archnode.xray.validation import validate_config

from .engine import XrayEngine
from .metrics import SYNC_CYCLES
from .state import Manager, NodeStateStore
from .worker import run_periodic

logger = logging.getLogger("archnode.agent.coordinator")


class RemoteFetchError(RuntimeError):
    pass


class Coordinator:
    """Pulls the desired config from the manager and hands changes to the engine."""

    def __init__(
        self,
        store: NodeStateStore,
        engine: XrayEngine,
        *,
        client: httpx.AsyncClient,
        interval: float = 30,
        app_version: str = "dev",
    ) -> None:
        self.store = store
        self.engine = engine
        self.client = client
        self.interval = interval
        self.app_version = app_version

    async def fetch_config(self, manager: Manager) -> Config:
        url = f"{manager.url}/configs"
        headers = {
            "Accept": "application/json",
            "X-App-Name": APP_NAME,
            "X-App-Version": self.app_version,
        }
        if manager.token:
            headers["Authorization"] = f"Bearer {manager.token}"
        try:
            response = await self.client.get(url, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise RemoteFetchError(f"GET {url} returned {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise RemoteFetchError(f"GET {url} failed: {exc!r}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteFetchError(f"GET {url} returned invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise RemoteFetchError(f"GET {url} returned {type(payload).__name__}, expected an object")

        try:
            config = parse_config(payload)
            validate_config(config)
        except (ValidationError, ConfigValidationError) as exc:
            raise RemoteFetchError(f"GET {url} returned an invalid config: {exc}") from exc
        return config

    async def sync(self) -> bool:
        """Run one reconciliation cycle; True when a new config was applied."""
        manager = self.store.manager
        if manager is None:
            SYNC_CYCLES.labels("noop").inc()
            return False

        try:
            remote = await self.fetch_config(manager)
        except RemoteFetchError:
            SYNC_CYCLES.labels("failed").inc()
            raise

        if equals(self.engine.config, remote):
            SYNC_CYCLES.labels("unchanged").inc()
            logger.debug("sync_unchanged manager=%s", manager.url)
            return False

        logger.info("sync_applying manager=%s inbounds=%s", manager.url, len(remote.inbounds))
        self.engine.set_config(remote, source="manager")
        self.engine.request_restart()
        SYNC_CYCLES.labels("applied").inc()
        return True

    async def run(self, stop: asyncio.Event) -> None:
        async def _on_stop() -> None:
            logger.debug("coordinator_sync_stopped")

        await run_periodic(self.interval, self.sync, stop, name="coordinator_sync", on_stop=_on_stop)
