from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from archnode.enums import API_TAG
from archnode.xray.config import Config, config_to_dict, new_config

from .metrics import CONFIG_UPDATES, ENGINE_RESTARTS, RUNNING_INBOUNDS
from .ports import find_free_port

logger = logging.getLogger("archnode.agent.engine")

STATS_TIMEOUT_SECONDS = 10


class EngineControlError(RuntimeError):
    pass


class XrayEngine:
    """
    Owner of the running Xray config and process.

    The config is an immutable value: callers replace it with `set_config` and
    never edit it. Restarts are funnelled through one background task so that
    bursts of `request_restart()` calls collapse into sequential restarts that
    always apply the latest config.
    """

    def __init__(
        self,
        binary_path: str,
        config_path: str | Path,
        log_level: str,
        *,
        access_log: str = "",
        error_log: str = "",
        dry_run: bool = False,
        grace_seconds: float = 10,
        allocate_port: Callable[[], int] = find_free_port,
    ) -> None:
        self.binary_path = binary_path
        self.config_path = Path(config_path)
        self.log_level = log_level
        self.access_log = access_log
        self.error_log = error_log
        self.dry_run = dry_run
        self.grace_seconds = grace_seconds
        self._allocate_port = allocate_port
        self._config: Config | None = None
        self._process: asyncio.subprocess.Process | None = None
        self._restart_requested = asyncio.Event()
        self._restart_task: asyncio.Task[None] | None = None
        self._restarting = False

    @property
    def config(self) -> Config:
        if self._config is None:
            raise EngineControlError("engine is not initialised")
        return self._config

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    def set_config(self, config: Config, *, source: str = "api") -> None:
        self._config = config
        CONFIG_UPDATES.labels(source).inc()
        RUNNING_INBOUNDS.set(len(config.inbounds))

    def init(self) -> None:
        config = new_config(
            self.log_level,
            access_log=self.access_log,
            error_log=self.error_log,
            api_port=self._allocate_port(),
        )
        self.set_config(config, source="init")
        self.write_config()

    def write_config(self) -> None:
        content = json.dumps(config_to_dict(self.config), ensure_ascii=True, indent=2) + "\n"
        tmp = self.config_path.with_suffix(self.config_path.suffix + ".tmp")
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(content, encoding="utf-8")
            tmp.replace(self.config_path)
        except OSError as exc:
            raise EngineControlError(f"cannot write xray config {self.config_path}: {exc}") from exc

    async def start(self) -> None:
        self.write_config()
        await self._spawn()

    async def restart(self) -> None:
        self.write_config()
        await self._terminate()
        await self._spawn()
        logger.info("xray_restarted inbounds=%s dry_run=%s", len(self.config.inbounds), self.dry_run)

    def request_restart(self) -> None:
        """Schedule a restart without waiting for it; must be called from the event loop."""
        self._restart_requested.set()
        if self._restart_task is None or self._restart_task.done():
            self._restart_task = asyncio.get_running_loop().create_task(
                self._restart_loop(), name="xray-restart"
            )

    async def settle(self, poll_seconds: float = 0.01) -> None:
        """Wait until every requested restart has been carried out."""
        while self._restart_requested.is_set() or self._restarting:
            await asyncio.sleep(poll_seconds)

    async def query_stats(self) -> dict[str, Any]:
        api_inbound = self.config.find_inbound(API_TAG)
        if api_inbound is None:
            raise EngineControlError("api inbound not found")
        if self.dry_run:
            return {"stat": []}

        server = f"{api_inbound.listen or '127.0.0.1'}:{api_inbound.port}"
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary_path,
                "api",
                "statsquery",
                f"--server={server}",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=STATS_TIMEOUT_SECONDS)
        except (OSError, asyncio.TimeoutError) as exc:
            raise EngineControlError(f"statsquery failed: {exc!r}") from exc
        if proc.returncode != 0:
            details = (stderr or b"").decode("utf-8", "replace").strip() or "no output"
            raise EngineControlError(f"statsquery exited with {proc.returncode}: {details[:400]}")
        try:
            payload = json.loads(stdout or b"{}")
        except ValueError as exc:
            raise EngineControlError(f"statsquery returned invalid JSON: {exc}") from exc
        return payload if isinstance(payload, dict) else {"stat": payload}

    async def close(self, grace_seconds: float | None = None) -> None:
        if self._restart_task is not None:
            self._restart_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._restart_task
            self._restart_task = None
        await self._terminate(grace_seconds)
        logger.debug("xray_closed")

    async def _restart_loop(self) -> None:
        while True:
            await self._restart_requested.wait()
            self._restart_requested.clear()
            self._restarting = True
            try:
                await self.restart()
                ENGINE_RESTARTS.labels("ok").inc()
            except EngineControlError:
                ENGINE_RESTARTS.labels("failed").inc()
                logger.exception("xray_restart_failed")
            except Exception:  # noqa: BLE001
                ENGINE_RESTARTS.labels("failed").inc()
                logger.exception("xray_restart_failed unexpected=true")
            finally:
                self._restarting = False

    async def _spawn(self) -> None:
        if self.dry_run:
            logger.info("xray_spawn_skipped dry_run=true config=%s", self.config_path)
            return
        if not Path(self.binary_path).exists():
            raise EngineControlError(f"xray binary not found: {self.binary_path}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.binary_path,
                "run",
                "-c",
                str(self.config_path),
                stdout=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            raise EngineControlError(f"cannot start xray: {exc}") from exc
        logger.info("xray_started pid=%s config=%s", self._process.pid, self.config_path)

    async def _terminate(self, grace_seconds: float | None = None) -> None:
        proc = self._process
        self._process = None
        if proc is None or proc.returncode is not None:
            return
        grace = self.grace_seconds if grace_seconds is None else grace_seconds
        try:
            proc.terminate()
            await asyncio.wait_for(proc.wait(), timeout=grace)
        except ProcessLookupError:
            return
        except asyncio.TimeoutError:
            logger.warning("xray_kill pid=%s grace_seconds=%s", proc.pid, grace)
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
