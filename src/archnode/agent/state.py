from __future__ import annotations

import json
import logging
import random
import secrets
import string
import threading
from collections.abc import Callable
from pathlib import Path

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from .ports import MAX_ALLOCATED_PORT, MIN_ALLOCATED_PORT, PortAllocationError, find_free_port, is_port_free

logger = logging.getLogger("archnode.agent.state")

TOKEN_LENGTH = 16
_TOKEN_ALPHABET = string.ascii_letters + string.digits
_URL = TypeAdapter(AnyHttpUrl)


class PersistenceError(RuntimeError):
    pass


class NodeSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    http_port: int = Field(alias="httpPort", ge=1, le=MAX_ALLOCATED_PORT)
    http_token: str = Field(alias="httpToken", min_length=1, max_length=128)


class Manager(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str = Field(min_length=1, max_length=1024)
    token: str = Field(default="", max_length=128)

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        try:
            _URL.validate_python(value)
        except ValidationError as exc:
            raise ValueError(f"invalid url: {value}") from exc
        return value.rstrip("/")


class NodeState(BaseModel):
    model_config = ConfigDict(frozen=True)

    settings: NodeSettings
    manager: Manager | None = None


def random_token(length: int = TOKEN_LENGTH) -> str:
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


def default_state() -> NodeState:
    return NodeState(
        settings=NodeSettings(
            http_port=random.randint(MIN_ALLOCATED_PORT, MAX_ALLOCATED_PORT),
            http_token=random_token(),
        ),
        manager=None,
    )


class NodeStateStore:
    """
    Durable node state kept in a single JSON file.

    Every public operation holds one store-wide lock, and every mutation is
    written through `save()` before the call returns.
    """

    def __init__(
        self,
        path: Path,
        *,
        port_is_free: Callable[[int], bool] = is_port_free,
        allocate_port: Callable[[], int] = find_free_port,
    ) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._port_is_free = port_is_free
        self._allocate_port = allocate_port
        self._state = default_state()
        self._loaded = False

    @property
    def loaded(self) -> bool:
        with self._lock:
            return self._loaded

    @property
    def state(self) -> NodeState:
        with self._lock:
            return self._state

    @property
    def http_port(self) -> int:
        with self._lock:
            return self._state.settings.http_port

    @property
    def http_token(self) -> str:
        with self._lock:
            return self._state.settings.http_token

    @property
    def manager(self) -> Manager | None:
        with self._lock:
            return self._state.manager

    def init(self) -> None:
        with self._lock:
            if self.path.exists():
                self._load()
                return

            state = self._state
            if not self._port_is_free(state.settings.http_port):
                try:
                    port = self._allocate_port()
                except PortAllocationError as exc:
                    raise PersistenceError(f"cannot find free port: {exc}") from exc
                state = state.model_copy(update={"settings": state.settings.model_copy(update={"http_port": port})})
            self._state = state
            self._save()
            self._loaded = True
            logger.info("state_created path=%s http_port=%s", self.path, state.settings.http_port)

    def load(self) -> None:
        with self._lock:
            self._load()

    def save(self) -> None:
        with self._lock:
            self._save()

    def set_manager(self, manager: Manager | None) -> NodeState:
        """
        Replace the manager reference and persist it.

        On a write failure the new value stays in memory and PersistenceError is
        raised so the caller can report the mismatch.
        """
        with self._lock:
            self._state = self._state.model_copy(update={"manager": manager})
            try:
                self._save()
            except PersistenceError:
                logger.exception("state_save_failed path=%s", self.path)
                raise
            logger.info("manager_updated url=%s", manager.url if manager else None)
            return self._state

    def _load(self) -> None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"cannot read state file {self.path}: {exc}") from exc
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            raise PersistenceError(f"state file {self.path} is not valid JSON: {exc}") from exc
        try:
            self._state = NodeState.model_validate(payload)
        except ValidationError as exc:
            raise PersistenceError(f"state file {self.path} is invalid: {exc}") from exc
        self._loaded = True
        logger.info("state_loaded path=%s manager=%s", self.path, self._state.manager is not None)

    def _save(self) -> None:
        content = json.dumps(self._state.model_dump(mode="json", by_alias=True), ensure_ascii=True, indent=2) + "\n"
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(content, encoding="utf-8")
            tmp.replace(self.path)
        except OSError as exc:
            raise PersistenceError(f"cannot write state file {self.path}: {exc}") from exc
