from __future__ import annotations

from pydantic import BaseModel, Field


class HomeResponse(BaseModel):
    app: str
    version: str


class MessageResponse(BaseModel):
    message: str


class ManagerStoreRequest(BaseModel):
    """An empty or missing url clears the manager reference."""

    url: str | None = Field(default=None, max_length=1024)
    token: str | None = Field(default=None, max_length=128)


class ManagerRead(BaseModel):
    url: str = ""
    token: str = ""


class ManagerStoreResponse(BaseModel):
    manager: ManagerRead
