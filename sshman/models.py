from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, field_validator


class AuthMethod(str, Enum):
    KEY = "key"
    PASSWORD = "password"


class Server(BaseModel):
    """SSH server record stored in the servers file."""

    name: str
    host: str = ""
    user: str = ""
    port: int = 22
    key_path: str | None = None
    password: str | None = None
    description: str | None = None
    default_dir: str | None = None

    @field_validator("name")
    @classmethod
    def _lowercase_name(cls, v: str) -> str:
        return v.lower()

    @field_validator("port", mode="before")
    @classmethod
    def _default_port(cls, v):
        # Missing or hand-mangled ports fall back to the SSH default
        if v is None or v == "":
            return 22
        try:
            return int(v)
        except (TypeError, ValueError):
            return 22

    @property
    def auth_method(self) -> AuthMethod | None:
        """Auth method used for connecting. Key takes precedence over password."""
        if self.key_path:
            return AuthMethod.KEY
        if self.password:
            return AuthMethod.PASSWORD
        return None

    @property
    def is_complete(self) -> bool:
        return bool(self.host) and bool(self.user)

    def display(self) -> str:
        """Return formatted server display string."""
        auth = {AuthMethod.KEY: "key", AuthMethod.PASSWORD: "pwd"}.get(self.auth_method, "---")
        return f"{self.name}  [{self.user}@{self.host}:{self.port} | {auth}]"
