"""Configuration model and helpers for the feed controllers."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Literal, Tuple

from pydantic import BaseModel, Field, HttpUrl, ValidationError

__all__ = ["ClientConfig", "DEFAULT_CONFIG_PATH", "ENV_PREFIX"]

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "data" / "client.json"
ENV_PREFIX = "FEEDCONTROL_"


class ClientConfig(BaseModel):
    """Connection and behaviour settings shared by both controllers."""

    base_url: HttpUrl = Field(..., description="Root URL of the ranking backend")
    auth_mode: Literal["session", "secret"] = Field(
        default="session",
        description=(
            "``session`` uses cookie sessions with an anti-forgery token; ``secret`` attaches "
            "a static shared secret to every admin call."
        ),
    )
    secret_transport: Literal["header", "query"] = Field(
        default="header",
        description="Where the shared secret travels in ``secret`` mode",
    )
    admin_secret: str | None = Field(
        default=None,
        description="Shared secret used in ``secret`` mode; lets ``probe`` succeed on startup",
    )
    poll_interval: float = Field(default=3.0, gt=0, description="Seconds between status polls")
    request_timeout: Tuple[float, float] = Field(
        default=(10, 60),
        description="Connect and read timeouts passed to ``requests``",
    )
    batch_limit: int | None = Field(
        default=None,
        ge=1,
        le=100,
        description="Optional page size sent as ``limit`` with feed fetches",
    )
    default_hide_penalty: float = Field(
        default=10,
        gt=0,
        description="Penalty proposed for suppress actions when the backend supplies none",
    )

    @property
    def root(self) -> str:
        """Return the base URL without a trailing slash."""

        return str(self.base_url).rstrip("/")

    def url_for(self, path: str) -> str:
        """Join ``path`` onto the configured backend root."""

        return f"{self.root}/{path.lstrip('/')}"

    @classmethod
    def from_file(cls, path: Path | str | None = None) -> "ClientConfig":
        """Load configuration data from a JSON file."""

        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise FileNotFoundError(f"Configuration file not found: {config_path}") from exc
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in configuration file: {config_path}") from exc

        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ValueError(f"Configuration file is invalid: {config_path}\n{exc}") from exc

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "ClientConfig":
        """Build a configuration from ``FEEDCONTROL_*`` environment variables."""

        env = os.environ if environ is None else environ
        data: dict[str, object] = {}
        for field_name in cls.model_fields:
            value = env.get(ENV_PREFIX + field_name.upper())
            if value is None or value == "":
                continue
            if field_name == "request_timeout":
                data[field_name] = tuple(float(part) for part in value.split(","))
            else:
                data[field_name] = value

        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ValueError(f"Environment configuration is invalid\n{exc}") from exc

    def dump(self, path: Path | str | None = None) -> None:
        """Persist the configuration back to disk as JSON."""

        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(self.model_dump_json(indent=2), encoding="utf-8")
