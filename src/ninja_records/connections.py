"""Mongo connection profiles — reads config from .ninjastack/mongo.json."""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient
from pydantic import BaseModel, Field, field_validator

from ninja_records.exceptions import ConnectionFailedError
from ninja_records.model import Model

logger = logging.getLogger(__name__)

# Prefix for values read from the environment, e.g. "$env:MONGO_PASSWORD".
_ENV_PREFIX = "$env:"


class _CredentialRedactFilter(logging.Filter):
    """Logging filter that scrubs credentials from driver log messages."""

    _SCRUB_RE = re.compile(
        r"://[A-Za-z0-9_.~%!$&'()*+,;=:-]+@",
    )

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._SCRUB_RE.sub("://***:***@", record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: self._SCRUB_RE.sub("://***:***@", v) if isinstance(v, str) else v
                    for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    self._SCRUB_RE.sub("://***:***@", a) if isinstance(a, str) else a
                    for a in record.args
                )
        return True


class MongoConfig(BaseModel):
    """Connection parameters for one MongoDB database."""

    name: str = Field(description="Logical database name.")
    host: str = Field(default="localhost")
    port: int = Field(default=27017, gt=0, lt=65536)
    user: str = ""
    password: str = Field(default="", repr=False, description="Plain value or '$env:VAR'.")
    replica_set: str | None = Field(default="rs0", description="Transactions require a replica set.")
    options: dict[str, Any] = Field(default_factory=dict, description="Extra AsyncIOMotorClient keyword arguments.")

    @field_validator("name", "host")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    @property
    def url(self) -> str:
        """Connection URL without credentials."""
        url = f"mongodb://{self.host}:{self.port}/"
        if self.replica_set:
            url += f"?replicaSet={self.replica_set}"
        return url

    def resolved_password(self) -> str:
        """Return the password, reading it from the environment for ``$env:`` values."""
        if self.password.startswith(_ENV_PREFIX):
            var_name = self.password[len(_ENV_PREFIX) :]
            raw = os.environ.get(var_name)
            if raw is None:
                logger.warning("Environment variable %s for Mongo password is not set", var_name)
                return ""
            return raw
        return self.password

    def client_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"tz_aware": True}
        if self.user:
            kwargs["username"] = self.user
            kwargs["password"] = self.resolved_password()
        kwargs.update(self.options)
        return kwargs


class ConnectionManager:
    """Manages Motor clients for all configured profiles.

    Reads profiles from `.ninjastack/mongo.json` and lazily creates one client
    per profile on first access.
    """

    def __init__(self, profiles: dict[str, MongoConfig] | None = None) -> None:
        self._profiles: dict[str, MongoConfig] = profiles or {}
        self._clients: dict[str, Any] = {}

    @classmethod
    def from_file(cls, path: str | Path = ".ninjastack/mongo.json") -> ConnectionManager:
        """Load connection profiles from a JSON file."""
        filepath = Path(path)
        if not filepath.exists():
            return cls(profiles={})
        raw = json.loads(filepath.read_text())
        profiles = {name: MongoConfig(**cfg) for name, cfg in raw.items()}
        return cls(profiles=profiles)

    def get_profile(self, name: str) -> MongoConfig:
        """Get a connection profile by name."""
        if name not in self._profiles:
            raise KeyError(f"Connection profile '{name}' not found. Available: {list(self._profiles.keys())}")
        return self._profiles[name]

    def get_client(self, profile_name: str = "default") -> Any:
        """Get or create the Motor client for the given profile."""
        if profile_name not in self._clients:
            self._clients[profile_name] = create_client(self.get_profile(profile_name))
        return self._clients[profile_name]

    def get_database(self, profile_name: str = "default") -> Any:
        return self.get_client(profile_name)[self.get_profile(profile_name).name]

    def get_model(self, profile_name: str = "default", **model_kwargs: Any) -> Model:
        """Return a plain record engine over the profile's database."""
        return Model(self.get_database(profile_name), **model_kwargs)

    def close_all(self) -> None:
        """Close all managed clients."""
        for client in self._clients.values():
            client.close()
        self._clients.clear()


def create_client(config: MongoConfig) -> Any:
    """Build an ``AsyncIOMotorClient`` for *config*.

    Raises:
        ConnectionFailedError: If the driver rejects the configuration.
    """
    _install_credential_filter()
    try:
        return AsyncIOMotorClient(config.url, **config.client_kwargs())
    except Exception as exc:
        logger.error("Failed to connect to database at %s: %s", config.url, type(exc).__name__)
        raise ConnectionFailedError(
            entity_name=config.name,
            operation="connect",
            detail="Could not create the database client.",
            cause=exc,
        ) from exc


def connect(config: MongoConfig, **model_kwargs: Any) -> Model:
    """Create a client for *config* and return a plain record engine over its database."""
    client = create_client(config)
    return Model(client[config.name], **model_kwargs)


_filter_installed = False


def _install_credential_filter() -> None:
    """Attach :class:`_CredentialRedactFilter` to the driver loggers once."""
    global _filter_installed
    if _filter_installed:
        return
    filt = _CredentialRedactFilter()
    for name in ("pymongo", "pymongo.connection", "pymongo.command", "motor"):
        logging.getLogger(name).addFilter(filt)
    _filter_installed = True
