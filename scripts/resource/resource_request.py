#!/usr/bin/env python3
"""
Request models for the Harbor chart resource.

Concourse passes each resource script a JSON document on stdin. The models
here are frozen once parsed; `server_url` is normalized to end with "/".
"""

import json
from dataclasses import dataclass
from typing import Any, Callable, TextIO, TypeVar

from common import InvalidRequestError

T = TypeVar("T")


def _required(data: dict[str, Any], key: str, section: str) -> str:
    value = data.get(key)
    if value is None or value == "":
        raise InvalidRequestError(f"Missing required field: {section}.{key}")
    return str(value)


def _optional(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    return None if value is None else str(value)


def _section(data: Any, key: str, required: bool = True) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise InvalidRequestError("Request must be a JSON object")
    section = data.get(key)
    if section is None and not required:
        return {}
    if not isinstance(section, dict):
        raise InvalidRequestError(f"Missing or invalid section: {key}")
    return section


@dataclass(frozen=True)
class Source:
    """Resource source configuration."""

    server_url: str
    project: str
    chart_name: str
    version_range: str | None = None
    basic_auth_username: str | None = None
    basic_auth_password: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Source":
        server_url = _required(data, "server_url", "source")
        if not server_url.endswith("/"):
            server_url = f"{server_url}/"
        return cls(
            server_url=server_url,
            project=_required(data, "project", "source"),
            chart_name=_required(data, "chart_name", "source"),
            version_range=_optional(data, "version_range"),
            basic_auth_username=_optional(data, "basic_auth_username"),
            basic_auth_password=_optional(data, "basic_auth_password"),
        )

    @property
    def has_credentials(self) -> bool:
        """Check if both basic auth username and password are configured."""
        return bool(self.basic_auth_username and self.basic_auth_password)


@dataclass(frozen=True)
class OutParams:
    """Parameters of a put step."""

    chart: str
    sign: bool = False
    key_data: str | None = None
    key_file: str | None = None
    key_passphrase: str | None = None
    app_version: str | None = None
    version: str | None = None
    version_file: str | None = None
    force: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OutParams":
        return cls(
            chart=_required(data, "chart", "params"),
            sign=data.get("sign") is True,
            key_data=_optional(data, "key_data"),
            key_file=_optional(data, "key_file"),
            key_passphrase=_optional(data, "key_passphrase"),
            app_version=_optional(data, "app_version"),
            version=_optional(data, "version"),
            version_file=_optional(data, "version_file"),
            force=data.get("force") is True,
        )


@dataclass(frozen=True)
class InParams:
    """Parameters of a get step."""

    target_basename: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InParams":
        return cls(target_basename=_optional(data, "target_basename"))


@dataclass(frozen=True)
class PublishRequest:
    """Request handed to the out script."""

    source: Source
    params: OutParams

    @classmethod
    def from_dict(cls, data: Any) -> "PublishRequest":
        return cls(
            source=Source.from_dict(_section(data, "source")),
            params=OutParams.from_dict(_section(data, "params")),
        )


@dataclass(frozen=True)
class FetchRequest:
    """Request handed to the in script."""

    source: Source
    version: str
    params: InParams

    @classmethod
    def from_dict(cls, data: Any) -> "FetchRequest":
        version = _section(data, "version")
        return cls(
            source=Source.from_dict(_section(data, "source")),
            version=_required(version, "version", "version"),
            params=InParams.from_dict(_section(data, "params", required=False)),
        )


def read_request(stream: TextIO, factory: Callable[[Any], T]) -> T:
    """
    Read and parse a JSON request from a text stream.

    Args:
        stream: Stream to read (normally sys.stdin)
        factory: Callable building the request model from decoded JSON

    Returns:
        Parsed request model

    Raises:
        InvalidRequestError: If the input is not valid JSON or misses fields
    """
    raw = stream.read()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidRequestError(f"Unable to parse JSON request from stdin: {e}") from e

    return factory(data)
