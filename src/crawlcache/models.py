"""Canonical Pydantic models shared across all crawlcache modules.

This is the single source of truth for data shapes in the project. The
models fall into two groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`CacheConfig`, :class:`GateConfig`, :class:`RequestConfig` and
    :class:`GlobalConfig`.

**Cache record models** -- serialised into the cache directory:
    :class:`TransactionRecord` and :class:`ControlRecord` make up the
    control record (``cache.json``); :class:`RequestDescriptor` and
    :class:`ResponseDescriptor` are the two structured segments at the head
    of every cache entry file.

All models use Pydantic v2.
"""

from __future__ import annotations

import base64
from typing import Optional

from pydantic import BaseModel, Field, field_serializer, field_validator


# --- Configuration ---


DEFAULT_USER_AGENT = "crawlcache/0.1 (+https://pypi.org/project/crawlcache/)"


class CacheConfig(BaseModel):
    """Response cache settings stored in :class:`GlobalConfig`."""

    directory: Optional[str] = Field(
        default=None,
        description="Cache root directory. Defaults to the XDG cache directory.",
    )
    retention: int = Field(
        default=3, ge=1, description="Number of transactions kept on disk"
    )


class GateConfig(BaseModel):
    """Access gate settings stored in :class:`GlobalConfig`."""

    interval_seconds: float = Field(
        default=2.0, ge=0, description="Minimum spacing between live requests"
    )


class RequestConfig(BaseModel):
    """HTTP transport settings applied to every live request."""

    timeout: float = Field(default=30.0, description="Request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    follow_redirects: bool = Field(default=True, description="Follow HTTP redirects")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User-Agent header")


class GlobalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/crawlcache/config.json``.

    Loaded and saved by :func:`~crawlcache.config.load_global_config` and
    :func:`~crawlcache.config.save_global_config`. Environment variables and
    CLI flags take precedence; see :func:`~crawlcache.config.resolve_config`.
    """

    cache: CacheConfig = Field(default_factory=CacheConfig)
    gate: GateConfig = Field(default_factory=GateConfig)
    request: RequestConfig = Field(default_factory=RequestConfig)


# --- Control record ---


class TransactionRecord(BaseModel):
    """One retained transaction as listed in the control record."""

    name: str
    create_at: str


class ControlRecord(BaseModel):
    """The persisted, newest-first list of retained transactions."""

    transactions: list[TransactionRecord] = Field(default_factory=list)


# --- Cache entry descriptors ---


class RequestDescriptor(BaseModel):
    """The request half of a cache entry.

    ``payload`` holds at most the first 256 bytes of the request body and
    is stored base64-encoded; ``None`` means the request had no re-openable
    body.
    """

    method: str
    url: str
    payload: Optional[bytes] = None

    @field_serializer("payload")
    def _encode_payload(self, payload: Optional[bytes]) -> Optional[str]:
        if payload is None:
            return None
        return base64.b64encode(payload).decode("ascii")

    @field_validator("payload", mode="before")
    @classmethod
    def _decode_payload(cls, value: object) -> object:
        if isinstance(value, str):
            return base64.b64decode(value, validate=True)
        return value


class ResponseDescriptor(BaseModel):
    """The response half of a cache entry, everything but the body."""

    status: str
    status_code: int
    proto: str = "HTTP/1.1"
    proto_major: int = 1
    proto_minor: int = 1
    headers: dict[str, list[str]] = Field(default_factory=dict)
    content_length: int = -1
    transfer_encoding: list[str] = Field(default_factory=list)
    uncompressed: bool = False
