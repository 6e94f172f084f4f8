"""
Validated configuration for a batcher.
"""

from __future__ import annotations

import typing as t
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StopPolicy(str, Enum):
    """What ``Batcher.stop`` does with requests that are still pending."""

    KEEP = "keep"
    FAIL = "fail"


class BatcherConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    period_seconds: float = Field(
        gt=0,
        description="time window during which requests accumulate before a flush",
    )
    timeout_seconds: float | None = Field(
        default=None,
        description="optional, execution budget of a single flush. None, False or 0 disables it",
    )
    name: str | None = Field(
        default=None,
        description="optional, name used to tag diagnostic logs",
    )
    stop_policy: StopPolicy = Field(
        default=StopPolicy.KEEP,
        description="keep pending requests queued on stop, or fail them with BatcherStoppedError",
    )

    @field_validator("timeout_seconds", mode="before")
    @classmethod
    def normalize_timeout(cls, value: t.Any) -> t.Any:
        if value is None or value is False:
            return None
        if isinstance(value, str) and value.strip().lower() in {"", "none", "false", "0"}:
            return None
        return value

    @field_validator("timeout_seconds")
    @classmethod
    def check_timeout(cls, value: float | None) -> float | None:
        if value is None or value == 0:
            return None
        if value < 0:
            raise ValueError("timeout_seconds must be positive, or None/False/0 to disable it")
        return value


class BatcherSettings(BaseSettings, BatcherConfig):
    """
    Batcher configuration read from the environment.

    Every field can be set through a ``COALESCER_`` prefixed variable, e.g.
    ``COALESCER_PERIOD_SECONDS=0.1``, or a ``.env`` file. Keyword arguments take
    precedence over both.
    """

    model_config = SettingsConfigDict(
        env_prefix="COALESCER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )
