"""Client configuration.

Configuration is an explicit value held by the client; nothing is read
from module-level globals at request time. :meth:`ClientConfig.from_env`
is the only place the environment is consulted.
"""

from __future__ import annotations

import os
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from colloquy.options import GenerationOptions
from colloquy.sse import DEFAULT_MAX_DECODE_ERRORS

DEFAULT_BASE_URL = "https://api.openai.com/v1"


class RetryPolicy(BaseModel):
    """How many attempts a call gets and how long to wait between them.

    Args:
        max_attempts: Total attempts, including the first.
        delay: Base delay in seconds.
        backoff: ``"fixed"`` waits ``delay`` every time, ``"linear"``
            waits ``delay * n`` after the n-th failure and
            ``"exponential"`` waits ``delay * 2 ** (n - 1)``.
    """

    max_attempts: int = Field(default=3, ge=1)
    delay: float = Field(default=1.0, ge=0.0)
    backoff: Literal["fixed", "linear", "exponential"] = "fixed"

    def delay_after(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number *attempt* (1-based)."""
        if self.backoff == "linear":
            return self.delay * attempt
        if self.backoff == "exponential":
            return self.delay * (2 ** (attempt - 1))
        return self.delay


class ClientConfig(BaseModel):
    api_key: str | None = None
    base_url: str = DEFAULT_BASE_URL
    default_model: str | None = None
    default_options: GenerationOptions = Field(default_factory=GenerationOptions)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    timeout: float = Field(default=60.0, gt=0)
    connect_timeout: float | None = Field(default=None, gt=0)
    read_timeout: float | None = Field(default=None, gt=0)
    max_decode_errors: int = Field(default=DEFAULT_MAX_DECODE_ERRORS, ge=0)
    headers: dict[str, str] = Field(default_factory=dict)
    model_aliases: dict[str, str] = Field(default_factory=dict)

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def chat_url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def request_headers(self, stream: bool = False) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream" if stream else "application/json",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        headers.update(self.headers)
        return headers

    @classmethod
    def from_env(cls, **overrides: Any) -> ClientConfig:
        """Build a config from ``COLLOQUY_*`` environment variables.

        The API key falls back to ``OPENAI_API_KEY``. Keyword arguments
        take precedence over the environment.
        """
        values: dict[str, Any] = {}
        api_key = os.getenv("COLLOQUY_API_KEY") or os.getenv("OPENAI_API_KEY")
        if api_key:
            values["api_key"] = api_key
        if os.getenv("COLLOQUY_BASE_URL"):
            values["base_url"] = os.environ["COLLOQUY_BASE_URL"]
        if os.getenv("COLLOQUY_MODEL"):
            values["default_model"] = os.environ["COLLOQUY_MODEL"]
        if os.getenv("COLLOQUY_TIMEOUT"):
            values["timeout"] = os.environ["COLLOQUY_TIMEOUT"]

        retry: dict[str, Any] = {}
        if os.getenv("COLLOQUY_MAX_ATTEMPTS"):
            retry["max_attempts"] = os.environ["COLLOQUY_MAX_ATTEMPTS"]
        if os.getenv("COLLOQUY_RETRY_DELAY"):
            retry["delay"] = os.environ["COLLOQUY_RETRY_DELAY"]
        if os.getenv("COLLOQUY_BACKOFF"):
            retry["backoff"] = os.environ["COLLOQUY_BACKOFF"]
        if retry:
            values["retry"] = retry

        values.update(overrides)
        return cls.model_validate(values)
