"""Pydantic schemas for gate responses."""

from __future__ import annotations

from pydantic import BaseModel, Field


class RateLimitErrorBody(BaseModel):
    """JSON body of a 429 rejection."""

    error: str = "Too Many Requests"
    message: str = "Rate limit exceeded. Please try again later."
    retry_after: int | None = Field(default=None, serialization_alias="retryAfter")
