"""Pydantic models for image processing task messages."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List

from pydantic import BaseModel, Field, field_validator


class ImageProcessingTask(BaseModel):
    """Task envelope published when a product is created."""

    product_id: int = Field(ge=0, description="Identifier of the product owning the images.")
    images: List[str] = Field(min_length=1, description="Source image locators, in display order.")

    @field_validator("images")
    @classmethod
    def reject_blank_locators(cls, value: List[str]) -> List[str]:
        """Ensure every locator carries something to fetch."""

        for locator in value:
            if not locator.strip():
                raise ValueError("image locators must not be blank")
        return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeadLetterRecord(BaseModel):
    """Diagnostic record published for tasks that will never succeed."""

    product_id: int = Field(ge=0)
    error: str
    timestamp: datetime = Field(default_factory=_utcnow)


class TaskOutcome(str, Enum):
    """Acknowledgment decision for one delivery."""

    ack = "ack"
    requeue = "requeue"
    drop = "drop"
