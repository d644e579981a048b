"""Shared Pydantic base model."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class FitnessBase(BaseModel):
    """Base model with shared config for provider read models.

    Unknown fields in provider payloads are ignored so API additions never
    break parsing.
    """

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        str_strip_whitespace=True,
        frozen=True,
    )
