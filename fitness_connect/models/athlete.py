"""Pydantic read models for athlete profile and statistics.

Fetched on demand for display, never persisted.  Field names follow the
Strava API v3 ``DetailedAthlete`` and ``ActivityStats`` payloads.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from fitness_connect.models.base import FitnessBase


# ---------- Profile ----------

class AthleteProfile(FitnessBase):
    id: int
    username: str | None = None
    firstname: str | None = None
    lastname: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    sex: str | None = None
    premium: bool | None = None
    summit: bool | None = None
    weight: float | None = Field(default=None, ge=0)
    ftp: int | None = None
    measurement_preference: str | None = None
    follower_count: int | None = None
    friend_count: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def full_name(self) -> str:
        parts = [p for p in (self.firstname, self.lastname) if p]
        return " ".join(parts) or self.username or f"athlete {self.id}"


# ---------- Stats ----------

class ActivityTotals(FitnessBase):
    count: int = 0
    distance: float = 0.0  # meters
    moving_time: int = 0  # seconds
    elapsed_time: int = 0  # seconds
    elevation_gain: float = 0.0  # meters
    achievement_count: int | None = None

    @property
    def distance_km(self) -> float:
        return self.distance / 1000.0


class AthleteStats(FitnessBase):
    biggest_ride_distance: float | None = None
    biggest_climb_elevation_gain: float | None = None
    recent_ride_totals: ActivityTotals = Field(default_factory=ActivityTotals)
    recent_run_totals: ActivityTotals = Field(default_factory=ActivityTotals)
    recent_swim_totals: ActivityTotals = Field(default_factory=ActivityTotals)
    ytd_ride_totals: ActivityTotals = Field(default_factory=ActivityTotals)
    ytd_run_totals: ActivityTotals = Field(default_factory=ActivityTotals)
    ytd_swim_totals: ActivityTotals = Field(default_factory=ActivityTotals)
    all_ride_totals: ActivityTotals = Field(default_factory=ActivityTotals)
    all_run_totals: ActivityTotals = Field(default_factory=ActivityTotals)
    all_swim_totals: ActivityTotals = Field(default_factory=ActivityTotals)
