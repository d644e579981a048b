"""Read models for provider data that is displayed but never stored."""

from fitness_connect.models.athlete import ActivityTotals, AthleteProfile, AthleteStats
from fitness_connect.models.base import FitnessBase

__all__ = ["ActivityTotals", "AthleteProfile", "AthleteStats", "FitnessBase"]
