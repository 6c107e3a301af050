"""Weather observation models."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class MetarObservation(BaseModel):
    """Latest METAR report for a single station."""

    station: str = Field(..., description="ICAO station identifier")
    raw: str = Field(..., description="Raw METAR text")
    observed_at: Optional[datetime] = Field(
        default=None, description="Observation time parsed from the report (UTC)"
    )
    fetched_at: float = Field(..., description="Epoch seconds when the report was fetched")

    model_config = ConfigDict(frozen=True)


__all__ = ["MetarObservation"]
