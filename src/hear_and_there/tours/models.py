from __future__ import annotations

import math
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


def _to_minutes(value: Any) -> Any:
    if isinstance(value, float) and not math.isnan(value):
        return int(math.ceil(value))
    return value


Minutes = Annotated[int, BeforeValidator(_to_minutes)]


class CandidateStop(BaseModel):
    """One stop of a candidate tour as produced by the model (camelCase) or by code (snake_case)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    latitude: float
    longitude: float
    dwell_minutes: Minutes = Field(default=10, alias="dwellMinutes", ge=0)
    walk_minutes_from_previous: Minutes = Field(default=0, alias="walkMinutesFromPrevious", ge=0)
    place_id: Optional[str] = Field(default=None, alias="placeId")


class CandidateTour(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    title: str
    abstract: str = ""
    theme: str = ""
    estimated_total_minutes: Minutes = Field(alias="estimatedTotalMinutes", ge=0)
    stops: list[CandidateStop] = Field(min_length=1)


def candidate_schema() -> dict[str, Any]:
    """JSON schema of one candidate tour, using the field names the model is asked to emit."""
    return CandidateTour.model_json_schema(by_alias=True)
