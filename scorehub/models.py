"""Pydantic schemas for stored records and inbound commands.

Attributes are snake_case; the wire and file formats use camelCase via the
alias generator, so always dump with `by_alias=True` (see `to_wire`).
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def to_wire(model: Optional[BaseModel]) -> Optional[Dict[str, Any]]:
    if model is None:
        return None
    return model.model_dump(mode="json", by_alias=True)


class Scoreboard(CamelModel):
    id: str
    name: str


class ScoreboardCreate(CamelModel):
    name: str = Field(min_length=1)


class SetScore(CamelModel):
    set_number: int
    side1_score: int
    side2_score: int
    winning_side: Optional[int] = None


class ServerInfo(CamelModel):
    side_number: Optional[int] = None
    player_number: Optional[int] = None
    returning_side: Optional[str] = None


class MatchFields(CamelModel):
    """Score state shared by every match payload, minus the scoreboard link."""

    score_string_side1: str = ""
    score_string_side2: str = ""
    side1_point_score: str = ""
    side2_point_score: str = ""
    sets: List[SetScore] = Field(default_factory=list)
    server: ServerInfo = Field(default_factory=ServerInfo)
    player1_name: Optional[str] = None
    player2_name: Optional[str] = None


class MatchData(MatchFields):
    """Create/update command; `scoreboardId` is mandatory."""

    scoreboard_id: str = Field(min_length=1)


class MatchPatch(CamelModel):
    """Partial match fields sent over the real-time channel."""

    score_string_side1: Optional[str] = None
    score_string_side2: Optional[str] = None
    side1_point_score: Optional[str] = None
    side2_point_score: Optional[str] = None
    sets: Optional[List[SetScore]] = None
    server: Optional[ServerInfo] = None
    player1_name: Optional[str] = None
    player2_name: Optional[str] = None


class TennisMatch(MatchData):
    id: str
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # legacy files stored naive timestamps
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


# Real-time payloads

class DeleteScoreboardRequest(CamelModel):
    id: str = Field(min_length=1)


class ScoreboardRef(CamelModel):
    scoreboard_id: str = Field(min_length=1)


class UpdateTennisMatchRequest(ScoreboardRef):
    match_data: MatchPatch = Field(default_factory=MatchPatch)
