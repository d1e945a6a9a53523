"""
HTTP request/response models for the RepCoach runtime API.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Literal, Optional

from .session_models import SessionStatus, UserResponse


Timeframe = Literal["7d", "30d", "3m", "6m"]


class StartSessionResponse(BaseModel):
    session_id: str
    message: str = "Session created"


class RespondRequest(BaseModel):
    session_id: str
    response: UserResponse


class RespondResponse(BaseModel):
    """
    Acknowledgement for /coach/respond.

    - after a rejection: regeneration_count is the new count and a fresh
      plan has been pushed to the stream
    - after an acceptance: committed_id is the id of the saved workout
    """
    message: str
    regeneration_count: int
    committed_id: Optional[int] = None


class SessionView(BaseModel):
    session_id: str
    status: SessionStatus
    current_artifact: Optional[Any] = None
    regeneration_count: int
    committed_id: Optional[int] = None
    stream_connected: bool


class AskRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    question: str = Field(min_length=1)
    timeframe: Timeframe


class DateRange(BaseModel):
    start: str
    end: str


class DataCount(BaseModel):
    workouts: int
    exercises: int
    date_range: DateRange


class AskResponse(BaseModel):
    session_id: str
    data_count: DataCount
