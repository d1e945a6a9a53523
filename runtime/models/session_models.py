"""
Session-related models for the RepCoach runtime.

These describe:
- a Session object (one generate / accept-or-reject workflow)
- Turn entries (user / assistant)
- SessionStatus enum (IDLE, GENERATING, PRESENTED, COMMITTING, COMMITTED)
- UserResponse enum (accept / reject)
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from pydantic import BaseModel, Field

from core.coach.models import WorkoutRecord


class SessionStatus(str, Enum):
    IDLE = "IDLE"
    GENERATING = "GENERATING"
    PRESENTED = "PRESENTED"
    COMMITTING = "COMMITTING"
    COMMITTED = "COMMITTED"


class UserResponse(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class Turn(BaseModel):
    role: str          # "user" or "assistant"
    message: str       # raw text
    type: Optional[str] = None  # "artifact", "response", etc.
    timestamp: Optional[str] = None  # ISO string


class Session(BaseModel):
    session_id: str
    owner_id: int
    seed: Dict[str, Any] = Field(default_factory=dict)
    status: SessionStatus = SessionStatus.IDLE
    turns: List[Turn] = Field(default_factory=list)
    context: List[WorkoutRecord] = Field(default_factory=list)
    current_artifact: Optional[Any] = None
    pending_response: Optional[UserResponse] = None
    regeneration_count: int = 0
    committed_id: Optional[int] = None
    created_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    # Monotonic clock reading, owned by SessionStore.
    last_activity: float = 0.0
    # Bound StreamChannel, if any. Never serialized.
    channel: Optional[Any] = Field(default=None, exclude=True)

    @property
    def is_terminal(self) -> bool:
        return self.committed_id is not None
