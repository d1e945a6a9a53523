from typing import List, Optional, Union

from pydantic import BaseModel, Field, StrictFloat, StrictInt


Quantity = Union[StrictInt, StrictFloat]


class PlannedExercise(BaseModel):
    """
    One line of a generated workout plan.

    `reps` is the primary quantity and is required; `weight` is optional.
    Values are kept exactly as the model produced them (no rounding, no
    unit conversion).
    """
    name: str = Field(min_length=1)
    reps: Quantity
    weight: Optional[Quantity] = None


class GeneratedPlanPayload(BaseModel):
    """Shape the model is asked to return."""
    exercises: List[PlannedExercise] = Field(min_length=1)


class WorkoutPlan(BaseModel):
    """A candidate workout: the artifact proposed by the coach."""
    date: str
    exercises: List[PlannedExercise]


class LoggedExercise(BaseModel):
    name: str
    reps: Quantity
    weight: Optional[Quantity] = None
    time_seconds: Optional[Quantity] = None


class WorkoutRecord(BaseModel):
    """A workout from the user's log, used as generation context."""
    id: int
    date: str
    with_instructor: bool = False
    exercises: List[LoggedExercise] = Field(default_factory=list)


class InsightAnswer(BaseModel):
    """Answer produced by the insights assistant for a single question."""
    question: str
    text: str
