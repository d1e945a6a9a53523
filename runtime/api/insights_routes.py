"""HTTP routes for workout insights (question answering over the log).

- POST /insights/ask          -> (question, timeframe); returns a session_id
                                 and a summary of the data in range
- GET  /insights/stream/{id}  -> Server-Sent Events; connecting streams the
                                 answer as `content` chunks, then `artifact`
                                 and `complete`
"""

import logging
from uuid import uuid4

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from ..agents.generation_workflow import GenerationWorkflow
from ..models.api_models import AskRequest, AskResponse, DataCount, DateRange
from ..store.workout_store import WorkoutStore
from .deps import (
    get_insights_workflow,
    get_owner_id,
    get_workout_store,
    open_event_stream,
)


logger = logging.getLogger(__name__)

router = APIRouter(tags=["insights"])


@router.post("/ask", response_model=AskResponse)
async def ask(
    body: AskRequest,
    owner_id: int = Depends(get_owner_id),
    workflow: GenerationWorkflow = Depends(get_insights_workflow),
    workout_store: WorkoutStore = Depends(get_workout_store),
) -> AskResponse:
    """Start an insights session for a question over a timeframe."""
    seed = {"question": body.question, "timeframe": body.timeframe}
    start, end = workout_store.window_for(seed)
    workouts = workout_store.list_workouts(owner_id, start, end)
    exercise_names = {e.name for w in workouts for e in w.exercises}

    session = workflow.session_store.create(str(uuid4()), owner_id, seed)
    logger.info(
        "[INSIGHTS] Session %s started for user %s (timeframe=%s, workouts=%d, exercises=%d)",
        session.session_id,
        owner_id,
        body.timeframe,
        len(workouts),
        len(exercise_names),
    )

    return AskResponse(
        session_id=session.session_id,
        data_count=DataCount(
            workouts=len(workouts),
            exercises=len(exercise_names),
            date_range=DateRange(start=start.isoformat(), end=end.isoformat()),
        ),
    )


@router.get("/stream/{session_id}")
async def stream_answer(
    session_id: str,
    request: Request,
    owner_id: int = Depends(get_owner_id),
    workflow: GenerationWorkflow = Depends(get_insights_workflow),
) -> StreamingResponse:
    """Open the event stream for an insights session; the answer starts right away."""
    return open_event_stream(request, workflow, session_id, owner_id)
