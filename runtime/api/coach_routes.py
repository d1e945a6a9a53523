"""HTTP routes for the workout coach.

Exposes endpoints like:

- POST   /coach/sessions          -> returns a new session_id
- GET    /coach/stream/{id}       -> Server-Sent Events; connecting starts
                                     the first workout generation
- POST   /coach/respond           -> (session_id, accept|reject); rejecting
                                     regenerates, accepting saves the workout
- GET    /coach/sessions/{id}     -> current state of the session
- DELETE /coach/sessions/{id}     -> drop a finished session
"""

import logging
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import StreamingResponse

from exceptions.exceptions import RepCoachError
from ..agents.generation_workflow import GenerationWorkflow
from ..models.api_models import (
    RespondRequest,
    RespondResponse,
    SessionView,
    StartSessionResponse,
)
from ..models.session_models import Session, UserResponse
from .deps import get_coach_workflow, get_owner_id, open_event_stream, to_http_error


logger = logging.getLogger(__name__)

router = APIRouter(tags=["coach"])


def _session_view(session: Session) -> SessionView:
    artifact = session.current_artifact
    return SessionView(
        session_id=session.session_id,
        status=session.status,
        current_artifact=artifact.model_dump() if artifact is not None else None,
        regeneration_count=session.regeneration_count,
        committed_id=session.committed_id,
        stream_connected=session.channel is not None,
    )


@router.post("/sessions", response_model=StartSessionResponse)
async def start_session(
    owner_id: int = Depends(get_owner_id),
    workflow: GenerationWorkflow = Depends(get_coach_workflow),
) -> StartSessionResponse:
    """Create a new coach session for the caller and return its ID."""
    session = workflow.session_store.create(str(uuid4()), owner_id)
    logger.info("[COACH] Session %s started for user %s", session.session_id, owner_id)
    return StartSessionResponse(session_id=session.session_id)


@router.get("/stream/{session_id}")
async def stream_session(
    session_id: str,
    request: Request,
    owner_id: int = Depends(get_owner_id),
    workflow: GenerationWorkflow = Depends(get_coach_workflow),
) -> StreamingResponse:
    """Open the event stream for a session; a workout is generated right away."""
    return open_event_stream(request, workflow, session_id, owner_id)


@router.post("/respond", response_model=RespondResponse)
async def respond(
    body: RespondRequest,
    owner_id: int = Depends(get_owner_id),
    workflow: GenerationWorkflow = Depends(get_coach_workflow),
) -> RespondResponse:
    """Accept or reject the workout currently presented in a session.

    The new plan (after a rejection) or the saved id (after an acceptance)
    is also pushed on the session's stream. Failures are reported on the
    stream and as an HTTP error here.
    """
    try:
        session = await workflow.respond(body.session_id, owner_id, body.response)
    except RepCoachError as exc:
        http_exc = to_http_error(exc, workflow)
        logger.warning(
            "[COACH] HTTP %s for session_id=%s user=%s response=%s reason=%r",
            http_exc.status_code,
            body.session_id,
            owner_id,
            body.response.value,
            http_exc.detail,
        )
        raise http_exc from exc

    logger.info(
        "[COACH] User response recorded (session %s, %s)",
        body.session_id,
        body.response.value,
    )
    if body.response == UserResponse.ACCEPT:
        message = "Workout saved"
    else:
        message = "Workout regenerated"
    return RespondResponse(
        message=message,
        regeneration_count=session.regeneration_count,
        committed_id=session.committed_id,
    )


@router.get("/sessions/{session_id}", response_model=SessionView)
async def get_session(
    session_id: str,
    owner_id: int = Depends(get_owner_id),
    workflow: GenerationWorkflow = Depends(get_coach_workflow),
) -> SessionView:
    try:
        session = workflow.get_owned_session(session_id, owner_id)
    except RepCoachError as exc:
        raise to_http_error(exc, workflow) from exc
    return _session_view(session)


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: str,
    owner_id: int = Depends(get_owner_id),
    workflow: GenerationWorkflow = Depends(get_coach_workflow),
) -> Response:
    """Delete a session once its workout was saved; open sessions just expire."""
    try:
        session = workflow.get_owned_session(session_id, owner_id)
    except RepCoachError as exc:
        raise to_http_error(exc, workflow) from exc

    if not session.is_terminal:
        raise HTTPException(status_code=409, detail="Session is still in progress")

    workflow.session_store.delete(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
