"""
Request-scoped helpers shared by the coach and insights routes.

- principal resolution (X-User-Id header)
- access to the services built by `create_app` (stored on app.state)
- workflow error -> HTTPException translation
- opening a Server-Sent Events stream for a session
"""

import logging
from typing import Optional

from fastapi import Header, HTTPException, Request
from fastapi.responses import StreamingResponse

from exceptions.exceptions import (
    CommitError,
    GenerationError,
    RepCoachError,
    SessionForbiddenError,
    SessionNotFoundError,
    SessionTerminalError,
    WorkflowStateError,
)
from ..agents.generation_workflow import GenerationWorkflow
from ..store.workout_store import WorkoutStore
from ..streaming.stream_channel import SSE_HEADERS, StreamChannel


logger = logging.getLogger(__name__)


def get_owner_id(x_user_id: Optional[int] = Header(default=None)) -> int:
    """Principal id of the caller. Authentication happens upstream."""
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id


def get_coach_workflow(request: Request) -> GenerationWorkflow:
    return request.app.state.coach_workflow


def get_insights_workflow(request: Request) -> GenerationWorkflow:
    return request.app.state.insights_workflow


def get_workout_store(request: Request) -> WorkoutStore:
    return request.app.state.workout_store


def to_http_error(
    exc: RepCoachError,
    workflow: Optional[GenerationWorkflow] = None,
) -> HTTPException:
    """Map a workflow error onto the HTTP status the client should see.

    Generation failures carry the `failure_message` of the workflow's
    generator, when a workflow is given.
    """
    if isinstance(exc, SessionNotFoundError):
        return HTTPException(status_code=404, detail="Session not found")
    if isinstance(exc, SessionForbiddenError):
        return HTTPException(status_code=403, detail="Unauthorized")
    if isinstance(exc, (SessionTerminalError, WorkflowStateError)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, GenerationError):
        detail = "Generation failed"
        if workflow is not None:
            detail = workflow.generator.failure_message
        return HTTPException(status_code=502, detail=detail)
    if isinstance(exc, CommitError):
        return HTTPException(status_code=502, detail="Failed to save workout")
    return HTTPException(status_code=500, detail=str(exc))


def open_event_stream(
    request: Request,
    workflow: GenerationWorkflow,
    session_id: str,
    owner_id: int,
) -> StreamingResponse:
    """Bind a new channel to the session and stream it as text/event-stream.

    Access checks run before anything is bound, so not-found / forbidden
    come back as plain HTTP errors. Binding starts the first generation.
    """
    channel = StreamChannel(
        heartbeat_interval=request.app.state.settings.heartbeat_seconds
    )
    try:
        workflow.bind_channel(session_id, owner_id, channel)
    except RepCoachError as exc:
        http_exc = to_http_error(exc, workflow)
        logger.warning(
            "[STREAM] HTTP %s for session_id=%s user=%s reason=%r",
            http_exc.status_code,
            session_id,
            owner_id,
            http_exc.detail,
        )
        raise http_exc from exc

    return StreamingResponse(
        channel.stream(on_close=lambda: workflow.unbind_channel(session_id, channel)),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
