"""GenerationWorkflow implementation.

Drives one session through

    IDLE -> GENERATING -> PRESENTED -> GENERATING (reject) ...
                                    -> COMMITTING -> COMMITTED (accept)

Responsible for:
- binding / unbinding the session's stream channel (binding starts the
  first generation)
- fetching context, calling the content generator, storing the artifact
- recording accept / reject responses and either regenerating or committing
- pushing progress events to the bound channel, if any

Every external call (context fetch, generation, commit) is a suspension
point after which another request may have touched the same session. The
workflow therefore never writes through a Session object captured before
such a call: it goes back to the store by session_id.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Protocol, Sequence, Set

from core.coach.generators import ContentGenerator
from core.coach.models import WorkoutRecord
from exceptions.exceptions import (
    CommitError,
    GenerationError,
    MissingArtifactError,
    RegenerationLimitError,
    SessionForbiddenError,
    SessionNotFoundError,
    SessionTerminalError,
    WorkflowStateError,
)
from ..models.session_models import Session, SessionStatus, Turn, UserResponse
from ..store.session_store import SessionStore
from ..streaming.stream_channel import StreamChannel, StreamEventType


logger = logging.getLogger(__name__)

_BUSY = (SessionStatus.GENERATING, SessionStatus.COMMITTING)


class ContextSource(Protocol):
    async def fetch_context(
        self, owner_id: int, seed: Mapping[str, Any]
    ) -> Sequence[WorkoutRecord]:
        ...


class ArtifactCommitter(Protocol):
    async def commit(self, owner_id: int, artifact: Any) -> int:
        ...


class GenerationWorkflow:
    """Session state machine shared by the coach and insights endpoints.

    Parameters
    ----------
    session_store:
        Store holding this workflow's sessions.
    generator:
        ContentGenerator producing one artifact per call.
    context_source:
        History collaborator queried before every generation.
    committer:
        Persistence collaborator for accepted artifacts. Workflows without
        one (insights) cannot be accepted.
    max_regenerations:
        Optional cap on rejections per session. None means unbounded.
    generation_timeout:
        Optional timeout, in seconds, around the generator call. None means
        the call may take as long as the upstream service does.
    """

    def __init__(
        self,
        session_store: SessionStore,
        generator: ContentGenerator,
        context_source: ContextSource,
        committer: Optional[ArtifactCommitter] = None,
        max_regenerations: Optional[int] = None,
        generation_timeout: Optional[float] = None,
    ) -> None:
        self.session_store = session_store
        self.generator = generator
        self.context_source = context_source
        self.committer = committer
        self.max_regenerations = max_regenerations
        self.generation_timeout = generation_timeout

        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Access control
    # ------------------------------------------------------------------

    def get_owned_session(self, session_id: str, owner_id: int) -> Session:
        """Return the session or raise not-found / forbidden.

        Only the owner's access counts as activity.
        """
        session = self.session_store.peek(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if session.owner_id != owner_id:
            raise SessionForbiddenError(session_id, owner_id)
        return self.session_store.get(session_id)

    # ------------------------------------------------------------------
    # Channel binding
    # ------------------------------------------------------------------

    def bind_channel(
        self,
        session_id: str,
        owner_id: int,
        channel: StreamChannel,
    ) -> Optional[asyncio.Task]:
        """Bind `channel` to the session and kick off the workflow.

        - IDLE without artifact: schedules the first generation and returns
          its task.
        - PRESENTED: re-sends the current artifact to the new channel.
        - GENERATING / COMMITTING: nothing to start; events will reach the
          new channel when the running step pushes them.

        A previously bound channel is closed. Must be called from a running
        event loop.
        """
        session = self.get_owned_session(session_id, owner_id)
        if session.is_terminal:
            raise SessionTerminalError(session_id, session.committed_id)

        previous = session.channel
        self.session_store.update(session_id, channel=channel)
        if previous is not None and previous is not channel and not previous.closed:
            previous.close()

        channel.send(StreamEventType.CONNECTED, session_id=session_id)
        logger.info("[STREAM] Channel bound to session %s (user %s)", session_id, owner_id)

        if session.status == SessionStatus.IDLE and session.current_artifact is None:
            return self.start_generation(session_id)

        if session.status == SessionStatus.PRESENTED and session.current_artifact is not None:
            self._push_artifact(session_id)
        return None

    def unbind_channel(self, session_id: str, channel: StreamChannel) -> None:
        """Detach `channel` if it is still the one bound. Never deletes the session."""
        session = self.session_store.get(session_id)
        if session is None or session.channel is not channel:
            return
        self.session_store.update(session_id, channel=None)
        logger.info("[STREAM] Channel closed for session %s", session_id)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def start_generation(self, session_id: str) -> asyncio.Task:
        """Run `generate()` in the background; failures are already reported."""
        task = asyncio.get_running_loop().create_task(self._generate_in_background(session_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _generate_in_background(self, session_id: str) -> None:
        try:
            await self.generate(session_id)
        except GenerationError as exc:
            logger.warning("[COACH] Generation failed for session %s: %s", session_id, exc)
        except (SessionNotFoundError, SessionTerminalError, WorkflowStateError) as exc:
            logger.info("[COACH] Skipped generation for session %s: %s", session_id, exc)

    async def generate(self, session_id: str) -> Any:
        """Produce a new artifact for the session and push it.

        On failure the session is put back in the status it had before,
        a single `error` event is pushed and GenerationError is raised.
        """
        session = self.session_store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if session.is_terminal:
            raise SessionTerminalError(session_id, session.committed_id)
        if session.status in _BUSY:
            raise WorkflowStateError(
                f"Session {session_id} is busy ({session.status.value})"
            )

        prior_status = session.status
        owner_id = session.owner_id
        seed = dict(session.seed)

        self.session_store.update(session_id, status=SessionStatus.GENERATING)
        self._push(session_id, StreamEventType.GENERATING)

        try:
            context = list(await self.context_source.fetch_context(owner_id, seed))
            artifact = await self._call_generator(session_id, context, seed)
        except Exception as exc:
            logger.exception("[COACH] Failed to generate for session %s", session_id)
            self.session_store.update(session_id, status=prior_status)
            self._push(session_id, StreamEventType.ERROR, message=self.generator.failure_message)
            if isinstance(exc, GenerationError):
                raise
            raise GenerationError(str(exc) or exc.__class__.__name__) from exc

        # Re-fetch: the session may have expired or been deleted meanwhile.
        if self.session_store.get(session_id) is None:
            logger.info("[COACH] Session %s disappeared during generation", session_id)
            return artifact

        self.session_store.update(
            session_id,
            context=context,
            current_artifact=artifact,
            status=SessionStatus.PRESENTED,
        )
        self._record_turn(session_id, "assistant", self.generator.describe(artifact), "artifact")
        self._push_artifact(session_id)
        self._push(session_id, StreamEventType.COMPLETE)

        logger.info(
            "[COACH] Artifact generated for session %s (user %s, %d context items)",
            session_id,
            owner_id,
            len(context),
        )
        return artifact

    async def _call_generator(
        self,
        session_id: str,
        context: List[WorkoutRecord],
        seed: Mapping[str, Any],
    ) -> Any:
        def on_chunk(chunk: str) -> None:
            self._push(session_id, StreamEventType.CONTENT, chunk=chunk)

        call = self.generator.generate(context, seed, on_chunk)
        if self.generation_timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self.generation_timeout)
        except asyncio.TimeoutError as exc:
            raise GenerationError(
                f"Generation timed out after {self.generation_timeout}s"
            ) from exc

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    async def respond(
        self,
        session_id: str,
        owner_id: int,
        response: UserResponse,
    ) -> Session:
        """Record the user's answer to the presented artifact and act on it.

        - reject: regeneration_count += 1, then a new generation
        - accept: commit the current artifact; the session becomes terminal

        Returns the session as it stands afterwards.
        """
        session = self.get_owned_session(session_id, owner_id)
        if session.is_terminal:
            raise SessionTerminalError(session_id, session.committed_id)
        if session.status in _BUSY:
            raise WorkflowStateError(
                f"Session {session_id} is busy ({session.status.value})"
            )

        if response == UserResponse.REJECT:
            if (
                self.max_regenerations is not None
                and session.regeneration_count >= self.max_regenerations
            ):
                raise RegenerationLimitError(session_id, self.max_regenerations)

            self.session_store.update(
                session_id,
                pending_response=UserResponse.REJECT,
                regeneration_count=session.regeneration_count + 1,
            )
            self._record_turn(session_id, "user", response.value, "response")
            logger.info("[COACH] User rejected artifact, regenerating (session %s)", session_id)

            self.session_store.update(session_id, pending_response=None)
            await self.generate(session_id)
        else:
            if self.committer is None:
                raise WorkflowStateError("This workflow has nothing to commit")
            if session.current_artifact is None:
                raise MissingArtifactError(session_id)

            self._record_turn(session_id, "user", response.value, "response")
            logger.info("[COACH] User accepted artifact, committing (session %s)", session_id)
            await self.commit(session_id)

        session = self.session_store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def commit(self, session_id: str) -> int:
        """Persist the current artifact and mark the session terminal."""
        session = self.session_store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if session.current_artifact is None:
            raise MissingArtifactError(session_id)

        owner_id = session.owner_id
        artifact = session.current_artifact
        self.session_store.update(
            session_id,
            pending_response=UserResponse.ACCEPT,
            status=SessionStatus.COMMITTING,
        )

        try:
            committed_id = await self.committer.commit(owner_id, artifact)
        except Exception as exc:
            logger.exception("[COACH] Failed to save artifact for session %s", session_id)
            self.session_store.update(
                session_id,
                pending_response=None,
                status=SessionStatus.PRESENTED,
            )
            self._push(session_id, StreamEventType.ERROR, message="Failed to save workout")
            raise CommitError(session_id, exc) from exc

        if self.session_store.get(session_id) is None:
            logger.warning(
                "[COACH] Session %s disappeared while saving artifact %s",
                session_id,
                committed_id,
            )
            return committed_id

        self.session_store.update(
            session_id,
            committed_id=committed_id,
            pending_response=None,
            status=SessionStatus.COMMITTED,
        )
        self._push(session_id, StreamEventType.SAVED, committed_id=committed_id)

        logger.info(
            "[COACH] Artifact saved for session %s (user %s, id %s)",
            session_id,
            owner_id,
            committed_id,
        )
        return committed_id

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        """Cancel background generations still in flight."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _push(self, session_id: str, event_type: StreamEventType, **payload) -> bool:
        session = self.session_store.get(session_id)
        if session is None or session.channel is None:
            return False
        return session.channel.send(event_type, **payload)

    def _push_artifact(self, session_id: str) -> bool:
        session = self.session_store.get(session_id)
        if session is None or session.current_artifact is None:
            return False
        return self._push(
            session_id,
            StreamEventType.ARTIFACT,
            artifact=session.current_artifact.model_dump(),
            regeneration_count=session.regeneration_count,
        )

    def _record_turn(self, session_id: str, role: str, message: str, turn_type: str) -> None:
        session = self.session_store.get(session_id)
        if session is None:
            return
        turn = Turn(
            role=role,
            message=message,
            type=turn_type,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        self.session_store.update(session_id, turns=[*session.turns, turn])
