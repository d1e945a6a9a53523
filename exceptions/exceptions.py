"""
Custom exceptions for the RepCoach runtime.

They are used across:

  - core/coach/ (plan parsing, generation)
  - runtime/store/, runtime/agents/, runtime/streaming/
  - runtime/api/ (translated to HTTP status codes in deps.py)

Placing them at the project root (exceptions/) avoids circular imports
and keeps exception types consistent across modules.
"""

# ---------------------------------------------------------------------------
# Session / workflow errors
# ---------------------------------------------------------------------------


class RepCoachError(Exception):
    """Base class for every error raised by the session workflow engine."""


class SessionExistsError(RepCoachError):
    """Raised when a session is created with an id that is already in use."""

    def __init__(self, session_id):
        self.session_id = session_id
        super().__init__(f"Session already exists: {session_id}")


class SessionNotFoundError(RepCoachError):
    """Raised when a session id is unknown (never created, expired or deleted)."""

    def __init__(self, session_id):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class SessionForbiddenError(RepCoachError):
    """Raised when a principal touches a session owned by someone else."""

    def __init__(self, session_id, owner_id):
        self.session_id = session_id
        self.owner_id = owner_id
        super().__init__(f"Session {session_id} is not owned by user {owner_id}")


class SessionTerminalError(RepCoachError):
    """Raised for any generate/respond/bind call on a committed session."""

    def __init__(self, session_id, committed_id=None):
        self.session_id = session_id
        self.committed_id = committed_id
        super().__init__(
            f"Session {session_id} is already committed (id={committed_id})"
        )


class WorkflowStateError(RepCoachError):
    """
    Raised when an operation is not valid in the session's current state,
    e.g. responding while a generation is still in flight.
    """


class MissingArtifactError(WorkflowStateError):
    """Raised when a session is accepted before anything was generated."""

    def __init__(self, session_id):
        self.session_id = session_id
        super().__init__(f"Session {session_id} has no artifact to accept")


class RegenerationLimitError(WorkflowStateError):
    """Raised when a rejection would exceed the configured regeneration cap."""

    def __init__(self, session_id, limit):
        self.session_id = session_id
        self.limit = limit
        super().__init__(
            f"Session {session_id} reached the regeneration limit ({limit})"
        )


class GenerationError(RepCoachError):
    """
    Raised when a generation attempt fails: the upstream call raised or
    timed out, or its output could not be turned into an artifact.
    """


class PlanParseError(GenerationError):
    """
    Raised when a model response contains no JSON object under any of the
    supported extraction strategies.

    The raw response is kept for logging.
    """

    def __init__(self, raw_text, details=None):
        self.raw_text = raw_text
        self.details = details or "No JSON object found in model output."
        super().__init__(self.details)


class PlanValidationError(GenerationError):
    """Raised when a parsed plan fails validation (no partial plans)."""

    def __init__(self, errors):
        self.errors = errors
        super().__init__(f"Invalid workout plan: {errors}")


class CommitError(RepCoachError):
    """Raised when the persistence collaborator fails to store an artifact."""

    def __init__(self, session_id, cause=None):
        self.session_id = session_id
        self.cause = cause
        super().__init__(f"Failed to commit session {session_id}: {cause}")


class ChannelClosedError(RepCoachError):
    """Raised when closing a stream channel that is already closed."""
