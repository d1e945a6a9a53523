from datetime import date

import pytest

from core.coach.generators import InsightsAnswerGenerator, WorkoutPlanGenerator
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
from runtime.agents.generation_workflow import GenerationWorkflow
from runtime.models.session_models import SessionStatus, UserResponse
from runtime.store.session_store import SessionStore
from runtime.store.workout_store import WorkoutStore
from runtime.streaming.stream_channel import StreamChannel

from fakes import (
    PLAN_DEADLIFT,
    PLAN_SQUATS,
    FakeChatBackend,
    FakeClock,
    RecordingCommitter,
    drain_events,
)


OWNER = 1


def make_coach(replies, committer=None, **kwargs):
    backend = FakeChatBackend(replies=replies)
    workflow = GenerationWorkflow(
        session_store=SessionStore(),
        generator=WorkoutPlanGenerator(backend, today=lambda: date(2024, 1, 16)),
        context_source=WorkoutStore(),
        committer=committer or RecordingCommitter(),
        **kwargs,
    )
    return workflow, backend


async def start_session(workflow, session_id="s1"):
    workflow.session_store.create(session_id, OWNER)
    channel = StreamChannel(heartbeat_interval=3600)
    task = workflow.bind_channel(session_id, OWNER, channel)
    if task is not None:
        await task
    return channel


@pytest.mark.asyncio
async def test_reject_twice_then_accept():
    committer = RecordingCommitter(workout_id=77)
    workflow, backend = make_coach(
        [PLAN_SQUATS, PLAN_DEADLIFT, PLAN_SQUATS], committer=committer
    )
    channel = await start_session(workflow)

    session = workflow.session_store.get("s1")
    assert session.status == SessionStatus.PRESENTED
    assert session.current_artifact.exercises[0].name == "Squats"
    assert "Recent workout history" not in backend.prompts[0]

    session = await workflow.respond("s1", OWNER, UserResponse.REJECT)
    assert session.regeneration_count == 1
    assert session.current_artifact.exercises[0].name == "Deadlift"

    session = await workflow.respond("s1", OWNER, UserResponse.REJECT)
    assert session.regeneration_count == 2
    final_plan = session.current_artifact

    session = await workflow.respond("s1", OWNER, UserResponse.ACCEPT)
    assert session.committed_id == 77
    assert session.status == SessionStatus.COMMITTED
    assert session.is_terminal
    assert session.regeneration_count == 2
    assert committer.calls == [(OWNER, final_plan)]

    with pytest.raises(SessionTerminalError):
        await workflow.respond("s1", OWNER, UserResponse.ACCEPT)
    with pytest.raises(SessionTerminalError):
        await workflow.respond("s1", OWNER, UserResponse.REJECT)
    assert len(backend.prompts) == 3

    events = await drain_events(channel)
    assert [e["type"] for e in events] == [
        "connected",
        "generating", "artifact", "complete",
        "generating", "artifact", "complete",
        "generating", "artifact", "complete",
        "saved",
    ]
    artifacts = [e for e in events if e["type"] == "artifact"]
    assert [a["regeneration_count"] for a in artifacts] == [0, 1, 2]
    assert artifacts[1]["artifact"]["exercises"][0]["name"] == "Deadlift"
    assert artifacts[0]["artifact"]["date"] == "2024-01-16"
    assert events[-1] == {"type": "saved", "committed_id": 77}

    turns = workflow.session_store.get("s1").turns
    assert [(t.role, t.type) for t in turns] == [
        ("assistant", "artifact"),
        ("user", "response"),
        ("assistant", "artifact"),
        ("user", "response"),
        ("assistant", "artifact"),
        ("user", "response"),
    ]


@pytest.mark.asyncio
async def test_regeneration_count_matches_number_of_rejections():
    workflow, _ = make_coach([PLAN_SQUATS] * 5)
    await start_session(workflow)

    for _ in range(4):
        await workflow.respond("s1", OWNER, UserResponse.REJECT)

    session = await workflow.respond("s1", OWNER, UserResponse.ACCEPT)
    assert session.regeneration_count == 4


@pytest.mark.asyncio
async def test_accept_without_artifact_changes_nothing():
    committer = RecordingCommitter()
    workflow, _ = make_coach([], committer=committer)
    workflow.session_store.create("s1", OWNER)

    with pytest.raises(MissingArtifactError):
        await workflow.respond("s1", OWNER, UserResponse.ACCEPT)

    session = workflow.session_store.get("s1")
    assert session.status == SessionStatus.IDLE
    assert session.committed_id is None
    assert session.turns == []
    assert committer.calls == []


@pytest.mark.asyncio
async def test_other_owner_is_rejected_before_any_change():
    workflow, _ = make_coach([PLAN_SQUATS])
    await start_session(workflow)

    with pytest.raises(SessionForbiddenError):
        await workflow.respond("s1", 2, UserResponse.REJECT)
    with pytest.raises(SessionForbiddenError):
        workflow.bind_channel("s1", 2, StreamChannel())

    session = workflow.session_store.get("s1")
    assert session.regeneration_count == 0
    assert session.pending_response is None
    assert session.status == SessionStatus.PRESENTED


@pytest.mark.asyncio
async def test_unknown_session():
    workflow, _ = make_coach([])

    with pytest.raises(SessionNotFoundError):
        await workflow.respond("missing", OWNER, UserResponse.REJECT)
    with pytest.raises(SessionNotFoundError):
        workflow.bind_channel("missing", OWNER, StreamChannel())


@pytest.mark.asyncio
async def test_generation_failure_reports_error_and_allows_retry():
    workflow, backend = make_coach(["Sorry, no JSON here.", PLAN_SQUATS])
    channel = await start_session(workflow)

    session = workflow.session_store.get("s1")
    assert session.status == SessionStatus.IDLE
    assert session.current_artifact is None

    session = await workflow.respond("s1", OWNER, UserResponse.REJECT)
    assert session.status == SessionStatus.PRESENTED
    assert session.regeneration_count == 1

    events = await drain_events(channel)
    assert [e["type"] for e in events] == [
        "connected",
        "generating", "error",
        "generating", "artifact", "complete",
    ]
    assert events[2] == {"type": "error", "message": "Failed to generate workout"}


@pytest.mark.asyncio
async def test_failed_regeneration_keeps_presented_plan():
    workflow, _ = make_coach([PLAN_SQUATS, "not a plan"])
    await start_session(workflow)

    with pytest.raises(GenerationError):
        await workflow.respond("s1", OWNER, UserResponse.REJECT)

    session = workflow.session_store.get("s1")
    assert session.status == SessionStatus.PRESENTED
    assert session.current_artifact.exercises[0].name == "Squats"


@pytest.mark.asyncio
async def test_upstream_error_becomes_generation_error():
    workflow, backend = make_coach([])
    backend.error = ConnectionError("upstream unreachable")
    workflow.session_store.create("s1", OWNER)

    with pytest.raises(GenerationError):
        await workflow.generate("s1")

    assert workflow.session_store.get("s1").status == SessionStatus.IDLE


@pytest.mark.asyncio
async def test_commit_failure_reverts_to_presented():
    committer = RecordingCommitter(workout_id=5, failures=1)
    workflow, _ = make_coach([PLAN_SQUATS], committer=committer)
    channel = await start_session(workflow)

    with pytest.raises(CommitError):
        await workflow.respond("s1", OWNER, UserResponse.ACCEPT)

    session = workflow.session_store.get("s1")
    assert session.status == SessionStatus.PRESENTED
    assert session.committed_id is None
    assert session.pending_response is None
    assert not session.is_terminal

    session = await workflow.respond("s1", OWNER, UserResponse.ACCEPT)
    assert session.committed_id == 5

    events = await drain_events(channel)
    assert [e["type"] for e in events][-2:] == ["error", "saved"]
    assert events[-2]["message"] == "Failed to save workout"


@pytest.mark.asyncio
async def test_regeneration_limit():
    workflow, _ = make_coach([PLAN_SQUATS] * 3, max_regenerations=1)
    await start_session(workflow)

    await workflow.respond("s1", OWNER, UserResponse.REJECT)
    with pytest.raises(RegenerationLimitError):
        await workflow.respond("s1", OWNER, UserResponse.REJECT)

    assert workflow.session_store.get("s1").regeneration_count == 1


@pytest.mark.asyncio
async def test_generation_timeout():
    workflow, backend = make_coach([PLAN_SQUATS], generation_timeout=0.01)
    backend.delay = 5
    workflow.session_store.create("s1", OWNER)

    with pytest.raises(GenerationError):
        await workflow.generate("s1")

    assert workflow.session_store.get("s1").status == SessionStatus.IDLE


@pytest.mark.asyncio
async def test_closed_stream_unbinds_but_keeps_session():
    workflow, _ = make_coach([PLAN_SQUATS])
    workflow.session_store.create("s1", OWNER)
    channel = StreamChannel(heartbeat_interval=3600)
    task = workflow.bind_channel("s1", OWNER, channel)
    await task

    agen = channel.stream(on_close=lambda: workflow.unbind_channel("s1", channel))
    await agen.__anext__()
    await agen.aclose()

    session = workflow.session_store.get("s1")
    assert session is not None
    assert session.channel is None
    assert session.current_artifact is not None


@pytest.mark.asyncio
async def test_rebinding_closes_old_channel_and_resends_plan():
    workflow, backend = make_coach([PLAN_SQUATS])
    old = await start_session(workflow)

    new = StreamChannel(heartbeat_interval=3600)
    assert workflow.bind_channel("s1", OWNER, new) is None
    assert old.closed

    # the old stream ending must not detach the new channel
    workflow.unbind_channel("s1", old)
    assert workflow.session_store.get("s1").channel is new

    events = await drain_events(new)
    assert [e["type"] for e in events] == ["connected", "artifact"]
    assert len(backend.prompts) == 1


@pytest.mark.asyncio
async def test_binding_a_committed_session_fails():
    workflow, _ = make_coach([PLAN_SQUATS])
    await start_session(workflow)
    await workflow.respond("s1", OWNER, UserResponse.ACCEPT)

    with pytest.raises(SessionTerminalError):
        workflow.bind_channel("s1", OWNER, StreamChannel())


@pytest.mark.asyncio
async def test_insights_answer_is_streamed_and_cannot_be_accepted():
    backend = FakeChatBackend(chunks=["You ", "trained ", "3 times."])
    store = SessionStore()
    workflow = GenerationWorkflow(
        session_store=store,
        generator=InsightsAnswerGenerator(backend),
        context_source=WorkoutStore(),
    )
    store.create("q1", OWNER, {"question": "How often?", "timeframe": "7d"})
    channel = StreamChannel(heartbeat_interval=3600)

    await workflow.bind_channel("q1", OWNER, channel)

    with pytest.raises(WorkflowStateError):
        await workflow.respond("q1", OWNER, UserResponse.ACCEPT)

    events = await drain_events(channel)
    assert [e["type"] for e in events] == [
        "connected", "generating", "content", "content", "content", "artifact", "complete",
    ]
    assert [e["chunk"] for e in events if e["type"] == "content"] == ["You ", "trained ", "3 times."]
    assert events[-2]["artifact"] == {"question": "How often?", "text": "You trained 3 times."}


@pytest.mark.asyncio
async def test_shutdown_cancels_running_generation():
    workflow, backend = make_coach([PLAN_SQUATS])
    backend.delay = 5
    workflow.session_store.create("s1", OWNER)

    task = workflow.bind_channel("s1", OWNER, StreamChannel(heartbeat_interval=3600))
    await workflow.shutdown()

    assert task.cancelled()


@pytest.mark.asyncio
async def test_other_owner_does_not_keep_session_alive():
    clock = FakeClock()
    store = SessionStore(clock=clock)
    workflow = GenerationWorkflow(
        session_store=store,
        generator=WorkoutPlanGenerator(FakeChatBackend()),
        context_source=WorkoutStore(),
        committer=RecordingCommitter(),
    )
    session = store.create("s1", OWNER)
    created_at = session.last_activity
    clock.advance(600)

    with pytest.raises(SessionForbiddenError):
        workflow.get_owned_session("s1", 2)
    with pytest.raises(SessionForbiddenError):
        await workflow.respond("s1", 2, UserResponse.REJECT)
    assert session.last_activity == created_at

    workflow.get_owned_session("s1", OWNER)
    assert session.last_activity == clock.now
