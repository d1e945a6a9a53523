import pytest
from fastapi.testclient import TestClient

from configs.settings import Settings
from runtime.api.server import create_app
from runtime.store.workout_store import WorkoutStore

from fakes import PLAN_DEADLIFT, PLAN_SQUATS, FakeChatBackend


USER = {"X-User-Id": "1"}
OTHER_USER = {"X-User-Id": "2"}


@pytest.fixture
def backend():
    return FakeChatBackend(replies=[PLAN_SQUATS, PLAN_DEADLIFT, PLAN_SQUATS])


@pytest.fixture
def workout_store():
    return WorkoutStore()


@pytest.fixture
def client(backend, workout_store):
    app = create_app(Settings(), chat_backend=backend, workout_store=workout_store)
    with TestClient(app) as test_client:
        yield test_client


def _start(client, headers=USER):
    response = client.post("/coach/sessions", headers=headers)
    assert response.status_code == 200
    return response.json()["session_id"]


def test_health_check(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_requests_without_user_are_unauthenticated(client):
    assert client.post("/coach/sessions").status_code == 401
    assert client.post(
        "/coach/respond", json={"session_id": "x", "response": "accept"}
    ).status_code == 401


def test_start_session_returns_new_idle_session(client):
    first = _start(client)
    second = _start(client)
    assert first != second

    view = client.get(f"/coach/sessions/{first}", headers=USER).json()
    assert view["status"] == "IDLE"
    assert view["regeneration_count"] == 0
    assert view["current_artifact"] is None
    assert view["stream_connected"] is False


def test_respond_validates_body(client):
    session_id = _start(client)

    bad = client.post(
        "/coach/respond", json={"session_id": session_id, "response": "maybe"}, headers=USER
    )
    missing = client.post("/coach/respond", json={"response": "accept"}, headers=USER)

    assert bad.status_code == 422
    assert missing.status_code == 422


def test_respond_to_unknown_session(client):
    response = client.post(
        "/coach/respond", json={"session_id": "nope", "response": "reject"}, headers=USER
    )
    assert response.status_code == 404
    assert response.json()["detail"] == "Session not found"


def test_respond_to_someone_elses_session(client, backend):
    session_id = _start(client)

    response = client.post(
        "/coach/respond",
        json={"session_id": session_id, "response": "reject"},
        headers=OTHER_USER,
    )

    assert response.status_code == 403
    assert backend.prompts == []
    view = client.get(f"/coach/sessions/{session_id}", headers=USER).json()
    assert view["regeneration_count"] == 0


def test_accept_before_any_plan_is_a_conflict(client):
    session_id = _start(client)

    response = client.post(
        "/coach/respond", json={"session_id": session_id, "response": "accept"}, headers=USER
    )

    assert response.status_code == 409
    view = client.get(f"/coach/sessions/{session_id}", headers=USER).json()
    assert view["status"] == "IDLE"


def test_reject_then_accept_saves_the_workout(client, workout_store):
    session_id = _start(client)

    rejected = client.post(
        "/coach/respond", json={"session_id": session_id, "response": "reject"}, headers=USER
    )
    assert rejected.status_code == 200
    assert rejected.json()["regeneration_count"] == 1
    assert rejected.json()["message"] == "Workout regenerated"

    view = client.get(f"/coach/sessions/{session_id}", headers=USER).json()
    assert view["status"] == "PRESENTED"
    assert view["current_artifact"]["exercises"][0]["name"] == "Squats"

    accepted = client.post(
        "/coach/respond", json={"session_id": session_id, "response": "accept"}, headers=USER
    )
    assert accepted.status_code == 200
    body = accepted.json()
    assert body["message"] == "Workout saved"
    assert body["committed_id"] == 1
    assert body["regeneration_count"] == 1

    start, end = workout_store.window_for({})
    history = workout_store.list_workouts(1, start, end)
    assert [w.id for w in history] == [1]
    assert [e.name for e in history[0].exercises] == ["Squats", "Plank"]

    again = client.post(
        "/coach/respond", json={"session_id": session_id, "response": "accept"}, headers=USER
    )
    assert again.status_code == 409


def test_failed_generation_is_a_bad_gateway(client, backend):
    backend.replies = ["I can't do that."]
    session_id = _start(client)

    response = client.post(
        "/coach/respond", json={"session_id": session_id, "response": "reject"}, headers=USER
    )

    assert response.status_code == 502
    assert response.json()["detail"] == "Failed to generate workout"
    view = client.get(f"/coach/sessions/{session_id}", headers=USER).json()
    assert view["status"] == "IDLE"
    assert view["current_artifact"] is None


def test_delete_only_finished_sessions(client):
    session_id = _start(client)

    assert client.delete(f"/coach/sessions/{session_id}", headers=USER).status_code == 409

    client.post(
        "/coach/respond", json={"session_id": session_id, "response": "reject"}, headers=USER
    )
    client.post(
        "/coach/respond", json={"session_id": session_id, "response": "accept"}, headers=USER
    )

    assert client.delete(f"/coach/sessions/{session_id}", headers=OTHER_USER).status_code == 403
    assert client.delete(f"/coach/sessions/{session_id}", headers=USER).status_code == 204
    assert client.get(f"/coach/sessions/{session_id}", headers=USER).status_code == 404


def test_stream_access_checks(client):
    session_id = _start(client)

    assert client.get("/coach/stream/unknown", headers=USER).status_code == 404
    assert client.get(f"/coach/stream/{session_id}", headers=OTHER_USER).status_code == 403
