import random

import pytest
from fastapi.testclient import TestClient

from imposter.api.round_routes import get_controller
from imposter.core.config import settings
from imposter.core.database import get_db
from imposter.models.round_model import Round
from imposter.services.authorizer import Authorizer
from imposter.services.round_controller import RoundController
from main import app


@pytest.fixture
def client(db, notifier, clock):
    def override_get_db():
        yield db

    def override_get_controller():
        return RoundController(db, notifier=notifier, clock=clock, rng=random.Random(3))

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_controller] = override_get_controller
    yield TestClient(app)
    app.dependency_overrides.clear()


def _start(client, room, host):
    response = client.post(
        f"/api/rounds/rooms/{room.id}/start",
        json={"prompt_count": 3},
        headers={"X-Write-Token": host.write_token},
    )
    assert response.status_code == 200
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_start_round_and_snapshot(client, room, host, players):
    started = _start(client, room, host)
    assert started["imposter_id"] in [p.id for p in players]
    assert 0 <= started["selected_prompt_index"] < 3

    snapshot = client.get(f"/api/rounds/{started['round_id']}").json()
    assert snapshot["phase"] == "role_reveal"
    assert snapshot["imposter_id"] is None
    assert snapshot["deadline"].endswith("Z")
    assert len(snapshot["prompts"]) == 3


def test_start_round_requires_host(client, room, players):
    response = client.post(
        f"/api/rounds/rooms/{room.id}/start",
        json={"prompt_count": 3},
        headers={"X-Write-Token": players[2].write_token},
    )
    assert response.status_code == 403
    body = response.json()
    assert body["error"] == "AuthorizationError"
    assert body["retryable"] is False


def test_start_round_without_token(client, room, db):
    response = client.post(f"/api/rounds/rooms/{room.id}/start", json={"prompt_count": 3})
    assert response.status_code == 403
    assert response.json()["error"] == "AuthorizationError"
    assert db.query(Round).filter(Round.room_id == room.id).count() == 0


def test_second_start_conflicts(client, room, host):
    _start(client, room, host)
    response = client.post(
        f"/api/rounds/rooms/{room.id}/start",
        json={"prompt_count": 3},
        headers={"X-Write-Token": host.write_token},
    )
    assert response.status_code == 409
    assert response.json()["error"] == "StateError"


def test_unknown_round_is_404(client):
    response = client.get("/api/rounds/9999")
    assert response.status_code == 404


def test_advance_and_stale_advance(client, room, host):
    started = _start(client, room, host)
    url = f"/api/rounds/{started['round_id']}/advance"
    headers = {"X-Write-Token": host.write_token}

    response = client.post(url, json={"expected_phase": "role_reveal"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["new_phase"] == "answer_entry"

    response = client.post(url, json={"expected_phase": "role_reveal"}, headers=headers)
    assert response.status_code == 409

    response = client.post(url, json={"expected_phase": "lobby"}, headers=headers)
    assert response.status_code == 422


def test_answer_submission(client, room, host, players):
    started = _start(client, room, host)
    round_id = started["round_id"]
    prompt_id = client.get(f"/api/rounds/{round_id}").json()["prompts"][0]["id"]
    player = players[1]
    payload = {"player_id": player.id, "prompt_id": prompt_id, "text": "我的答案"}

    response = client.post(f"/api/rounds/{round_id}/answers", json=payload, headers={"X-Write-Token": player.write_token})
    assert response.status_code == 409

    client.post(f"/api/rounds/{round_id}/advance", json={}, headers={"X-Write-Token": host.write_token})
    response = client.post(f"/api/rounds/{round_id}/answers", json=payload, headers={"X-Write-Token": player.write_token})
    assert response.status_code == 200
    assert response.json() == {"accepted": True}

    response = client.post(
        f"/api/rounds/{round_id}/answers",
        json={**payload, "text": " "},
        headers={"X-Write-Token": player.write_token},
    )
    assert response.status_code == 422


def test_force_complete_below_threshold(client, room, host):
    started = _start(client, room, host)
    round_id = started["round_id"]
    client.post(f"/api/rounds/{round_id}/advance", json={}, headers={"X-Write-Token": host.write_token})

    response = client.post(
        f"/api/rounds/{round_id}/force-complete",
        json={"confirm": True},
        headers={"X-Write-Token": host.write_token},
    )
    assert response.status_code == 409


def test_advance_rejects_guessable_system_token(client, room, host):
    started = _start(client, room, host)
    url = f"/api/rounds/{started['round_id']}/advance"

    for token in ("system-timer", "令牌".encode("utf-8")):
        response = client.post(url, json={}, headers={"X-Write-Token": token})
        assert response.status_code == 403
        assert response.json()["error"] == "AuthorizationError"

    response = client.post(url, json={}, headers={"X-Write-Token": settings.SYSTEM_TIMER_TOKEN})
    assert response.status_code == 200
    assert response.json()["new_phase"] == "answer_entry"


def test_system_token_comparison(db):
    authorizer = Authorizer(db, system_token="计时器-token")
    assert authorizer.is_system("计时器-token")
    assert not authorizer.is_system("令牌")
    assert not authorizer.is_system(None)
    assert settings.SYSTEM_TIMER_TOKEN != "system-timer"
