from app.services.session_manager import get_session_manager


def _create(client):
    response = client.post("/v1/sessions", json={"user_id": "caller-1"})
    assert response.status_code == 201
    return response.json()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["active_sessions"] == 0


def test_config(client):
    body = client.get("/config").json()

    assert body["agent"] == "Insurance Specialist"
    assert body["audio"]["format"] == "pcm16"


def test_session_lifecycle(client):
    created = _create(client)
    session_id = created["id"]
    assert created["data"]["completion_status"]["overall"] == 0
    assert created["user_id"] == "caller-1"

    fetched = client.get(f"/v1/sessions/{session_id}")
    assert fetched.status_code == 200
    assert "first name" in fetched.json()["missing_fields"]

    patched = client.patch(
        f"/v1/sessions/{session_id}",
        json={"personal_info": {"first_name": "Jane", "address": {"zip_code": "90210"}}},
    )
    assert patched.status_code == 200
    assert patched.json()["data"]["personal_info"]["first_name"] == "Jane"

    assert client.get(f"/v1/sessions/{session_id}/history").json() == {"session_id": session_id, "history": []}
    assert client.post(f"/v1/sessions/{session_id}/extend", json={"additional_ms": 60_000}).status_code == 200

    assert client.delete(f"/v1/sessions/{session_id}").json() == {"deleted": True}
    assert client.delete(f"/v1/sessions/{session_id}").json() == {"deleted": False}
    assert client.get(f"/v1/sessions/{session_id}").status_code == 404


def test_invalid_patch_is_rejected(client):
    session_id = _create(client)["id"]

    response = client.patch(f"/v1/sessions/{session_id}", json={"personal_info": {"address": {"zip_code": "9021"}}})

    assert response.status_code == 422
    assert client.get(f"/v1/sessions/{session_id}").json()["data"]["personal_info"]["address"]["zip_code"] is None


def test_unknown_session(client):
    assert client.patch("/v1/sessions/nope", json={"personal_info": {"first_name": "Jane"}}).status_code == 404
    assert client.get("/v1/sessions/nope/history").status_code == 404
    assert client.post("/v1/sessions/nope/extend").status_code == 404


def test_capacity_exceeded(client):
    get_session_manager().max_sessions = 1
    _create(client)

    response = client.post("/v1/sessions")

    assert response.status_code == 503


def test_vehicle_steps(client):
    session_id = _create(client)["id"]

    early = client.post(f"/v1/sessions/{session_id}/vehicles/1/make", json={"value": "Honda"}).json()
    assert early["success"] is False
    assert early["next_step"] == "collect_vehicle_year"

    year = client.post(f"/v1/sessions/{session_id}/vehicles/1/year", json={"value": 2019}).json()
    make = client.post(f"/v1/sessions/{session_id}/vehicles/1/make", json={"value": "honda"}).json()

    assert year["success"] is True
    assert make["success"] is True
    assert make["vehicle"]["make"] == "Honda"
    assert client.post(f"/v1/sessions/{session_id}/vehicles/1/color", json={"value": "red"}).status_code == 404


def test_conversations_empty(client):
    assert client.get("/v1/conversations").json() == {"count": 0, "conversations": []}
    assert client.get("/v1/conversations/missing").status_code == 404
    assert client.get("/v1/conversations/missing/summary").status_code == 404


def test_admin_views(client):
    _create(client)

    sessions = client.get("/v1/admin/sessions").json()
    archives = client.get("/v1/admin/archives").json()

    assert sessions["count"] == 1
    assert archives == {"count": 0, "archives": []}


def test_voice_session_round_trip(client, engines):
    with client.websocket_connect("/v1/voice") as ws:
        assert ws.receive_json()["type"] == "connection:established"

        ws.send_json({"type": "session:start", "data": {"metadata": {"client": "test"}}})
        started = ws.receive_json()
        assert started["type"] == "session:started"
        session_id = started["session_id"]

        ws.send_json({"type": "text:input", "data": {"text": "I'd like a quote"}})
        ws.send_json({"type": "session:status"})
        status = ws.receive_json()
        assert status["type"] == "session:status"
        assert status["data"]["archive"] == "recording"

        ws.send_json({"type": "session:end"})
        ended = ws.receive_json()
        assert ended["type"] == "session:ended"
        assert ended["data"]["reason"] == "user_ended"
        conversation_id = ended["data"]["conversation_id"]

    assert engines[0].texts == ["I'd like a quote"]
    assert engines[0].disconnects == 1

    listed = client.get("/v1/conversations").json()
    assert [c["conversation_id"] for c in listed["conversations"]] == [conversation_id]
    summary = client.get(f"/v1/conversations/{conversation_id}/summary").json()
    assert summary["session_id"] == session_id
    assert summary["metadata"]["client"] == "test"


def test_voice_rejects_unknown_messages(client):
    with client.websocket_connect("/v1/voice") as ws:
        ws.receive_json()

        ws.send_json({"type": "dance"})
        error = ws.receive_json()

        ws.send_json({"type": "audio:input", "data": {"audio": "AAAA"}})
        no_session = ws.receive_json()

    assert error["type"] == "error"
    assert error["data"]["code"] == "unknown_type"
    assert no_session["data"]["code"] == "no_session"


def test_voice_start_failure_leaves_nothing_behind(client, engines, monkeypatch):
    from app.services import realtime

    async def unavailable(session_id, metadata=None):
        raise RuntimeError("notifier down")

    monkeypatch.setattr(realtime, "session_started", unavailable)

    with client.websocket_connect("/v1/voice") as ws:
        ws.receive_json()
        ws.send_json({"type": "session:start"})
        error = ws.receive_json()

    assert error["type"] == "error"
    assert error["data"]["code"] == "engine_unavailable"
    assert engines[0].disconnects == 1
    assert client.get("/v1/admin/archives").json() == {"count": 0, "archives": []}
    assert client.get("/v1/admin/sessions").json()["count"] == 0
