from __future__ import annotations

import dataclasses
import json
import sqlite3

import pytest

from chat_agent_core import FALLBACK_RESPONSE, ModelGatewayError
from fakes import add_patient, add_prescription, add_reminder, answer, tools


def _messages(backend_module, owner_id: int) -> list[dict]:
    return backend_module.container.memory.conversation.recent_messages(owner_id, 200)


def test_plain_answer_is_returned_and_both_turns_persisted(backend_module, install_model, client, auth_headers):
    model = install_model(answer("Hello! How can I help you today?"))

    response = client.post("/chat", headers=auth_headers(1), json={"ownerId": 1, "message": "Hello"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["response"] == "Hello! How can I help you today?"
    stored = _messages(backend_module, 1)
    assert [(row["sender_type"], row["message_text"]) for row in stored] == [
        ("User", "Hello"),
        ("Bot", "Hello! How can I help you today?"),
    ]
    assert body["messageId"] == stored[-1]["message_id"]
    assert len(model.requests) == 1


def test_medicine_question_runs_prescription_lookup(backend_module, install_model, client, auth_headers):
    model = install_model(tools("get_prescriptions"), answer("You take Metformin 500 mg twice daily."))
    db = backend_module.container.db
    patient = add_patient(db)
    add_prescription(db, patient, "Metformin", dosage="500 mg", frequency="twice daily")

    response = client.post("/chat", headers=auth_headers(1), json={"ownerId": patient, "message": "What medicine am I on?"})

    assert response.status_code == 200
    assert response.json()["response"] == "You take Metformin 500 mg twice daily."
    second_call, _ = model.requests[1]
    tool_payload = json.loads(second_call[-1].text)
    assert tool_payload["message"] == "Found 1 active prescription."
    assert tool_payload["prescriptions"][0]["medicine"] == "Metformin"
    stored = _messages(backend_module, patient)
    assert [row["sender_type"] for row in stored] == ["User", "Bot"]


@pytest.mark.parametrize(
    ("payload", "error"),
    [
        ({}, "ownerId and message are required"),
        ({"ownerId": 1}, "ownerId and message are required"),
        ({"message": "hi"}, "ownerId and message are required"),
        ({"ownerId": "1", "message": "hi"}, "Invalid data type for ownerId or message"),
        ({"ownerId": True, "message": "hi"}, "Invalid data type for ownerId or message"),
        ({"ownerId": 1, "message": 42}, "Invalid data type for ownerId or message"),
        ({"ownerId": 10**20, "message": "hi"}, "Invalid data type for ownerId or message"),
        ({"ownerId": 1.5, "message": "hi"}, "Invalid data type for ownerId or message"),
        ({"ownerId": 1, "message": ""}, "Message cannot be empty"),
        ({"ownerId": 1, "message": "   "}, "Message cannot be empty"),
    ],
)
def test_invalid_requests_are_rejected_without_side_effects(
    backend_module, install_model, client, auth_headers, payload, error
):
    model = install_model()

    response = client.post("/chat", headers=auth_headers(1), json=payload)

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": error}
    assert model.requests == []
    assert backend_module.container.memory.conversation.count_messages(1) == 0


def test_whole_number_float_owner_id_is_accepted(backend_module, install_model, client, auth_headers):
    install_model(answer("Hi!"))

    response = client.post("/chat", headers=auth_headers(1), json={"ownerId": 1.0, "message": "Hello"})

    assert response.status_code == 200
    assert [row["sender_type"] for row in _messages(backend_module, 1)] == ["User", "Bot"]


def test_malformed_json_is_a_bad_request(install_model, client, auth_headers):
    install_model()

    response = client.post(
        "/chat",
        headers={**auth_headers(1), "Content-Type": "application/json"},
        content=b"{not json",
    )

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_body_validation_runs_before_authentication(install_model, client):
    install_model()

    response = client.post("/chat", json={"ownerId": 1, "message": ""})

    assert response.status_code == 400


@pytest.mark.parametrize(
    ("headers", "error"),
    [
        ({}, "Missing or malformed authorization header"),
        ({"Authorization": "Basic dXNlcjpwYXNz"}, "Missing or malformed authorization header"),
        ({"Authorization": "Bearer not-a-real-token"}, "Invalid or expired session"),
    ],
)
def test_unauthenticated_requests_are_rejected(backend_module, install_model, client, headers, error):
    model = install_model()

    response = client.post("/chat", headers=headers, json={"ownerId": 1, "message": "Hello"})

    assert response.status_code == 401
    assert response.json() == {"success": False, "error": error}
    assert model.requests == []
    assert backend_module.container.memory.conversation.count_messages(1) == 0


def test_user_turn_persistence_failure_fails_the_request(backend_module, install_model, client, auth_headers, monkeypatch):
    model = install_model(answer("unused"))

    def fail(**kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(backend_module.container.memory.conversation, "append_message", fail)

    response = client.post("/chat", headers=auth_headers(1), json={"ownerId": 1, "message": "Hello"})

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Could not save message"}
    assert model.requests == []


def test_assistant_turn_persistence_failure_still_answers(backend_module, install_model, client, auth_headers, monkeypatch):
    install_model(answer("Here is your answer."))
    conversation = backend_module.container.memory.conversation
    original_append = conversation.append_message

    def append_user_only(**kwargs):
        if kwargs["sender_type"] == "Bot":
            raise sqlite3.OperationalError("disk full")
        return original_append(**kwargs)

    monkeypatch.setattr(conversation, "append_message", append_user_only)

    response = client.post("/chat", headers=auth_headers(1), json={"ownerId": 1, "message": "Hello"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "response": "Here is your answer."}
    assert [row["sender_type"] for row in _messages(backend_module, 1)] == ["User"]


def test_history_excludes_the_new_message_and_is_capped(backend_module, install_model, client, auth_headers):
    model = install_model(answer("ok"))
    conversation = backend_module.container.memory.conversation
    for index in range(25):
        conversation.append_message(
            user_id=1,
            message_text=f"old {index}",
            sender_type="User" if index % 2 == 0 else "Bot",
            timestamp=f"2026-01-01T00:{index:02d}:00.000000+00:00",
        )
    conversation.append_message(user_id=2, message_text="other owner", sender_type="User")

    client.post("/chat", headers=auth_headers(1), json={"ownerId": 1, "message": "newest"})

    messages, _ = model.requests[0]
    texts = [turn.text for turn in messages]
    assert messages[0].role == "system"
    assert texts[1:-1] == [f"old {index}" for index in range(5, 25)]
    assert texts[-1] == "newest"
    assert texts.count("newest") == 1
    assert "other owner" not in texts


def test_endless_tool_requests_return_fallback(backend_module, install_model, client, auth_headers):
    add_patient(backend_module.container.db)
    install_model(*[tools("get_reminders") for _ in range(6)])

    response = client.post("/chat", headers=auth_headers(1), json={"ownerId": 1, "message": "loop"})

    assert response.status_code == 200
    assert response.json()["response"] == FALLBACK_RESPONSE


def test_model_failure_hides_details_outside_development(install_model, client, auth_headers):
    install_model(ModelGatewayError("Model endpoint timed out."))

    response = client.post("/chat", headers=auth_headers(1), json={"ownerId": 1, "message": "Hello"})

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Internal server error"}


def test_model_failure_details_in_development(backend_module, install_model, client, auth_headers):
    dev_settings = dataclasses.replace(backend_module.settings, environment="development")
    install_model(ModelGatewayError("Model endpoint timed out."), settings=dev_settings)

    response = client.post("/chat", headers=auth_headers(1), json={"ownerId": 1, "message": "Hello"})

    assert response.status_code == 500
    assert response.json() == {
        "success": False,
        "error": "Internal server error",
        "details": "Model endpoint timed out.",
    }


def test_chat_history_lists_messages_oldest_first(install_model, client, auth_headers):
    install_model(answer("First reply"), answer("Second reply"))
    client.post("/chat", headers=auth_headers(1), json={"ownerId": 1, "message": "one"})
    client.post("/chat", headers=auth_headers(1), json={"ownerId": 1, "message": "two"})

    response = client.get("/chat/history", headers=auth_headers(1), params={"ownerId": 1, "limit": 3})

    assert response.status_code == 200
    messages = response.json()["messages"]
    assert [(item["sender"], item["text"]) for item in messages] == [
        ("Bot", "First reply"),
        ("User", "two"),
        ("Bot", "Second reply"),
    ]
    assert all(item["ownerId"] == 1 for item in messages)


def test_chat_history_validates_owner_and_auth(install_model, client, auth_headers):
    install_model()

    assert client.get("/chat/history", headers=auth_headers(1)).status_code == 400
    assert client.get("/chat/history", headers=auth_headers(1), params={"ownerId": "abc"}).status_code == 400
    assert client.get("/chat/history", params={"ownerId": 1}).status_code == 401


def test_reminder_dispatch_endpoint_posts_due_reminders(backend_module, install_model, client, auth_headers):
    install_model()
    db = backend_module.container.db
    patient = add_patient(db)
    reminder = add_reminder(db, patient, "2020-01-01T08:00:00.000000+00:00")

    response = client.post("/reminders/dispatch", headers=auth_headers(1))

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "sent": 1,
        "failed": 0,
        "results": [{"reminderId": reminder, "success": True}],
    }
    stored = _messages(backend_module, patient)
    assert stored[0]["intent"] == "reminder"
    assert client.post("/reminders/dispatch").status_code == 401


def test_tool_check_runs_every_registered_tool(backend_module, install_model, client, auth_headers):
    install_model()
    add_patient(backend_module.container.db)

    response = client.get("/tools/check", headers=auth_headers(1), params={"ownerId": 1})

    assert response.status_code == 200
    body = response.json()
    assert body["ownerId"] == 1
    assert body["success"] is True
    assert [test["function"] for test in body["tests"]] == [
        "get_prescriptions",
        "get_reminders",
        "get_health_records",
        "get_todays_schedule",
        "get_doctors",
    ]


def test_tool_check_reports_failing_lookups(install_model, client, auth_headers):
    install_model()

    body = client.get("/tools/check", headers=auth_headers(1), params={"ownerId": 99}).json()

    assert body["success"] is False
    failing = [test["function"] for test in body["tests"] if not test["success"]]
    assert failing == ["get_doctors"]
