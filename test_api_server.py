import pytest
from fastapi.testclient import TestClient

import api_server
import database
from conftest import utc
from database import AlertEvent, DeviceToken, NotificationHistory, QueueEntry


@pytest.fixture
def api(db, fake_client):
    def override_get_db():
        yield db

    api_server.app.dependency_overrides[database.get_db] = override_get_db
    api_server.app.dependency_overrides[api_server.get_fcm_client] = lambda: fake_client
    try:
        with TestClient(api_server.app) as test_client:
            yield test_client
    finally:
        api_server.app.dependency_overrides.clear()


def test_health(api):
    response = api.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_bare_options_answers_ok(api):
    response = api.options("/push")

    assert response.status_code == 200
    assert response.text == "ok"


def test_cors_preflight(api):
    response = api.options(
        "/push",
        headers={"Origin": "https://app.example.com", "Access-Control-Request-Method": "POST"},
    )

    assert response.status_code == 200
    assert "access-control-allow-origin" in response.headers


def test_push_without_title_is_bad_request(api, fake_client):
    response = api.post("/push", json={"token": "device-a", "body": "Body"})

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert fake_client.calls == []


def test_push_to_profile_deactivates_only_rejected_tokens(api, db, fake_client, make_profile):
    make_profile(tokens=["token-a", "token-b"])
    fake_client.failures = {"token-b": "Requested entity was not found."}
    fake_client.rejected = {"token-b"}

    response = api.post("/push", json={
        "profile_id": "profile-1",
        "title": "Medication time",
        "body": "Metformina at 08:00",
        "type": "medication",
    })

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["sent"] == 1
    assert body["failed"] == 1
    assert body["errors"] == ["Token 1: Requested entity was not found."]

    db.expire_all()
    tokens = {t.token: t.active for t in db.query(DeviceToken).all()}
    assert tokens == {"token-a": True, "token-b": False}

    history = db.query(NotificationHistory).one()
    assert history.type == "medication"
    assert history.tokens_sent == 2
    assert history.tokens_succeeded == 1


def test_push_to_explicit_tokens_skips_history(api, db, fake_client):
    response = api.post("/push", json={"tokens": ["device-a", "device-b"], "title": "Hi", "body": "There"})

    assert response.status_code == 200
    assert response.json()["sent"] == 2
    assert response.json()["total"] == 2
    assert db.query(NotificationHistory).count() == 0


def test_push_without_tokens_is_handled_failure(api, make_profile):
    make_profile()

    response = api.post("/push", json={"profile_id": "profile-1", "title": "Hi", "body": "There"})

    assert response.status_code == 200
    assert response.json() == {"success": False, "error": "No FCM tokens found", "sent": 0, "failed": 0}


def test_push_without_fcm_configuration_is_server_error(api, fake_client, make_profile):
    make_profile(tokens=["device-a"])
    fake_client.configured = False

    response = api.post("/push", json={"profile_id": "profile-1", "title": "Hi", "body": "There"})

    assert response.status_code == 500
    assert fake_client.calls == []


def test_send_notification_records_history(api, db, make_profile):
    make_profile(tokens=["device-a"])

    response = api.post("/send-notification", json={"profile_id": "profile-1", "title": "Hi", "body": "There"})

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert db.query(NotificationHistory).one().type == "push"


def test_monitor_endpoints_without_obligations(api):
    medications = api.post("/monitor/medications")
    routines = api.post("/monitor/routines")

    assert medications.status_code == 200
    assert medications.json() == {"message": "No pending medications found", "alerts_generated": 0, "details": []}
    assert routines.json()["message"] == "No pending routines found"


def test_tick_schedules_and_drains(api, db, fake_client, make_profile, make_medication):
    make_profile(tokens=["device-a"])
    make_medication(times=["08:00"])
    db.add(QueueEntry(
        profile_id="profile-1", type="appointment", reference_id="9",
        title="Appointment reminder", body="Cardiologist in 30 minutes",
        scheduled_at=utc(2020, 1, 1, 12, 0),
    ))
    db.commit()

    response = api.post("/scheduled-notifications")

    assert response.status_code == 200
    body = response.json()
    assert body["scheduled"]["profiles_processed"] == 1
    assert body["scheduled"]["medications_scheduled"] == 1
    assert body["processed"] == {"processed": 1, "successful": 1, "failed": 0}
    assert "timestamp" in body
    assert fake_client.calls[0]["body"] == "Cardiologist in 30 minutes"


def test_process_queue_without_fcm_configuration(api, db, fake_client, make_profile):
    make_profile(tokens=["device-a"])
    db.add(QueueEntry(
        profile_id="profile-1", type="medication", reference_id="1",
        title="Medication time", body="Reminder", scheduled_at=utc(2020, 1, 1, 12, 0),
    ))
    db.commit()
    fake_client.configured = False

    response = api.post("/process-queue")

    assert response.status_code == 500
    db.expire_all()
    assert db.query(QueueEntry).one().processed is False


def test_list_queue_and_alerts(api, db, make_profile):
    make_profile()
    db.add(QueueEntry(
        profile_id="profile-1", type="medication", reference_id="1",
        title="Medication time", body="Reminder", scheduled_at=utc(2025, 3, 11, 10, 55),
    ))
    db.add(AlertEvent(
        profile_id="profile-1", event_type="medication_overdue", occurred_at=utc(2025, 3, 10, 11, 0),
        calendar_day=utc(2025, 3, 10).date(), description="missed", reference_id="1",
        reference_type="medication",
    ))
    db.commit()

    queue = api.get("/queue", params={"profile_id": "profile-1", "pending_only": True})
    alerts = api.get("/alerts", params={"profile_id": "profile-1"})

    assert queue.status_code == 200
    assert [e["reference_id"] for e in queue.json()] == ["1"]
    assert alerts.json()[0]["event_type"] == "medication_overdue"
    assert alerts.json()[0]["calendar_day"] == "2025-03-10"
