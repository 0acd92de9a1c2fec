"""
Tests - HTTP API

Routers exercised through TestClient with storage and engine overridden.
"""

from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from alerts import build_alert_engine, get_alert_engine
from core.config import Settings
from db import SQLiteStorage, get_storage
from main import app

from conftest import decline_records


RULE_BODY = {
    "user_id": "user-1",
    "pet_id": "pet-1",
    "name": "Decline watch",
    "triggers": {
        "anomaly_types": ["health_decline"],
        "severity_levels": ["medium", "high"],
        "minimum_confidence": 70,
    },
    "notifications": {"in_app": True, "email": True},
}


@pytest.fixture
def storage(tmp_path):
    return SQLiteStorage(str(tmp_path / "api.db"))


@pytest.fixture
def client(storage):
    engine = build_alert_engine(Settings(), storage)
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_alert_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestRules:
    def test_create_and_get(self, client):
        response = client.post("/api/alerts/rules", json=RULE_BODY)

        assert response.status_code == 201
        rule = response.json()["rule"]
        assert rule["id"].startswith("rule_")
        assert rule["frequency"] == {"max_per_day": 3, "max_per_week": 10, "cooldown_hours": 6.0}

        fetched = client.get(f"/api/alerts/rules/{rule['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["rule"]["name"] == "Decline watch"

    def test_invalid_rule(self, client):
        body = {**RULE_BODY, "frequency": {"max_per_day": 5, "max_per_week": 2}}
        assert client.post("/api/alerts/rules", json=body).status_code == 422

        body = {**RULE_BODY, "triggers": {**RULE_BODY["triggers"], "anomaly_types": []}}
        assert client.post("/api/alerts/rules", json=body).status_code == 422

    def test_missing_rule(self, client):
        assert client.get("/api/alerts/rules/rule_nope").status_code == 404
        assert client.delete("/api/alerts/rules/rule_nope").status_code == 404
        assert client.post("/api/alerts/rules/rule_nope/enable").status_code == 404

    def test_list_update_disable_delete(self, client):
        rule_id = client.post("/api/alerts/rules", json=RULE_BODY).json()["rule"]["id"]

        patched = client.patch(f"/api/alerts/rules/{rule_id}", json={"name": "Renamed"})
        assert patched.status_code == 200
        assert patched.json()["rule"]["name"] == "Renamed"

        bad = client.patch(f"/api/alerts/rules/{rule_id}", json={"name": ""})
        assert bad.status_code == 422

        assert client.post(f"/api/alerts/rules/{rule_id}/disable").status_code == 200
        assert client.get("/api/alerts/rules", params={"user_id": "user-1"}).json()["count"] == 0
        listing = client.get("/api/alerts/rules", params={"user_id": "user-1", "include_inactive": True})
        assert listing.json()["count"] == 1

        assert client.delete(f"/api/alerts/rules/{rule_id}").status_code == 200

    def test_default_rules(self, client):
        response = client.post("/api/alerts/defaults/user-9")

        assert response.json()["created"] == 3
        assert client.get("/api/alerts/rules", params={"user_id": "user-9"}).json()["count"] == 3


class TestChecks:
    def test_check_and_statistics(self, client, storage):
        storage.save_records(decline_records("pet-1", now=datetime.now()))
        client.post("/api/alerts/rules", json=RULE_BODY)

        response = client.post("/api/alerts/check", json={"user_id": "user-1", "pet_id": "pet-1"})

        assert response.status_code == 200
        body = response.json()
        assert body["triggered_count"] == 1
        assert body["triggered"][0]["finding"]["type"] == "health_decline"
        assert body["triggered"][0]["notifications_sent"] == {"in_app": True, "email": True, "push": False}

        stats = client.get("/api/alerts/statistics/user-1").json()
        assert stats["total_triggered"] == 1
        assert stats["total_notifications_sent"] == 2
        assert stats["recent_triggers"][0]["rule_name"] == "Decline watch"

        notifications = client.get("/api/alerts/notifications/user-1").json()
        assert notifications["count"] == 2

    def test_sweep(self, client, storage):
        storage.save_records(decline_records("pet-1", now=datetime.now()))
        storage.add_pet("pet-1", "user-1")
        client.post("/api/alerts/defaults/user-1")

        summary = client.post("/api/alerts/sweep").json()

        assert summary["checked"] == 1
        assert summary["triggered"] == 1
        assert summary["errors"] == []

    def test_register_pet(self, client, storage):
        response = client.post("/api/alerts/pets", json={"pet_id": "pet-7", "user_id": "user-1"})

        assert response.status_code == 201
        assert storage.pets_for_user("user-1") == ["pet-7"]

    def test_engine_stats(self, client):
        stats = client.get("/api/alerts/stats").json()
        assert stats["evaluations"] == 0
        assert stats["max_concurrency"] >= 1


class TestAnomalies:
    def test_detect(self, client, storage):
        storage.save_records(decline_records("pet-1", now=datetime.now()))

        body = client.get("/api/anomalies/pet-1/detect").json()

        assert body["count"] == 1
        assert body["anomalies"][0]["type"] == "health_decline"
        assert body["anomalies"][0]["severity"] == "high"

    def test_detect_invalid_windows(self, client):
        response = client.get("/api/anomalies/pet-1/detect", params={"analysis_days": 20, "baseline_days": 10})
        assert response.status_code == 400

    def test_detect_without_records(self, client):
        assert client.get("/api/anomalies/pet-1/detect").json()["anomalies"] == []

    def test_pattern(self, client, storage):
        assert client.get("/api/anomalies/pet-1/pattern").status_code == 404

        storage.save_records(decline_records("pet-1", now=datetime.now()))
        pattern = client.get("/api/anomalies/pet-1/pattern", params={"days": 7}).json()["pattern"]

        assert pattern["dominant_health_status"] == "concerning"

    def test_summary(self, client, storage):
        storage.save_records(decline_records("pet-1", now=datetime.now()))

        summary = client.get("/api/anomalies/pet-1/summary").json()["summary"]

        assert summary["overall_risk"] == "high"
        assert summary["has_anomalies"] is True


def test_root():
    assert TestClient(app).get("/").json()["name"] == "Pet Health Alerts API"
