"""Tests for the sessions API."""

import pytest
from fastapi.middleware.cors import CORSMiddleware
from fastapi.testclient import TestClient

from conftest import frames_through_catch, pose, rowing_frames
from ergcoach.config import get_settings
from ergcoach.main import app


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def dispatched(monkeypatch):
    reports = []
    monkeypatch.setattr("ergcoach.worker.dispatch_session_report", reports.append)
    return reports


def _create(client, name=None):
    response = client.post("/api/sessions", json={"name": name})
    assert response.status_code == 201
    return response.json()


def _post_frames(client, session_id, frames):
    results = []
    for t, keypoints in frames:
        response = client.post(
            f"/api/sessions/{session_id}/frames",
            json={"timestamp": t, "keypoints": keypoints},
        )
        assert response.status_code == 200
        results.append(response.json())
    return results


# ============================================================================
# Test: Session lifecycle
# ============================================================================

class TestSessions:

    def test_create_session(self, client):
        data = _create(client, name="Morning 2k")
        assert data["name"] == "Morning 2k"
        assert data["stroke_count"] == 0
        assert data["is_rowing"] is False
        assert data["frames_submitted"] == 0

    def test_unknown_session(self, client):
        response = client.get("/api/sessions/missing")
        assert response.status_code == 404
        assert response.json()["detail"] == "Session not found"

    def test_submit_frames(self, client):
        session_id = _create(client)["id"]
        results = _post_frames(client, session_id, rowing_frames(frames_through_catch(4)))
        assert all(r["accepted"] for r in results)
        assert results[-1]["is_rowing"] is True
        assert "catch" in results[-1]["events"]

        data = client.get(f"/api/sessions/{session_id}").json()
        assert data["stroke_count"] == 4
        assert data["stroke_rate"] == 25
        assert data["frames_submitted"] == frames_through_catch(4)

    def test_rejected_frame(self, client):
        session_id = _create(client)["id"]
        _post_frames(client, session_id, [(1000, pose(0))])
        result = _post_frames(client, session_id, [(500, pose(0))])[0]
        assert result["accepted"] is False
        assert result["reason"] == "out_of_order"

    def test_malformed_keypoint(self, client):
        session_id = _create(client)["id"]
        response = client.post(
            f"/api/sessions/{session_id}/frames",
            json={"timestamp": 0, "keypoints": {"left_wrist": [1.0]}},
        )
        assert response.status_code == 422

    @pytest.mark.parametrize("bad", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_keypoint(self, client, bad):
        session_id = _create(client)["id"]
        response = client.post(
            f"/api/sessions/{session_id}/frames",
            content='{"timestamp": 0, "keypoints": {"left_wrist": [' + bad + ', 120.0]}}',
            headers={"content-type": "application/json"},
        )
        assert response.status_code == 422
        assert client.get(f"/api/sessions/{session_id}").json()["frames_submitted"] == 0

    def test_negative_timestamp(self, client):
        session_id = _create(client)["id"]
        response = client.post(
            f"/api/sessions/{session_id}/frames",
            json={"timestamp": -1, "keypoints": pose(0)},
        )
        assert response.status_code == 422

    def test_checkers_in_priority_order(self, client):
        session_id = _create(client)["id"]
        response = client.get(f"/api/sessions/{session_id}/checkers")
        assert response.status_code == 200
        titles = [c["title"] for c in response.json()]
        assert len(titles) == 8
        assert titles[0] == "Hand levels"
        assert all(c["status"] == "good" for c in response.json())

    def test_overlay_quiet_for_clean_rowing(self, client):
        session_id = _create(client)["id"]
        assert client.get(f"/api/sessions/{session_id}/overlay").json() == []
        _post_frames(client, session_id, rowing_frames(frames_through_catch(10)))
        assert client.get(f"/api/sessions/{session_id}/overlay").json() == []

    def test_overlay_for_fault(self, client):
        session_id = _create(client)["id"]
        _post_frames(client, session_id, rowing_frames(frames_through_catch(10), catch_angle=95.0))
        response = client.get(f"/api/sessions/{session_id}/overlay")
        assert response.status_code == 200
        lines = response.json()
        assert len(lines) == 1
        assert lines[0]["checker"] == "Catch Angle"
        assert {"x1", "y1", "x2", "y2", "color"} <= set(lines[0])

    def test_reset(self, client):
        session_id = _create(client)["id"]
        _post_frames(client, session_id, rowing_frames(frames_through_catch(5)))
        response = client.post(f"/api/sessions/{session_id}/reset")
        assert response.status_code == 200
        data = response.json()
        assert data["stroke_count"] == 0
        assert data["is_rowing"] is False


# ============================================================================
# Test: Reports
# ============================================================================

class TestReports:

    def test_report_too_short(self, client):
        session_id = _create(client)["id"]
        _post_frames(client, session_id, rowing_frames(frames_through_catch(5)))
        response = client.get(f"/api/sessions/{session_id}/report")
        assert response.status_code == 404

    def test_report(self, client):
        session_id = _create(client)["id"]
        _post_frames(client, session_id, rowing_frames(frames_through_catch(10)))
        response = client.get(f"/api/sessions/{session_id}/report")
        assert response.status_code == 200
        report = response.json()
        assert report["session_id"] == session_id
        assert report["stroke_count"] == 10
        assert report["technical_score"] == 100
        assert len(report["checkers"]) == 8

    def test_delete_short_session(self, client, dispatched):
        session_id = _create(client)["id"]
        response = client.delete(f"/api/sessions/{session_id}")
        assert response.status_code == 204
        assert client.get(f"/api/sessions/{session_id}").status_code == 404
        assert dispatched == []

    def test_delete_dispatches_report(self, client, dispatched):
        session_id = _create(client)["id"]
        _post_frames(client, session_id, rowing_frames(frames_through_catch(10)))
        client.delete(f"/api/sessions/{session_id}")
        assert len(dispatched) == 1
        assert dispatched[0].session_id == session_id
        assert dispatched[0].duration_ms == 24100 - 4800


# ============================================================================
# Test: Service endpoints
# ============================================================================

class TestService:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_health_counts_sessions(self, client):
        before = client.get("/health").json()["active_sessions"]
        _create(client)
        assert client.get("/health").json()["active_sessions"] == before + 1

    def test_root_lists_sessions(self, client):
        assert client.get("/").json()["sessions"] == "/api/sessions"

    def test_no_cors_by_default(self):
        assert get_settings().cors_origins == []
        assert not any(m.cls is CORSMiddleware for m in app.user_middleware)
