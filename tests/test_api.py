"""
Tests for the HTTP API.

Validates:
- Bearer authentication
- Response envelope and status codes for each error class
- Submit, review, queue, comments, history and permission endpoints
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import StaticIdentityProvider, add_record, add_user, make_store
from rpfaas_review.api.app import app, state
from rpfaas_review.workflow.schema import RecordKind, RecordStatus, Role

TOKENS = {
    "tm-token": "tm-1",
    "laoo-token": "laoo-bontoc",
    "sagada-token": "laoo-sagada",
    "sa-token": "sa-1",
    "acct-token": "acct-1",
}


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestReviewAPI:
    def setup_method(self):
        self.store = make_store()
        state.configure(self.store, StaticIdentityProvider(TOKENS))
        self.client = TestClient(app)

        add_user(self.store, "tm-1", Role.TAX_MAPPER)
        add_user(self.store, "laoo-bontoc", Role.LAOO, municipality="Bontoc", full_name="Maria Santos")
        add_user(self.store, "laoo-sagada", Role.LAOO, municipality="Sagada")
        add_user(self.store, "sa-1", Role.SUPER_ADMIN)
        add_user(self.store, "acct-1", Role.ACCOUNTANT)

    def teardown_method(self):
        state.store = None
        state.identity = None

    # ── Authentication ──────────────────────────────────────────

    def test_missing_token(self):
        resp = self.client.get("/my-permissions")
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "error": "Unauthorized"}

    def test_unknown_token(self):
        resp = self.client.get("/my-permissions", headers=auth("bogus"))
        assert resp.status_code == 401

    def test_my_permissions(self):
        resp = self.client.get("/my-permissions", headers=auth("tm-token"))
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["role"] == "tax_mapper"
        assert body["data"]["permissions"]["building_structures.create"] is True

    # ── Review workflow ─────────────────────────────────────────

    def test_submit_claim_approve(self):
        record = add_record(self.store, kind=RecordKind.LAND)

        resp = self.client.post(f"/records/land/{record.id}/submit", headers=auth("tm-token"))
        assert resp.status_code == 200
        assert resp.json()["data"]["status"] == "submitted"

        resp = self.client.post(
            f"/records/land/{record.id}/review",
            json={"action": "claim"},
            headers=auth("laoo-token"),
        )
        assert resp.json()["data"]["laoo_reviewer_id"] == "laoo-bontoc"

        resp = self.client.post(
            f"/records/land/{record.id}/review",
            json={"action": "approve", "note": "Values verified"},
            headers=auth("laoo-token"),
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["status"] == "approved"

        resp = self.client.get(f"/records/land/{record.id}/history", headers=auth("laoo-token"))
        history = resp.json()["data"]
        assert [h["to_status"] for h in history] == ["submitted", "under_review", "approved"]
        assert history[-1]["note"] == "Values verified"

    def test_illegal_transition_is_409(self):
        record = add_record(self.store)
        resp = self.client.post(
            f"/records/building/{record.id}/review",
            json={"action": "approve"},
            headers=auth("laoo-token"),
        )
        assert resp.status_code == 409
        assert resp.json() == {
            "success": False,
            "error": 'Cannot approve a record with status "draft"',
        }

    def test_wrong_role_is_403(self):
        record = add_record(self.store, status=RecordStatus.SUBMITTED)
        resp = self.client.post(
            f"/records/building/{record.id}/review",
            json={"action": "claim"},
            headers=auth("tm-token"),
        )
        assert resp.status_code == 403
        assert resp.json()["success"] is False

    def test_missing_record_is_404(self):
        resp = self.client.post("/records/building/999/submit", headers=auth("tm-token"))
        assert resp.status_code == 404

    def test_bad_action_and_kind_are_400(self):
        record = add_record(self.store, status=RecordStatus.SUBMITTED)
        resp = self.client.post(
            f"/records/building/{record.id}/review",
            json={"action": "submit"},
            headers=auth("laoo-token"),
        )
        assert resp.status_code == 400
        resp = self.client.post("/records/machinery/1/submit", headers=auth("tm-token"))
        assert resp.status_code == 400

    def test_body_validation_is_400(self):
        resp = self.client.post(
            "/records/building/1/review", json={"note": "no action"}, headers=auth("laoo-token"),
        )
        assert resp.status_code == 400
        assert resp.json()["success"] is False
        resp = self.client.post("/records/building/abc/submit", headers=auth("tm-token"))
        assert resp.status_code == 400

    def test_available_actions(self):
        record = add_record(self.store, status=RecordStatus.UNDER_REVIEW)
        resp = self.client.get(f"/records/building/{record.id}/actions", headers=auth("laoo-token"))
        assert resp.json()["data"] == {"status": "under_review", "actions": ["return", "approve"]}

        resp = self.client.get(f"/records/building/{record.id}/actions", headers=auth("tm-token"))
        assert resp.json()["data"]["actions"] == []

    # ── Queue ───────────────────────────────────────────────────

    def test_review_queue_scoped(self):
        add_record(self.store, status=RecordStatus.SUBMITTED, municipality="Bontoc", submitted_minutes=1)
        sagada = add_record(self.store, status=RecordStatus.SUBMITTED, municipality="Sagada", submitted_minutes=2)

        resp = self.client.get("/review-queue", headers=auth("sagada-token"))
        assert resp.status_code == 200
        items = resp.json()["data"]
        assert [i["id"] for i in items] == [sagada.id]
        assert items[0]["kind"] == "building"
        assert items[0]["kind_label"] == "Building & Structure"

    def test_review_queue_filters(self):
        resp = self.client.get("/review-queue?status=pending", headers=auth("sa-token"))
        assert resp.status_code == 400
        resp = self.client.get("/review-queue?kind=land", headers=auth("sa-token"))
        assert resp.json() == {"success": True, "data": []}

    def test_review_queue_forbidden(self):
        resp = self.client.get("/review-queue", headers=auth("acct-token"))
        assert resp.status_code == 403

    # ── Comments ────────────────────────────────────────────────

    def test_comment_lifecycle(self):
        record = add_record(self.store, status=RecordStatus.UNDER_REVIEW)
        url = f"/records/building/{record.id}/comments"

        resp = self.client.post(
            url,
            json={"field_name": "owner_name", "comment_text": "  Spelling  ", "suggested_value": "Juan"},
            headers=auth("laoo-token"),
        )
        assert resp.status_code == 201
        created = resp.json()["data"]
        assert created["comment_text"] == "Spelling"
        assert created["author_role"] == "laoo"

        resp = self.client.get(url, headers=auth("tm-token"))
        listed = resp.json()["data"]
        assert len(listed) == 1
        assert listed[0]["author_name"] == "Maria Santos"

        resp = self.client.patch(
            f"{url}/{created['id']}", json={"is_resolved": True}, headers=auth("tm-token"),
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["is_resolved"] is True

    def test_empty_comment_is_400(self):
        resp = self.client.post(
            "/records/building/1/comments", json={"comment_text": "   "}, headers=auth("laoo-token"),
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "comment_text is required"

    # ── Administration ──────────────────────────────────────────

    def test_role_permissions_round_trip(self):
        resp = self.client.put(
            "/role-permissions",
            json={"permissions": {"accountant": {"accounting.view": True, "machinery.view": True}}},
            headers=auth("sa-token"),
        )
        assert resp.status_code == 200

        resp = self.client.get("/my-permissions", headers=auth("acct-token"))
        permissions = resp.json()["data"]["permissions"]
        assert permissions["machinery.view"] is True
        assert permissions["dashboard.view"] is False

    def test_role_permissions_super_admin_only(self):
        resp = self.client.get("/role-permissions", headers=auth("laoo-token"))
        assert resp.status_code == 403
        assert resp.json()["error"] == "Forbidden: Super Admin access required"

    def test_update_user(self):
        resp = self.client.patch(
            "/users/tm-1", json={"role": "laoo", "municipality": "Sadanga"}, headers=auth("sa-token"),
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["role"] == "laoo"

        resp = self.client.get("/my-permissions", headers=auth("tm-token"))
        assert resp.json()["data"]["role"] == "laoo"

        resp = self.client.get("/users", headers=auth("tm-token"))
        assert resp.status_code == 403

    def test_health(self):
        resp = self.client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"
