"""
HTTP surface, end to end through create_app() with the in-memory gateway.
Rows the API can't create (assignments, submissions) are seeded with a plain
synchronous SQLAlchemy session on the same SQLite file.
"""

import hashlib
import hmac
import json
import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, update
from sqlalchemy.orm import Session

from credit_engine.core.config import Settings
from credit_engine.models.assignment import Assignment
from credit_engine.models.submission import Submission
from credit_engine.models.user import User
from credit_engine.server import create_app
from credit_engine.services.gateway import GatewayPaymentState, MockGateway

WEBHOOK_SECRET = "whsec_test"


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "api.db"


@pytest.fixture
def gateway():
    return MockGateway(redirect_base="http://testserver")


@pytest.fixture
def client(db_path, gateway, tmp_path):
    settings = Settings(
        database_url=f"sqlite+aiosqlite:///{db_path}",
        jwt_secret="test-secret",
        webhook_secret=WEBHOOK_SECRET,
        payment_gateway="mock",
        log_dir=str(tmp_path / "logs"),
    )
    with TestClient(create_app(settings=settings, gateway=gateway)) as c:
        yield c


@pytest.fixture
def sync_db(db_path):
    engine = create_engine(f"sqlite:///{db_path}")
    yield engine
    engine.dispose()


def _register(client, email=None, name="Student"):
    email = email or f"{uuid.uuid4().hex[:8]}@example.com"
    res = client.post("/api/auth/register", json={"email": email, "password": "pass1234", "name": name})
    assert res.status_code == 200, res.text
    body = res.json()
    return body["user"]["id"], {"Authorization": f"Bearer {body['token']}"}


def _initiate(client, headers, package_id="credits_250"):
    res = client.post(
        "/api/payments/initiate",
        headers=headers,
        json={
            "package_id": package_id,
            "buyer_name": "Asha Mrema",
            "buyer_email": "asha@example.com",
            "buyer_phone": "0712345678",
        },
    )
    assert res.status_code == 200, res.text
    return res.json()["order_id"]


def _signed(body: dict):
    raw = json.dumps(body).encode("utf-8")
    signature = hmac.new(WEBHOOK_SECRET.encode("utf-8"), raw, hashlib.sha256).hexdigest()
    return raw, {"x-zenopay-signature": signature, "Content-Type": "application/json"}


class TestCredits:
    def test_health(self, client):
        assert client.get("/api/health").json()["status"] == "healthy"

    def test_register_grants_signup_bonus(self, client):
        _, headers = _register(client)

        assert client.get("/api/credits/balance", headers=headers).json()["balance"] == 50
        transactions = client.get("/api/credits/transactions", headers=headers).json()
        assert [t["amount_display"] for t in transactions] == ["+50"]

    def test_balance_requires_auth(self, client):
        assert client.get("/api/credits/balance").status_code == 401

    def test_catalog(self, client):
        packages = client.get("/api/credits/packages").json()
        assert [p["credits"] for p in packages] == [100, 250, 500, 1000]
        assert [p["id"] for p in client.get("/api/credits/plans").json()] == ["daily", "monthly"]


class TestPayments:
    def test_bad_package_is_400(self, client):
        _, headers = _register(client)
        res = client.post(
            "/api/payments/initiate",
            headers=headers,
            json={"package_id": "gold", "buyer_name": "A", "buyer_email": "a@b.c", "buyer_phone": "0712345678"},
        )
        assert res.status_code == 400

    def test_status_endpoint_reconciles(self, client, gateway):
        _, headers = _register(client)
        order_id = _initiate(client, headers)

        assert client.get(f"/api/payments/{order_id}/status", headers=headers).json()["status"] == "pending"

        gateway.settle(order_id, GatewayPaymentState.COMPLETED, "ZP-1")
        body = client.get(f"/api/payments/{order_id}/status", headers=headers).json()

        assert body["status"] == "completed"
        assert body["transaction_id"] == "ZP-1"
        assert client.get("/api/credits/balance", headers=headers).json()["balance"] == 300

    def test_status_of_someone_elses_order(self, client):
        _, owner = _register(client)
        _, other = _register(client)
        order_id = _initiate(client, owner)

        assert client.get(f"/api/payments/{order_id}/status", headers=other).status_code == 404

    def test_manual_verify(self, client, gateway):
        _, headers = _register(client)
        order_id = _initiate(client, headers, "credits_100")
        gateway.settle(order_id, GatewayPaymentState.COMPLETED)

        body = client.post(f"/api/payments/{order_id}/verify", headers=headers).json()

        assert body["state"] == "completed"
        assert body["status"] == "completed"

    def test_history(self, client):
        _, headers = _register(client)
        _initiate(client, headers)

        history = client.get("/api/payments", headers=headers).json()

        assert len(history) == 1
        assert history[0]["package_id"] == "credits_250"

    def test_initiate_reports_poll_cadence(self, client):
        _, headers = _register(client)
        res = client.post(
            "/api/payments/initiate",
            headers=headers,
            json={"package_id": 100, "buyer_name": "Asha", "buyer_email": "a@b.c", "buyer_phone": "0712345678"},
        )

        settings = client.app.state.services.settings
        body = res.json()
        assert body["poll_interval_seconds"] == settings.poll_interval_seconds
        assert body["poll_max_attempts"] == settings.poll_max_attempts


class TestOneTimeFee:
    BUYER = {"buyer_name": "Asha Mrema", "buyer_email": "asha@example.com", "buyer_phone": "0712345678"}

    def test_fee_flags_account_once(self, client, gateway):
        _, headers = _register(client)
        res = client.post("/api/payments/one-time/initiate", headers=headers, json=self.BUYER)
        assert res.status_code == 200, res.text
        order_id = res.json()["order_id"]

        gateway.settle(order_id, GatewayPaymentState.COMPLETED)
        status = client.get(f"/api/payments/{order_id}/status", headers=headers).json()

        assert status["payment_kind"] == "one_time"
        assert status["status"] == "completed"
        balance = client.get("/api/credits/balance", headers=headers).json()
        assert balance == {"balance": 50, "has_paid_one_time_fee": True}
        again = client.post("/api/payments/one-time/initiate", headers=headers, json=self.BUYER)
        assert again.status_code == 400


class TestAdminReconcile:
    def test_admin_settles_stuck_order(self, client, gateway, sync_db):
        _, student = _register(client)
        admin_id, admin = _register(client, name="Support")
        with Session(sync_db) as db:
            db.execute(update(User).where(User.id == admin_id).values(is_admin=True))
            db.commit()
        order_id = _initiate(client, student, "credits_100")
        gateway.settle(order_id, GatewayPaymentState.COMPLETED, "ZP-9")

        res = client.post(f"/api/admin/payments/{order_id}/reconcile", headers=admin)

        assert res.status_code == 200, res.text
        assert res.json()["outcome"] == "credited"
        assert client.get("/api/credits/balance", headers=student).json()["balance"] == 150
        again = client.post(f"/api/admin/payments/{order_id}/reconcile", headers=admin).json()
        assert again["outcome"] == "already_completed"

    def test_students_cannot_reconcile(self, client):
        _, headers = _register(client)
        order_id = _initiate(client, headers)

        assert client.post(f"/api/admin/payments/{order_id}/reconcile", headers=headers).status_code == 403

    def test_unknown_order(self, client, sync_db):
        admin_id, admin = _register(client)
        with Session(sync_db) as db:
            db.execute(update(User).where(User.id == admin_id).values(is_admin=True))
            db.commit()

        assert client.post("/api/admin/payments/nope/reconcile", headers=admin).status_code == 404


class TestWebhook:
    def test_rejects_bad_credentials(self, client):
        res = client.post("/api/payments/webhook", json={"order_id": "x"}, headers={"x-api-key": "wrong"})
        assert res.status_code == 401

    def test_replay_credits_once(self, client, gateway):
        _, headers = _register(client)
        order_id = _initiate(client, headers)
        gateway.settle(order_id, GatewayPaymentState.COMPLETED)
        raw, webhook_headers = _signed({"order_id": order_id, "payment_status": "COMPLETED"})

        first = client.post("/api/payments/webhook", content=raw, headers=webhook_headers)
        second = client.post("/api/payments/webhook", content=raw, headers=webhook_headers)

        assert first.status_code == 200
        assert first.json()["outcome"] == "credited"
        assert second.status_code == 200
        assert second.json()["outcome"] == "already_completed"
        assert client.get("/api/credits/balance", headers=headers).json()["balance"] == 300

    def test_payload_status_is_not_trusted(self, client):
        _, headers = _register(client)
        order_id = _initiate(client, headers)

        res = client.post(
            "/api/payments/webhook",
            json={"order_id": order_id, "payment_status": "COMPLETED"},
            headers={"x-api-key": WEBHOOK_SECRET},
        )

        assert res.json()["status"] == "pending"
        assert client.get("/api/credits/balance", headers=headers).json()["balance"] == 50

    def test_missing_order_id(self, client):
        res = client.post("/api/payments/webhook", json={"status": "COMPLETED"}, headers={"x-api-key": WEBHOOK_SECRET})
        assert res.status_code == 400

    def test_unknown_order(self, client):
        res = client.post("/api/payments/webhook", json={"order_id": "nope"}, headers={"x-api-key": WEBHOOK_SECRET})
        assert res.status_code == 404


class TestDownloads:
    def _seed_assignment(self, sync_db, user_id, **fields):
        assignment_id = str(uuid.uuid4())
        with Session(sync_db) as db:
            db.add(Assignment(id=assignment_id, user_id=user_id, title="Climate Essay", content="Body", **fields))
            db.commit()
        return assignment_id

    def test_unedited_download_is_free(self, client, sync_db):
        user_id, headers = _register(client)
        assignment_id = self._seed_assignment(sync_db, user_id)

        res = client.post(f"/api/assignments/{assignment_id}/download", headers=headers)

        assert res.status_code == 200
        assert res.headers["X-Credits-Charged"] == "0"
        assert 'filename="Climate_Essay.docx"' in res.headers["Content-Disposition"]
        assert res.content.startswith(b"Climate Essay")

    def test_edited_download_charges(self, client, sync_db):
        user_id, headers = _register(client)
        assignment_id = self._seed_assignment(sync_db, user_id, content_changed_percentage=45.0, edit_count=2)

        quote = client.get(f"/api/assignments/{assignment_id}/download-quote", headers=headers).json()
        res = client.post(
            f"/api/assignments/{assignment_id}/download",
            headers={**headers, "Idempotency-Key": "btn-1"},
            json={"download_type": "pdf"},
        )

        assert quote["will_charge"] is True
        assert res.headers["X-Credits-Charged"] == "3"
        assert res.headers["X-Remaining-Credits"] == "47"

    def test_insufficient_credits_is_402(self, client, sync_db):
        user_id, headers = _register(client)
        assignment_id = self._seed_assignment(sync_db, user_id, content_changed_percentage=80.0)
        for _ in range(16):
            client.post(f"/api/assignments/{assignment_id}/download", headers=headers)

        res = client.post(f"/api/assignments/{assignment_id}/download", headers=headers)

        assert res.status_code == 402
        body = res.json()
        assert body["creditCost"] == 3
        assert body["remainingCredits"] == 2
        assert body["shortfall"] == 1


class TestReview:
    def test_admin_review_awards_credits(self, client, sync_db):
        student_id, student = _register(client)
        admin_id, admin = _register(client, name="Reviewer")
        with Session(sync_db) as db:
            db.execute(update(User).where(User.id == admin_id).values(is_admin=True))
            submission_id = str(uuid.uuid4())
            db.add(Submission(id=submission_id, user_id=student_id, title="Paper", word_count=6000, training_opt_in=True))
            db.commit()

        res = client.post(
            f"/api/submissions/{submission_id}/review",
            headers=admin,
            json={"status": "approved", "quality_score": 5.0, "feedback": "Excellent"},
        )

        assert res.status_code == 200, res.text
        assert res.json()["credits_awarded"] == 137
        achievements = client.get("/api/achievements", headers=student).json()
        assert {a["achievement_type"] for a in achievements} == {"first_submission", "perfect_score"}

    def test_students_cannot_review(self, client):
        _, headers = _register(client)
        res = client.post("/api/submissions/whatever/review", headers=headers, json={"status": "approved"})
        assert res.status_code == 403
