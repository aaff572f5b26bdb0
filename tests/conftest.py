"""
Shared fixtures: a throwaway SQLite file per test, the services wired the same
way create_app() wires them, and row builders for assignments and submissions.
"""

import uuid
from datetime import datetime

import pytest
import pytest_asyncio

from credit_engine.core.database import create_engine_for, create_session_factory, init_models
from credit_engine.models.assignment import Assignment
from credit_engine.models.submission import Submission
from credit_engine.services.achievements import AchievementEngine
from credit_engine.services.credit_ledger import CreditLedger
from credit_engine.services.download_gate import DownloadGate
from credit_engine.services.gateway import MockGateway
from credit_engine.services.payment_reconciler import PaymentReconciler
from credit_engine.services.submission_rewards import SubmissionRewards


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    # A file, not :memory:, so concurrent sessions see one database
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await init_models(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def ledger(session_factory):
    return CreditLedger(session_factory, signup_bonus=50)


@pytest.fixture
def gateway():
    return MockGateway(redirect_base="http://testserver")


@pytest.fixture
def reconciler(session_factory, ledger, gateway, tmp_path):
    return PaymentReconciler(session_factory, ledger, gateway, log_dir=str(tmp_path / "logs"))


@pytest.fixture
def downloads(session_factory, ledger):
    return DownloadGate(session_factory, ledger, cost=3)


@pytest.fixture
def achievements(session_factory, ledger):
    return AchievementEngine(session_factory, ledger)


@pytest.fixture
def rewards(session_factory, ledger, achievements):
    return SubmissionRewards(session_factory, ledger, achievements)


@pytest.fixture
def user_id():
    return str(uuid.uuid4())


@pytest.fixture
def make_assignment(session_factory):
    async def _make(user_id: str, **fields) -> str:
        assignment_id = str(uuid.uuid4())
        async with session_factory() as db:
            db.add(Assignment(
                id=assignment_id,
                user_id=user_id,
                title=fields.pop("title", "Essay on Climate"),
                content=fields.pop("content", "Body text"),
                **fields,
            ))
            await db.commit()
        return assignment_id

    return _make


@pytest.fixture
def make_submission(session_factory):
    async def _make(user_id: str, **fields) -> str:
        submission_id = str(uuid.uuid4())
        async with session_factory() as db:
            db.add(Submission(
                id=submission_id,
                user_id=user_id,
                title=fields.pop("title", "Research paper"),
                word_count=fields.pop("word_count", 1200),
                submission_type=fields.pop("submission_type", "individual"),
                created_at=datetime.utcnow(),
                **fields,
            ))
            await db.commit()
        return submission_id

    return _make
