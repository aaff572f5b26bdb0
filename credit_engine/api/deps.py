# FILE: credit_engine/api/deps.py

from dataclasses import dataclass
from datetime import timezone

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select

from credit_engine.core.config import Settings
from credit_engine.core.database import SessionFactory
from credit_engine.models.user import User
from credit_engine.services.achievements import AchievementEngine
from credit_engine.services.auth_service import TokenError, decode_token
from credit_engine.services.credit_ledger import CreditLedger
from credit_engine.services.download_gate import DocumentRenderer, DownloadGate
from credit_engine.services.payment_reconciler import PaymentReconciler
from credit_engine.services.submission_rewards import SubmissionRewards

security = HTTPBearer(auto_error=False)


@dataclass
class Services:
    """Handles wired once in create_app() and shared by the routers."""
    settings: Settings
    session_factory: SessionFactory
    ledger: CreditLedger
    reconciler: PaymentReconciler
    downloads: DownloadGate
    renderer: DocumentRenderer
    achievements: AchievementEngine
    submissions: SubmissionRewards


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_db(services: Services = Depends(get_services)):
    async with services.session_factory() as session:
        yield session


async def get_current_user(
        credentials: HTTPAuthorizationCredentials = Depends(security),
        services: Services = Depends(get_services),
):
    if not credentials or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        user_id = decode_token(credentials.credentials, services.settings.jwt_secret)
    except TokenError as exc:
        raise HTTPException(status_code=401, detail=exc.reason)

    # Short-lived session: SQLite takes its write lock at BEGIN, so nothing may
    # stay open while the endpoint runs its own ledger transactions.
    async with services.session_factory() as db:
        user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "is_admin": bool(user.is_admin),
        "created_at": user.created_at.replace(tzinfo=timezone.utc).isoformat(),
    }


async def require_admin(user=Depends(get_current_user)):
    if not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Forbidden")
    return user
