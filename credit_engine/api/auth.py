# FILE: credit_engine/api/auth.py
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from credit_engine.api.deps import Services, get_current_user, get_db, get_services
from credit_engine.models.user import User
from credit_engine.schemas.auth import UserCreate, UserLogin, TokenResponse, UserResponse
from credit_engine.services.auth_service import hash_password, verify_password, create_token

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        is_admin=bool(user.is_admin),
        created_at=user.created_at.replace(tzinfo=timezone.utc).isoformat(),
    )


@router.post("/register", response_model=TokenResponse)
async def register(
        data: UserCreate,
        db: AsyncSession = Depends(get_db),
        services: Services = Depends(get_services),
):
    existing = (await db.execute(select(User).where(User.email == data.email))).scalar_one_or_none()
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")

    user_id = str(uuid.uuid4())
    user = User(
        id=user_id,
        email=data.email,
        password_hash=hash_password(data.password),
        name=data.name,
        created_at=datetime.utcnow(),
    )
    db.add(user)
    await db.commit()

    # welcome bonus lands with the account, not on first dashboard visit
    await services.ledger.get_balance(user_id)

    return TokenResponse(
        token=create_token(user_id, data.email, services.settings.jwt_secret),
        user=_user_response(user),
    )


@router.post("/login", response_model=TokenResponse)
async def login(
        data: UserLogin,
        db: AsyncSession = Depends(get_db),
        services: Services = Depends(get_services),
):
    user = (await db.execute(select(User).where(User.email == data.email))).scalar_one_or_none()
    if not user or not verify_password(data.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    return TokenResponse(
        token=create_token(user.id, user.email, services.settings.jwt_secret, is_admin=bool(user.is_admin)),
        user=_user_response(user),
    )


@router.get("/me", response_model=UserResponse)
async def auth_me(user=Depends(get_current_user)):
    return UserResponse(**user)
