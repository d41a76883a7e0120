from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from eduvault.core.audit_log import audit_log
from eduvault.core.config import settings
from eduvault.core.rate_limit import rate_limit
from eduvault.core.security import create_access_token, get_current_user, hash_password, verify_password
from eduvault.db.session import get_db
from eduvault.models.user import User, UserRole

router = APIRouter(prefix="/auth", tags=["auth"])


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int | None = None


class MeResponse(BaseModel):
    id: str
    email: str
    name: str
    role: str
    institution: str | None


class RegisterRequest(BaseModel):
    email: str
    password: str
    first_name: str | None = None
    last_name: str | None = None
    institution: str | None = None


def _normalize_email(value: str) -> str:
    return str(value or "").strip().lower()


def _token_response(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(user_id=str(user.id), role=user.role.value),
        expires_in=int(settings.jwt_access_token_minutes) * 60,
    )


@router.post("/register", response_model=TokenResponse)
def register(
    request: Request,
    payload: RegisterRequest,
    db: Session = Depends(get_db),
    _: object = rate_limit(key_prefix="auth_register", limit=10, window_seconds=60),
):
    if not settings.allow_public_register:
        raise HTTPException(status_code=403, detail="registration disabled")

    email = _normalize_email(payload.email)
    if "@" not in email:
        raise HTTPException(status_code=400, detail="invalid email")
    if not payload.password or len(payload.password) < int(settings.password_min_length or 0):
        raise HTTPException(status_code=400, detail="password too short")

    existing = db.scalar(select(User).where(func.lower(User.email) == email))
    if existing is not None:
        audit_log(db=db, request=request, event_type="auth_register_failed", meta={"reason": "user_exists", "email": email})
        db.commit()
        raise HTTPException(status_code=409, detail="user already exists")

    # Self-registration only ever creates students; admins are provisioned.
    user = User(
        email=email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        institution=payload.institution,
        role=UserRole.student,
        is_active=True,
        password_hash=hash_password(payload.password),
    )
    db.add(user)
    db.flush()
    audit_log(db=db, request=request, event_type="auth_register_success", actor_user_id=user.id)
    db.commit()
    db.refresh(user)
    return _token_response(user)


@router.post("/token", response_model=TokenResponse)
def token(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
    _: object = rate_limit(key_prefix="auth_token", limit=20, window_seconds=60),
):
    email = _normalize_email(form_data.username)
    user = db.scalar(select(User).where(func.lower(User.email) == email))
    if user is None or not user.is_active or not verify_password(form_data.password, user.password_hash):
        audit_log(db=db, request=request, event_type="auth_login_failed", meta={"email": email})
        db.commit()
        raise HTTPException(status_code=401, detail="invalid credentials")

    audit_log(
        db=db,
        request=request,
        event_type="auth_login_success",
        actor_user_id=user.id,
        meta={"user_agent": str(request.headers.get("user-agent") or "").strip()},
    )
    db.commit()
    return _token_response(user)


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    return {
        "id": str(user.id),
        "email": user.email,
        "name": user.display_name,
        "role": user.role.value,
        "institution": user.institution,
    }
