import re
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from linescout.core.api_docs import error_responses
from linescout.core.config import settings
from linescout.core.deps import get_db
from linescout.core.id_utils import generate_short_token
from linescout.core.permissions import require_admin
from linescout.core.rate_limit import LoginRateLimiter
from linescout.core.security import (
    TokenValidationError,
    create_access_token,
    create_refresh_token,
    get_token_metadata,
    hash_password,
    verify_password,
)
from linescout.core.security_current import get_current_user
from linescout.models.refresh_token import RefreshToken
from linescout.models.user import User
from linescout.schemas.auth import (
    ChangePasswordIn,
    LoginIn,
    LogoutIn,
    RefreshIn,
    RegisterIn,
    TokenOut,
    UpdateProfileIn,
    UserListOut,
    UserProfileOut,
    UserRoleUpdateIn,
)
from linescout.services.audit_service import log_audit_event

router = APIRouter(prefix="/auth", tags=["auth"])
users_router = APIRouter(prefix="/users", tags=["users"])
TOKEN_PAIR_RESPONSE = {
    200: {
        "description": "Access and refresh tokens",
        "content": {
            "application/json": {
                "example": {
                    "access_token": "access-token",
                    "refresh_token": "refresh-token",
                    "token_type": "bearer",
                }
            }
        },
    }
}

login_rate_limiter = LoginRateLimiter(
    max_attempts=settings.auth_rate_limit_max_attempts,
    window_seconds=settings.auth_rate_limit_window_seconds,
    lock_seconds=settings.auth_rate_limit_lock_seconds,
)


def _slugify_username(seed: str) -> str:
    cleaned = re.sub(r"[^a-z0-9_]+", "_", seed.strip().lower())
    cleaned = re.sub(r"_+", "_", cleaned).strip("_")
    if not cleaned:
        return "user"
    return cleaned[:30]


def _username_exists(db: Session, username: str, *, exclude_user_id: str | None = None) -> bool:
    stmt = select(User.id).where(func.lower(User.username) == username.lower())
    if exclude_user_id:
        stmt = stmt.where(User.id != exclude_user_id)
    return db.execute(stmt).scalar_one_or_none() is not None


def _generate_unique_username(
    db: Session,
    preferred_username: str | None,
    fallback_seed: str,
) -> str:
    base = _slugify_username(preferred_username or fallback_seed)
    candidate = base
    while _username_exists(db, candidate):
        candidate = f"{base[:22]}_{generate_short_token(6)}"
    return candidate


def _client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for", "").strip()
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _rate_key(identifier: str, client_ip: str) -> str:
    return f"{identifier.strip().lower()}:{client_ip}"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _profile_out(user: User) -> UserProfileOut:
    return UserProfileOut(
        id=user.id,
        email=user.email,
        username=user.username,
        full_name=user.full_name,
        phone=user.phone,
        role=user.role,
        is_active=bool(user.is_active),
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def _enforce_rate_limit(identifier: str, client_ip: str) -> str:
    key = _rate_key(identifier, client_ip)
    retry_after = login_rate_limiter.check(key)
    if retry_after > 0:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many failed attempts. Try again later.",
            headers={"Retry-After": str(retry_after)},
        )
    return key


def _authenticate_user(db: Session, identifier: str, password: str) -> User:
    normalized_identifier = identifier.strip().lower()
    user = db.execute(
        select(User).where(
            or_(
                func.lower(User.email) == normalized_identifier,
                func.lower(User.username) == normalized_identifier,
            )
        )
    ).scalar_one_or_none()

    if not user or not verify_password(password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is disabled")

    return user


def _revoke_refresh_tokens(db: Session, user_id: str, *, reason: str) -> int:
    result = db.execute(
        update(RefreshToken)
        .where(
            RefreshToken.user_id == user_id,
            RefreshToken.revoked_at.is_(None),
        )
        .values(revoked_at=datetime.now(timezone.utc), revoked_reason=reason)
    )
    return result.rowcount or 0


def _issue_token_pair(
    db: Session, *, user: User, client_ip: str | None = None
) -> tuple[TokenOut, str]:
    access_token = create_access_token(user.id, role=user.role)
    refresh_token = create_refresh_token(user.id)
    refresh_meta = get_token_metadata(refresh_token, expected_type="refresh")

    db.add(
        RefreshToken(
            id=str(uuid.uuid4()),
            user_id=user.id,
            token_jti=refresh_meta.jti,
            expires_at=refresh_meta.expires_at,
            created_by_ip=client_ip,
        )
    )

    return (
        TokenOut(access_token=access_token, refresh_token=refresh_token),
        refresh_meta.jti,
    )


def _claim_placeholder(db: Session, user: User, payload: RegisterIn, client_ip: str) -> TokenOut:
    if payload.username:
        preferred = _slugify_username(payload.username)
        if _username_exists(db, preferred, exclude_user_id=user.id):
            raise HTTPException(status_code=400, detail="Username already taken")
        user.username = preferred
    user.hashed_password = hash_password(payload.password)
    user.full_name = payload.full_name or user.full_name
    user.phone = payload.phone or user.phone
    user.is_placeholder = False
    log_audit_event(
        db,
        actor_user_id=user.id,
        action="user.claim",
        target_type="user",
        target_id=user.id,
    )
    token_pair, _ = _issue_token_pair(db, user=user, client_ip=client_ip)
    db.commit()
    return token_pair


@router.post(
    "/register",
    response_model=TokenOut,
    summary="Register a customer",
    description=(
        "Creates a customer account and returns access + refresh tokens. "
        "An account created by a guest quote payment is claimed instead, keeping its wallet and payments."
    ),
    responses={**TOKEN_PAIR_RESPONSE, **error_responses(400, 422, 500)},
)
def register(payload: RegisterIn, request: Request, db: Session = Depends(get_db)):
    normalized_email = payload.email.lower()
    existing = db.execute(
        select(User).where(func.lower(User.email) == normalized_email)
    ).scalar_one_or_none()
    if existing and existing.is_placeholder:
        return _claim_placeholder(db, existing, payload, _client_ip(request))
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")

    username = _generate_unique_username(
        db,
        preferred_username=payload.username,
        fallback_seed=normalized_email.split("@")[0],
    )

    user = User(
        email=normalized_email,
        username=username,
        full_name=payload.full_name,
        phone=payload.phone,
        role="customer",
        hashed_password=hash_password(payload.password),
    )
    db.add(user)
    db.flush()

    token_pair, _ = _issue_token_pair(db, user=user, client_ip=_client_ip(request))
    db.commit()
    return token_pair


@router.post(
    "/login",
    response_model=TokenOut,
    summary="Login with JSON",
    description="Authenticate with email/username and password.",
    responses={**TOKEN_PAIR_RESPONSE, **error_responses(401, 403, 422, 429, 500)},
)
def login(payload: LoginIn, request: Request, db: Session = Depends(get_db)):
    key = _enforce_rate_limit(payload.identifier, _client_ip(request))
    try:
        user = _authenticate_user(db, payload.identifier, payload.password)
    except HTTPException as exc:
        if exc.status_code == 401:
            login_rate_limiter.register_failure(key)
        raise

    login_rate_limiter.register_success(key)
    token_pair, _ = _issue_token_pair(db, user=user, client_ip=_client_ip(request))
    db.commit()
    return token_pair


@router.post(
    "/token",
    response_model=TokenOut,
    summary="OAuth2 password token (Swagger Authorize)",
    description=(
        "Form-data login endpoint used by Swagger Authorize. "
        "Use your email or username in the `username` field."
    ),
    responses={**TOKEN_PAIR_RESPONSE, **error_responses(401, 403, 422, 429, 500)},
)
def login_for_swagger(
    request: Request,
    db: Session = Depends(get_db),
    form_data: OAuth2PasswordRequestForm = Depends(),
):
    key = _enforce_rate_limit(form_data.username, _client_ip(request))
    try:
        user = _authenticate_user(db, form_data.username, form_data.password)
    except HTTPException as exc:
        if exc.status_code == 401:
            login_rate_limiter.register_failure(key)
        raise

    login_rate_limiter.register_success(key)
    token_pair, _ = _issue_token_pair(db, user=user, client_ip=_client_ip(request))
    db.commit()
    return token_pair


@router.get(
    "/me",
    response_model=UserProfileOut,
    summary="Get current user profile",
    responses=error_responses(401, 403, 500),
)
def get_my_profile(user: User = Depends(get_current_user)):
    return _profile_out(user)


@router.patch(
    "/me",
    response_model=UserProfileOut,
    summary="Update current user profile",
    responses=error_responses(400, 401, 422, 500),
)
def update_my_profile(
    payload: UpdateProfileIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if payload.full_name is not None:
        user.full_name = payload.full_name

    if payload.username is not None:
        normalized_username = _slugify_username(payload.username)
        if _username_exists(db, normalized_username, exclude_user_id=user.id):
            raise HTTPException(status_code=400, detail="Username already taken")
        user.username = normalized_username

    if payload.phone is not None:
        user.phone = payload.phone.strip() or None

    db.commit()
    db.refresh(user)
    return _profile_out(user)


@router.post(
    "/refresh",
    response_model=TokenOut,
    summary="Refresh access token",
    description="Uses a valid refresh token to issue a fresh token pair.",
    responses={**TOKEN_PAIR_RESPONSE, **error_responses(401, 422, 500)},
)
def refresh_tokens(payload: RefreshIn, request: Request, db: Session = Depends(get_db)):
    try:
        refresh_meta = get_token_metadata(payload.refresh_token, expected_type="refresh")
    except TokenValidationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    now = datetime.now(timezone.utc)
    token_row = db.execute(
        select(RefreshToken).where(
            and_(
                RefreshToken.token_jti == refresh_meta.jti,
                RefreshToken.user_id == refresh_meta.subject,
            )
        )
    ).scalar_one_or_none()
    expires_at = _as_utc(token_row.expires_at) if token_row else None
    if not token_row or token_row.revoked_at is not None or not expires_at or expires_at <= now:
        raise HTTPException(status_code=401, detail="Refresh token is invalid or expired")

    user = db.get(User, refresh_meta.subject)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Refresh token is invalid or expired")

    token_row.revoked_at = now
    token_row.revoked_reason = "rotated"
    token_pair, new_jti = _issue_token_pair(db, user=user, client_ip=_client_ip(request))
    token_row.replaced_by_jti = new_jti
    db.commit()
    return token_pair


@router.post(
    "/logout",
    summary="Logout (revoke refresh token)",
    description="Revokes the provided refresh token.",
    responses=error_responses(422, 500),
)
def logout(payload: LogoutIn, db: Session = Depends(get_db)):
    try:
        refresh_meta = get_token_metadata(payload.refresh_token, expected_type="refresh")
    except TokenValidationError:
        return {"ok": True}

    db.execute(
        update(RefreshToken)
        .where(
            RefreshToken.token_jti == refresh_meta.jti,
            RefreshToken.revoked_at.is_(None),
        )
        .values(revoked_at=datetime.now(timezone.utc), revoked_reason="logout")
    )
    db.commit()
    return {"ok": True}


@router.post(
    "/change-password",
    summary="Change password",
    description="Changes password and revokes all active refresh tokens for the user.",
    responses=error_responses(400, 401, 422, 500),
)
def change_password(
    payload: ChangePasswordIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if not verify_password(payload.current_password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Current password is incorrect")
    if payload.current_password == payload.new_password:
        raise HTTPException(status_code=400, detail="New password must be different")

    user.hashed_password = hash_password(payload.new_password)
    _revoke_refresh_tokens(db, user.id, reason="password_change")
    db.commit()
    return {"ok": True}


@users_router.get(
    "",
    response_model=UserListOut,
    summary="List users",
    responses=error_responses(401, 403, 422, 500),
)
def list_users(
    role: str | None = Query(default=None),
    q: str | None = Query(default=None, max_length=100),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    stmt = select(User)
    count_stmt = select(func.count(User.id))
    if role:
        stmt = stmt.where(User.role == role.strip().lower())
        count_stmt = count_stmt.where(User.role == role.strip().lower())
    if q:
        pattern = f"%{q.strip().lower()}%"
        condition = or_(func.lower(User.email).like(pattern), func.lower(User.full_name).like(pattern))
        stmt = stmt.where(condition)
        count_stmt = count_stmt.where(condition)

    total = int(db.execute(count_stmt).scalar_one())
    rows = db.execute(stmt.order_by(User.created_at.desc()).offset(offset).limit(limit)).scalars().all()
    return UserListOut(items=[_profile_out(row) for row in rows], total=total)


@users_router.patch(
    "/{user_id}/role",
    response_model=UserProfileOut,
    summary="Change a user's role",
    description=(
        "Promotes a customer to agent or admin, or disables the account. "
        "A role change or deactivation revokes the user's refresh tokens."
    ),
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def update_user_role(
    user_id: str,
    payload: UserRoleUpdateIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    target = db.get(User, user_id)
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    if target.id == admin.id and payload.role != "admin":
        raise HTTPException(status_code=400, detail="Admins cannot demote themselves")

    previous_role = target.role
    was_active = bool(target.is_active)
    target.role = payload.role
    if payload.is_active is not None:
        target.is_active = payload.is_active
    if was_active and not target.is_active:
        _revoke_refresh_tokens(db, target.id, reason="deactivated")
    elif previous_role != target.role:
        _revoke_refresh_tokens(db, target.id, reason="role_change")
    log_audit_event(
        db,
        actor_user_id=admin.id,
        action="user.role.update",
        target_type="user",
        target_id=target.id,
        metadata_json={"from": previous_role, "to": payload.role, "is_active": target.is_active},
    )
    db.commit()
    db.refresh(target)
    return _profile_out(target)
