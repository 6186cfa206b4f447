from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.config import settings
from stockflow.core.deps import get_db
from stockflow.core.permissions import role_permissions
from stockflow.core.rate_limit import LoginRateLimiter
from stockflow.core.security import create_access_token, verify_password
from stockflow.core.security_current import get_current_user
from stockflow.models.user import User
from stockflow.schemas.auth import ActorOut, LoginIn, TokenOut
from stockflow.services.audit_service import log_audit_event

router = APIRouter(prefix="/auth", tags=["auth"])
TOKEN_RESPONSE = {
    200: {
        "description": "Bearer access token",
        "content": {
            "application/json": {
                "example": {
                    "access_token": "access-token",
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


def _client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for", "").strip()
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _enforce_rate_limit(username: str, client_ip: str) -> str:
    key = LoginRateLimiter.key_for(username, client_ip)
    retry_after = login_rate_limiter.retry_after(key)
    if retry_after > 0:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many failed attempts. Try again later.",
            headers={"Retry-After": str(retry_after)},
        )
    return key


def _authenticate_user(db: Session, username: str, password: str) -> User:
    user = db.execute(
        select(User).where(func.lower(User.username) == username.strip().lower())
    ).scalar_one_or_none()

    if not user or not verify_password(password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="User is inactive")
    return user


def _login(db: Session, request: Request, username: str, password: str) -> TokenOut:
    key = _enforce_rate_limit(username, _client_ip(request))
    try:
        user = _authenticate_user(db, username, password)
    except HTTPException as exc:
        if exc.status_code == 401:
            login_rate_limiter.register_failure(key)
        raise

    login_rate_limiter.register_success(key)
    log_audit_event(
        db,
        actor_user_id=user.id,
        action="auth.login",
        target_type="user",
        target_id=user.id,
        metadata_json={"client_ip": _client_ip(request)},
    )
    db.commit()
    return TokenOut(access_token=create_access_token(user.id))


@router.post(
    "/login",
    response_model=TokenOut,
    summary="Login with JSON",
    description="Authenticate with username and password.",
    responses={**TOKEN_RESPONSE, **error_responses(401, 422, 429, 500)},
)
def login(payload: LoginIn, request: Request, db: Session = Depends(get_db)):
    return _login(db, request, payload.username, payload.password)


@router.post(
    "/token",
    response_model=TokenOut,
    summary="OAuth2 password token (Swagger Authorize)",
    description="Form-data login endpoint used by Swagger Authorize.",
    responses={**TOKEN_RESPONSE, **error_responses(401, 422, 429, 500)},
)
def login_for_swagger(
    request: Request,
    db: Session = Depends(get_db),
    form_data: OAuth2PasswordRequestForm = Depends(),
):
    return _login(db, request, form_data.username, form_data.password)


@router.get(
    "/me",
    response_model=ActorOut,
    summary="Get the current actor",
    responses=error_responses(401, 500),
)
def me(user: User = Depends(get_current_user)):
    return ActorOut(
        id=user.id,
        username=user.username,
        full_name=user.full_name,
        role=user.role,
        permissions=sorted(role_permissions(user.role)),
        created_at=user.created_at,
    )
