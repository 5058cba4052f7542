"""
api/routes/v1/auth.py -- Account creation and login endpoints.

Routes:
  POST /api/v1/auth/setup     -- create the first admin (only while no users exist)
  POST /api/v1/auth/register  -- self-registration into an allowed role
  POST /api/v1/auth/login     -- password login; returns a bearer token

Security:
  [H2] POST /login is rate-limited per client address (LOGIN_RATE_LIMIT).
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M1] POST /setup re-checks has_users() and catches IntegrityError so two
       racing requests cannot both create an admin.
  [M5] Cache-Control: no-store on login responses.
  Unknown username and wrong password return the same "bad_credentials"
  error, so login does not reveal which usernames exist.
"""

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter, login_rate_limit
from api.models import LoginRequest, LoginResponse, RegisterRequest, RegisterResponse, SetupRequest
from auth.evaluator import is_allowed
from auth.models import User, UserPrincipal
from auth.permissions import ADMIN_ROLE, Permission
from auth.store import AuthStore
from auth.tokens import authenticate_user, create_access_token, generate_public_id, hash_password
from core.config import get_settings

logger = logging.getLogger("permgate.api")

# Auth policy:
# - POST /api/v1/auth/setup:     public, only while the users table is empty
# - POST /api/v1/auth/register:  public when SELF_REGISTRATION_ENABLED
# - POST /api/v1/auth/login:     public, rate-limited; role must grant post_login
router = APIRouter()


def _conflict() -> HTTPException:
    # Never say whether the username or the email collided.
    return HTTPException(
        status_code=409,
        detail={"code": "conflict", "message": "Username or email already exists."},
    )


@router.post("/auth/setup", response_model=RegisterResponse, status_code=201)
def setup(request: Request, body: SetupRequest) -> RegisterResponse:
    """Create the first admin account. Returns 409 once any user exists [M1]."""
    store: AuthStore = request.app.state.auth_store

    if store.has_users():
        raise HTTPException(
            status_code=409,
            detail={"code": "setup_complete", "message": "Setup already complete. Please log in."},
        )
    admin_role = store.get_role_by_name(ADMIN_ROLE)
    if admin_role is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "Admin role is missing."},
        )

    public_id = generate_public_id("user")
    try:
        store.create_user(
            User(
                username=body.username,
                email=body.email,
                role_id=admin_role.id,
                public_id=public_id,
                hashed_password=hash_password(body.password),
            )
        )
    except IntegrityError as exc:
        raise _conflict() from exc

    logger.info("Setup created admin '%s'", body.username)
    return RegisterResponse(message="Admin account created.", public_id=public_id)


@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> RegisterResponse:
    """Create an account in the default role, or in another self-service role."""
    settings = get_settings()
    store: AuthStore = request.app.state.auth_store

    if not settings.self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )

    role_name = body.role or settings.default_role
    role = store.get_role_by_name(role_name) if role_name in settings.registration_roles else None
    if role is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_role", "message": "Invalid role."},
        )

    public_id = generate_public_id("user")
    try:
        store.create_user(
            User(
                username=body.username,
                email=body.email,
                role_id=role.id,
                public_id=public_id,
                hashed_password=hash_password(body.password),
            )
        )
    except IntegrityError as exc:
        raise _conflict() from exc

    logger.info("Registered user '%s' (role=%s)", body.username, role.name)
    return RegisterResponse(message="User registered successfully.", public_id=public_id)


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(login_rate_limit)  # [H2] below @router so the registered endpoint is the limited wrapper
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; return a bearer token.

    The token carries the user's public_id and token_version snapshot; any
    later password or role change bumps the stored version and revokes it.
    """
    store: AuthStore = request.app.state.auth_store
    user = authenticate_user(store, body.username, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid username or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    principal = UserPrincipal(
        user_id=user.id,
        public_id=user.public_id,
        username=user.username,
        role_id=user.role_id,
        token_version=user.token_version,
    )
    if not is_allowed(store, principal, [Permission.POST_LOGIN.value]):
        logger.warning("Login denied by role for '%s'", user.username)
        resp = JSONResponse(
            status_code=403,
            content={"error": {"code": "login_denied", "message": "Login permission denied."}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    role = store.get_role(user.role_id)
    settings = get_settings()
    token = create_access_token(user.public_id, user.username, user.role_id, user.token_version)
    logger.info("Login: user='%s' role='%s'", user.username, role.name if role else "?")
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=settings.token_expire_seconds,
            username=user.username,
            role=role.name if role else "",
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp
