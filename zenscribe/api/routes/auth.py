from datetime import timedelta
from typing import Any, Dict
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from zenscribe.api.deps import get_current_active_user
from zenscribe.core.exceptions import CredentialsException, TransientAuthError
from zenscribe.crud.crud_user import user_crud
from zenscribe.db.session import get_db
from zenscribe.models.models import User
from zenscribe.schemas.token import LoginDegraded, MagicLinkRequest, MagicLinkVerify, RefreshToken, Token
from zenscribe.schemas.user import PasswordReset, PasswordResetConfirm, UserCreate, UserOut
from zenscribe.services.auth_service import AuthState, auth_service
from zenscribe.services.email_service import email_service
from zenscribe.services.token_service import PASSWORD_RESET, REFRESH, token_service

router = APIRouter()

RESET_MESSAGE = "If your email is registered, you will receive a password reset link"
MAGIC_LINK_MESSAGE = "If your email is registered, you will receive a login link"


@router.post(
    "/login",
    response_model=Token,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": LoginDegraded}},
)
async def login(
        db: AsyncSession = Depends(get_db),
        form_data: OAuth2PasswordRequestForm = Depends(),
) -> Any:
    """
    OAuth2 compatible token login, get an access token for future requests.

    Transient credential store failures are retried; when they persist a
    login link is emailed and 503 is returned.
    """
    outcome = await auth_service.sign_in(db, email=form_data.username, password=form_data.password)

    if outcome.state == AuthState.DEGRADED:
        body = LoginDegraded(
            detail="Sign-in is temporarily unavailable, a login link was sent to your email",
            magic_link_sent=True,
            attempts=outcome.attempts,
        )
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body.model_dump())
    if outcome.state == AuthState.FAILED:
        if outcome.error == "invalid_credentials":
            raise CredentialsException("Incorrect email or password")
        raise TransientAuthError("Sign-in is temporarily unavailable, please retry")

    user = outcome.user
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Inactive user")
    return token_service.create_token_pair(user)


@router.post("/refresh", response_model=Token)
async def refresh_token(
        refresh_data: RefreshToken,
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Refresh access token using a refresh token
    """
    try:
        payload = token_service.decode_token(refresh_data.refresh_token, expected_type=REFRESH)
        user = await user_crud.get(db, id=UUID(payload.sub))
    except ValueError as e:
        raise CredentialsException(f"Invalid refresh token: {e}")

    if not user or not user.is_active:
        raise CredentialsException("User not found or inactive")

    tokens = token_service.create_token_pair(user)
    tokens["refresh_token"] = refresh_data.refresh_token
    return tokens


@router.post("/magic-link", status_code=status.HTTP_202_ACCEPTED, response_model=Dict[str, str])
async def request_magic_link(
        link_request: MagicLinkRequest,
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Email a one-time login link
    """
    user = await user_crud.get_by_email(db, email=link_request.email)
    if user and user.is_active:
        await auth_service.send_magic_link(user.email)
    return {"message": MAGIC_LINK_MESSAGE}


@router.post("/magic-link/verify", response_model=Token)
async def verify_magic_link(
        link: MagicLinkVerify,
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Exchange a login link token for access and refresh tokens
    """
    try:
        user = await auth_service.redeem_magic_link(db, link.token)
    except ValueError:
        raise CredentialsException("Invalid or expired login link")
    if user is None:
        raise CredentialsException("Invalid or expired login link")
    return token_service.create_token_pair(user)


@router.get("/me", response_model=UserOut)
async def read_users_me(
        current_user: User = Depends(get_current_active_user),
) -> Any:
    """
    Get current user
    """
    return current_user


@router.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def register(
        user_in: UserCreate,
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Register a new clinician on the free plan
    """
    # Check if user with this email already exists
    user = await user_crud.get_by_email(db, email=user_in.email)
    if user:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered",
        )

    return await user_crud.create(db, obj_in=user_in)


@router.post("/password-reset", response_model=Dict[str, str])
async def request_password_reset(
        reset_request: PasswordReset,
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Request password reset
    """
    user = await user_crud.get_by_email(db, email=reset_request.email)
    if not user:
        # Don't reveal that the user doesn't exist
        return {"message": RESET_MESSAGE}

    token = token_service.create_token(user.id, PASSWORD_RESET, timedelta(hours=24))
    await email_service.send_password_reset(user.email, token)

    return {"message": RESET_MESSAGE}


@router.post("/password-reset/confirm", response_model=Dict[str, str])
async def confirm_password_reset(
        reset_confirm: PasswordResetConfirm,
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Confirm password reset
    """
    try:
        payload = token_service.decode_token(reset_confirm.token, expected_type=PASSWORD_RESET)
        user = await user_crud.get(db, id=UUID(payload.sub))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired token",
        )

    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )

    await user_crud.update(db, db_obj=user, obj_in={"password": reset_confirm.password})
    await db.commit()

    return {"message": "Password updated successfully"}
