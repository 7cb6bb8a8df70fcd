from datetime import timedelta
from enum import Enum
from typing import Awaitable, Callable, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from zenscribe.core.config import settings
from zenscribe.core.exceptions import TransientAuthError
from zenscribe.crud.crud_user import user_crud
from zenscribe.models.models import User
from zenscribe.services.email_service import EmailService, email_service
from zenscribe.services.token_service import MAGIC_LINK, TokenService, token_service

SignIn = Callable[[], Awaitable[Optional[User]]]
MagicLinkSender = Callable[[], Awaitable[bool]]


class AuthState(str, Enum):
    """States of one sign-in attempt"""
    INIT = "init"
    RETRYING = "retrying"
    AUTHENTICATED = "authenticated"
    DEGRADED = "degraded"
    FAILED = "failed"


class AuthRetryPolicy(BaseModel):
    """How often and how patiently transient sign-in failures are retried"""
    max_attempts: int = 3
    backoff_seconds: float = 1.0
    max_backoff_seconds: float = 4.0

    @classmethod
    def from_settings(cls) -> "AuthRetryPolicy":
        return cls(
            max_attempts=settings.AUTH_MAX_ATTEMPTS,
            backoff_seconds=settings.AUTH_RETRY_BACKOFF,
            max_backoff_seconds=settings.AUTH_RETRY_MAX_BACKOFF,
        )


class AuthOutcome(BaseModel):
    """Final state of a sign-in attempt"""
    state: AuthState
    user: Optional[User] = None
    attempts: int = 0
    magic_link_sent: bool = False
    error: Optional[str] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)


class AuthenticationAttempt:
    """
    One sign-in with retry and magic-link fallback

    INIT -> RETRYING(n) -> AUTHENTICATED | DEGRADED | FAILED

    Only TransientAuthError is retried. Invalid credentials fail at once.
    When retries run out and a magic-link sender is available, the link is
    sent and the attempt ends DEGRADED.
    """

    def __init__(
        self,
        sign_in: SignIn,
        send_magic_link: Optional[MagicLinkSender] = None,
        policy: Optional[AuthRetryPolicy] = None,
    ):
        self._sign_in = sign_in
        self._send_magic_link = send_magic_link
        self.policy = policy or AuthRetryPolicy()
        self.state = AuthState.INIT
        self.attempts = 0
        self.retries = 0

    async def run(self) -> AuthOutcome:
        """
        Run the attempt to completion

        Returns:
            Final outcome

        Raises:
            RuntimeError: If the attempt was already run
        """
        if self.state != AuthState.INIT:
            raise RuntimeError(f"Authentication attempt already {self.state.value}")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=wait_exponential(multiplier=self.policy.backoff_seconds, max=self.policy.max_backoff_seconds),
            retry=retry_if_exception_type(TransientAuthError),
            before_sleep=self._on_retry,
            reraise=True,
        )
        user = None
        try:
            async for attempt in retrying:
                with attempt:
                    self.attempts += 1
                    user = await self._sign_in()
        except TransientAuthError as e:
            logger.error(f"Sign-in failed after {self.attempts} attempts: {e.detail}")
            return await self._degrade()

        if user is None:
            self.state = AuthState.FAILED
            return AuthOutcome(state=self.state, attempts=self.attempts, error="invalid_credentials")

        self.state = AuthState.AUTHENTICATED
        return AuthOutcome(state=self.state, user=user, attempts=self.attempts)

    def _on_retry(self, retry_state: RetryCallState) -> None:
        self.state = AuthState.RETRYING
        self.retries = retry_state.attempt_number
        logger.warning(f"Transient sign-in failure, retry {self.retries} of {self.policy.max_attempts - 1}")

    async def _degrade(self) -> AuthOutcome:
        if self._send_magic_link is not None and await self._send_magic_link():
            self.state = AuthState.DEGRADED
            return AuthOutcome(state=self.state, attempts=self.attempts, magic_link_sent=True, error="unavailable")

        self.state = AuthState.FAILED
        return AuthOutcome(state=self.state, attempts=self.attempts, error="unavailable")


class AuthService:
    """Password sign-in wrapped with retry and the magic-link fallback"""

    def __init__(
        self,
        policy: Optional[AuthRetryPolicy] = None,
        mailer: Optional[EmailService] = None,
        tokens: Optional[TokenService] = None,
        magic_link_fallback: Optional[bool] = None,
    ):
        self.policy = policy or AuthRetryPolicy.from_settings()
        self.mailer = mailer or email_service
        self.tokens = tokens or token_service
        self.magic_link_fallback = (
            settings.AUTH_MAGIC_LINK_FALLBACK if magic_link_fallback is None else magic_link_fallback
        )

    async def sign_in(self, db: AsyncSession, email: str, password: str) -> AuthOutcome:
        """
        Authenticate with email and password

        Args:
            db: Database session
            email: User email
            password: Plain text password

        Returns:
            Outcome of the attempt
        """
        async def attempt_sign_in() -> Optional[User]:
            return await user_crud.authenticate(db, email=email, password=password)

        async def send_link() -> bool:
            return await self.send_magic_link(email)

        attempt = AuthenticationAttempt(
            attempt_sign_in,
            send_magic_link=send_link if self.magic_link_fallback else None,
            policy=self.policy,
        )
        outcome = await attempt.run()
        logger.info(f"Sign-in for {email} ended {outcome.state.value} after {outcome.attempts} attempts")
        return outcome

    async def send_magic_link(self, email: str) -> bool:
        """Email a one-time login link; the token carries the email, not the user id"""
        token = self.tokens.create_token(
            email.lower(), MAGIC_LINK, timedelta(minutes=settings.MAGIC_LINK_EXPIRE_MINUTES)
        )
        return await self.mailer.send_magic_link(email, token)

    async def redeem_magic_link(self, db: AsyncSession, token: str) -> Optional[User]:
        """
        Active user named by a magic-link token

        Raises:
            ValueError: If the token is invalid or expired
        """
        payload = self.tokens.decode_token(token, expected_type=MAGIC_LINK)
        user = await user_crud.get_by_email(db, email=payload.sub)
        if user is None or not user.is_active:
            return None
        return user


auth_service = AuthService()
