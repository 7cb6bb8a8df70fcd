from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Union
from uuid import UUID

from jose import JWTError, jwt
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from zenscribe.core.config import settings
from zenscribe.crud.crud_user import user_crud
from zenscribe.models.models import User
from zenscribe.schemas.token import TokenPayload

ACCESS = "access"
REFRESH = "refresh"
MAGIC_LINK = "magic_link"
PASSWORD_RESET = "password_reset"


class TokenService:
    """Service for handling JWT tokens"""

    def create_token(
            self,
            subject: Union[str, UUID],
            token_type: str,
            expires_delta: timedelta,
            additional_claims: Optional[Dict] = None
    ) -> str:
        """
        Create a signed JWT

        Args:
            subject: Subject identifier (user ID)
            token_type: access, refresh, magic_link or password_reset
            expires_delta: Lifetime of the token
            additional_claims: Optional additional claims to include

        Returns:
            JWT token string
        """
        expire = datetime.now(timezone.utc) + expires_delta
        to_encode = {"exp": expire, "sub": str(subject), "type": token_type}

        # Add additional claims if provided
        if additional_claims:
            to_encode.update(additional_claims)

        return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    def create_access_token(
            self,
            subject: Union[str, UUID],
            expires_delta: Optional[timedelta] = None,
            additional_claims: Optional[Dict] = None
    ) -> str:
        """Create JWT access token"""
        return self.create_token(
            subject,
            ACCESS,
            expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            additional_claims,
        )

    def create_refresh_token(
            self,
            subject: Union[str, UUID],
            additional_claims: Optional[Dict] = None
    ) -> str:
        """Create JWT refresh token"""
        return self.create_token(
            subject, REFRESH, timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS), additional_claims
        )

    def create_token_pair(self, user: User) -> Dict[str, str]:
        """Access and refresh tokens for a signed-in user"""
        claims = {"email": user.email, "role": user.role.value}
        return {
            "access_token": self.create_access_token(user.id, additional_claims=claims),
            "refresh_token": self.create_refresh_token(user.id, additional_claims=claims),
            "token_type": "bearer",
        }

    def decode_token(self, token: str, expected_type: Optional[str] = None) -> TokenPayload:
        """
        Decode JWT token

        Args:
            token: JWT token string
            expected_type: Reject tokens of any other type

        Returns:
            Token payload

        Raises:
            ValueError: If token is invalid
        """
        try:
            payload = jwt.decode(
                token,
                settings.JWT_SECRET,
                algorithms=[settings.JWT_ALGORITHM]
            )
        except JWTError as e:
            logger.warning(f"Error decoding token: {e}")
            raise ValueError("Could not validate credentials")

        token_data = TokenPayload(**payload)
        if expected_type and token_data.type != expected_type:
            raise ValueError("Invalid token type")
        if not token_data.sub:
            raise ValueError("Invalid authentication credentials")
        return token_data

    async def get_current_user(self, token: str, db: AsyncSession) -> User:
        """
        Get current user from JWT access token

        Args:
            token: JWT token string
            db: Database session

        Returns:
            User object

        Raises:
            ValueError: If token is invalid or user not found
        """
        payload = self.decode_token(token, expected_type=ACCESS)
        user = await user_crud.get(db, id=UUID(payload.sub))
        if not user:
            raise ValueError("User not found")
        return user


token_service = TokenService()
