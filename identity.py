"""Bearer credential verification for socket handshakes and REST calls."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from constants import JWT_ALGORITHM, JWT_SECRET
from errors import AuthenticationError, InfrastructureError
from logging_config import get_logger
from schemas.messages import PublicUser, UserStatus
from store import ChatStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    user_id: str
    username: str
    active_status: str
    avatar: Optional[str] = None

    def public(self) -> PublicUser:
        return PublicUser(id=self.user_id, username=self.username, avatar=self.avatar)


def create_access_token(user_id: str, username: str, expires_in: int = 3600,
                        secret: str = JWT_SECRET, algorithm: str = JWT_ALGORITHM) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "id": user_id,
        "username": username,
        "iat": now,
        "exp": now + timedelta(seconds=expires_in),
    }
    return jwt.encode(payload, secret, algorithm=algorithm)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None


class TokenVerifier:
    def __init__(self, store: ChatStore, secret: str = JWT_SECRET, algorithm: str = JWT_ALGORITHM):
        self.store = store
        self.secret = secret
        self.algorithm = algorithm

    async def verify(self, token: Optional[str]) -> Identity:
        if not token:
            raise AuthenticationError("Authentication error: No token provided")

        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            logger.info("Rejected expired token")
            raise AuthenticationError("Authentication error: Token expired")
        except jwt.PyJWTError as e:
            logger.info(f"Rejected invalid token: {e}")
            raise AuthenticationError("Authentication error: Invalid token")

        user_id = claims.get("id")
        if not user_id:
            raise AuthenticationError("Authentication error: Invalid token")

        try:
            if await self.store.is_token_revoked(token):
                logger.info(f"Rejected revoked token for user {user_id}")
                raise AuthenticationError("Authentication error: Token has been revoked")
            user = await self.store.get_user(str(user_id))
        except InfrastructureError:
            raise AuthenticationError("Authentication error: Service unavailable")

        if user is None or user.status != UserStatus.ACTIVE:
            logger.info(f"Rejected token for missing or inactive user {user_id}")
            raise AuthenticationError("Authentication error: Invalid user")

        return Identity(
            user_id=user.id,
            username=user.username,
            active_status=user.status.value,
            avatar=user.avatar,
        )
