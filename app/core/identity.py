"""
IdentityGate: turns a bearer credential into a Principal.

The gate is the only place a Principal is constructed. Everything downstream
receives the resolved value and never trusts ids supplied by the caller.
"""

from dataclasses import dataclass
from typing import Optional

import httpx
from clerk_backend_api import Clerk
from clerk_backend_api.security.types import AuthenticateRequestOptions
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from app.core.config import settings
from app.core.logger import get_logger
from app.database.transactions import run_transaction
from app.enums import Plan, Role
from app.exceptions.errors import SessionExpired, Unauthenticated
from app.models.user import User

logger = get_logger("identity_gate")


@dataclass(frozen=True)
class Principal:
    id: str
    role: Role
    plan: Plan

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_coach(self) -> bool:
        return self.role == Role.COACH


def principal_from_user(user: User) -> Principal:
    return Principal(id=user.id, role=Role(user.type), plan=Plan(user.plan))


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthenticated()
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise Unauthenticated()
    return token


class ClerkTokenVerifier:
    """Verifies Clerk session JWTs and returns the Clerk user id (`sub`)."""

    def __init__(self, secret_key: Optional[str] = None):
        self.secret_key = secret_key or settings.CLERK_SECRET_KEY
        self._clerk_sdk = None

    @property
    def clerk_sdk(self) -> Clerk:
        if self._clerk_sdk is None:
            self._clerk_sdk = Clerk(bearer_auth=self.secret_key)
        return self._clerk_sdk

    def verify(self, token: str) -> str:
        httpx_request = httpx.Request(
            method="GET",
            url="https://yamifit.local/",
            headers={"Authorization": f"Bearer {token}"},
        )
        request_state = self.clerk_sdk.authenticate_request(httpx_request, AuthenticateRequestOptions())

        if not request_state.is_signed_in:
            # reason is a TokenVerificationErrorReason or AuthErrorReason member
            if getattr(request_state.reason, "name", None) == "TOKEN_EXPIRED":
                raise SessionExpired()
            logger.warning(f"Invalid Clerk token: {request_state.reason}")
            raise Unauthenticated("Invalid authentication token")

        subject = request_state.payload.get("sub") if request_state.payload else None
        if not subject:
            raise Unauthenticated("Invalid token payload")
        return subject

    def lookup_email(self, subject: str) -> Optional[str]:
        clerk_user = self.clerk_sdk.users.get(user_id=subject)
        if clerk_user and clerk_user.email_addresses:
            return clerk_user.email_addresses[0].email_address
        return None


class IdentityGate:
    """Resolves the authenticated Principal for a request or websocket."""

    def __init__(self, verifier, session_factory):
        self.verifier = verifier
        self.session_factory = session_factory

    async def principal_from_header(self, authorization: Optional[str]) -> Principal:
        return await self.principal_from_token(bearer_token(authorization))

    async def principal_from_token(self, token: str) -> Principal:
        try:
            subject = await run_in_threadpool(self.verifier.verify, token)
        except (Unauthenticated, SessionExpired):
            raise
        except Exception as e:
            logger.error(f"Authentication error: {e}")
            raise Unauthenticated("Authentication failed") from e

        async with self.session_factory() as db:
            return await run_transaction(
                db,
                lambda session: self._load_principal(session, subject),
                operation="resolve principal",
                retry_on_conflict=True,
            )

    async def _load_principal(self, db: AsyncSession, subject: str) -> Principal:
        result = await db.execute(select(User).where(User.clerk_id == subject))
        user = result.scalar_one_or_none()

        if not user:
            email = await run_in_threadpool(self.verifier.lookup_email, subject)
            if email:
                existing = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
                if existing:
                    # Re-signup after the old Clerk account was deleted
                    existing.clerk_id = subject
                    existing.is_active = True
                    existing.is_deleted = False
                    user = existing
                    logger.info(f"Relinked user {user.id} to new Clerk id")
            if not user:
                user = User(clerk_id=subject, email=email, type=Role.USER.value, plan=Plan.BASIC.value)
                db.add(user)
                logger.info(f"Created user for Clerk id {subject}")
            await db.flush()

        if not user.is_active or user.is_deleted:
            raise Unauthenticated("Account is disabled")

        return principal_from_user(user)
