"""
Session / auth manager: who is texting, are they signed in, and the email
verification steps that sign them in.

Two independent guards apply to every email submission:
  * a per-flow wrong-attempt counter in the state context (3 strikes resets the
    flow to the account check), and
  * an abuse throttle of N attempts per hour tracked on the conversation row.

Successful calls return an AuthResult; every failure is an AuthError subclass.
Conversation mutations are made on the object passed in and persisted by the
caller together with the rest of the turn.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from conversation_state import (
    Conversation,
    ConversationState,
    EmailLookupContext,
    EmailVerifyContext,
    Seller,
)
from services.identity_store import IdentityStore
from utils.error_handling import (
    AuthError,
    EmailMismatchError,
    InvalidEmailError,
    RateLimitedError,
    TooManyAttemptsError,
)
from utils.helpers import is_valid_email, normalize_email, normalize_phone
from utils.logging_config import logger


@dataclass
class ResolvedSession:
    conversation: Conversation
    seller: Optional[Seller]
    created: bool = False


@dataclass
class AuthResult:
    seller: Seller
    account_created: bool = False
    # phone was already linked, no email needed
    via_phone: bool = False
    pending_intent: Optional[str] = None
    revoked_sessions: int = 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    def __init__(
        self,
        identity: IdentityStore,
        *,
        attempts_per_hour: int = 10,
        email_attempt_limit: int = 3,
        session_max_age_days: int = 30,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.identity = identity
        self.attempts_per_hour = attempts_per_hour
        self.email_attempt_limit = email_attempt_limit
        self.session_max_age = timedelta(days=session_max_age_days)
        self.clock = clock

    async def resolve(self, phone: str) -> ResolvedSession:
        """Load (or create) the conversation for ``phone`` plus the seller behind it, if any."""
        normalized = normalize_phone(phone) or phone
        created = False
        conversation = await self.identity.find_conversation(normalized)
        if conversation is None:
            conversation = await self.identity.create_conversation(normalized)
            created = True
            logger.info(f"🆕 New conversation {conversation.id}")

        seller: Optional[Seller] = None
        if conversation.seller_id:
            seller = await self.identity.get_seller(conversation.seller_id)
        if seller is None:
            seller = await self.identity.find_seller_by_phone(normalized)
        return ResolvedSession(conversation=conversation, seller=seller, created=created)

    def is_session_expired(self, conversation: Conversation) -> bool:
        if not conversation.is_authorized or not conversation.authorized_at:
            return True
        return self.clock() - conversation.authorized_at > self.session_max_age

    def _window_open(self, conversation: Conversation) -> bool:
        last = conversation.last_auth_attempt
        return last is not None and self.clock() - last <= timedelta(hours=1)

    def is_rate_limited(self, conversation: Conversation) -> bool:
        if not self._window_open(conversation):
            return False
        return conversation.auth_attempts >= self.attempts_per_hour

    def track_attempt(self, conversation: Conversation) -> int:
        """Count one verification attempt; the counter restarts once an hour has passed."""
        if self._window_open(conversation):
            conversation.auth_attempts += 1
        else:
            conversation.auth_attempts = 1
        conversation.last_auth_attempt = self.clock()
        return conversation.auth_attempts

    def begin_email_verification(self, conversation: Conversation, pending_intent: Optional[str] = None) -> None:
        """Ask a known seller to re-verify; the intent that was interrupted is kept for afterwards."""
        conversation.is_authorized = False
        conversation.transition(
            ConversationState.AWAITING_EMAIL,
            EmailVerifyContext(pending_intent=pending_intent, prompt_shown=True),
        )

    async def authorize(self, conversation: Conversation, seller: Seller) -> int:
        """Sign the conversation in and revoke every other phone session of this seller."""
        conversation.is_authorized = True
        conversation.seller_id = seller.id
        conversation.authorized_at = self.clock()
        conversation.auth_attempts = 0
        conversation.transition(ConversationState.AUTHORIZED)
        revoked = await self.identity.revoke_other_sessions(seller.id, conversation.id)
        if revoked:
            logger.info(f"🔒 Revoked {revoked} other session(s) for seller {seller.id}")
        logger.info(f"✅ Conversation {conversation.id} authorized as seller {seller.id}")
        return revoked

    def logout(self, conversation: Conversation) -> None:
        conversation.is_authorized = False
        conversation.authorized_at = None
        conversation.transition(ConversationState.NEW)

    def _check_throttle(self, conversation: Conversation) -> None:
        if self.is_rate_limited(conversation):
            logger.warning(f"⛔ Auth rate limit hit for conversation {conversation.id}")
            raise RateLimitedError("too many verification attempts this hour")

    def _wrong_attempt(self, conversation: Conversation, attempts: int) -> AuthError:
        """Record a wrong email and return the error to raise."""
        if attempts >= self.email_attempt_limit:
            conversation.transition(ConversationState.AWAITING_ACCOUNT_CHECK)
            return TooManyAttemptsError(f"{attempts} wrong emails")
        conversation.context.email_attempts = attempts  # type: ignore[attr-defined]
        return EmailMismatchError(attempts)

    async def _phone_fast_path(self, conversation: Conversation, phone: str) -> Optional[AuthResult]:
        seller = await self.identity.find_seller_by_phone(phone)
        if seller is None:
            return None
        revoked = await self.authorize(conversation, seller)
        return AuthResult(seller=seller, via_phone=True, revoked_sessions=revoked)

    async def submit_email_for_verification(
        self, conversation: Conversation, seller: Seller, email_text: str
    ) -> AuthResult:
        """A known seller proving who they are (expired, revoked or logged-out session)."""
        self._check_throttle(conversation)
        if not is_valid_email(email_text):
            raise InvalidEmailError("not an email address")
        self.track_attempt(conversation)

        context = conversation.context
        pending_intent = context.pending_intent if isinstance(context, EmailVerifyContext) else None
        if seller.matches_email(normalize_email(email_text)):
            await self.identity.link_phone_to_seller(seller.id, conversation.phone)
            revoked = await self.authorize(conversation, seller)
            return AuthResult(seller=seller, pending_intent=pending_intent, revoked_sessions=revoked)

        attempts = (context.email_attempts if isinstance(context, EmailVerifyContext) else 0) + 1
        raise self._wrong_attempt(conversation, attempts)

    async def submit_email_for_account_lookup(
        self, conversation: Conversation, phone: str, email_text: str
    ) -> AuthResult:
        """Returning seller on a new phone: find the account by email and link this phone."""
        self._check_throttle(conversation)
        fast = await self._phone_fast_path(conversation, phone)
        if fast:
            return fast
        if not is_valid_email(email_text):
            raise InvalidEmailError("not an email address")
        self.track_attempt(conversation)

        seller = await self.identity.find_seller_by_email(normalize_email(email_text))
        if seller:
            seller = await self.identity.link_phone_to_seller(seller.id, phone)
            revoked = await self.authorize(conversation, seller)
            return AuthResult(seller=seller, revoked_sessions=revoked)

        context = conversation.context
        attempts = (context.email_attempts if isinstance(context, EmailLookupContext) else 0) + 1
        raise self._wrong_attempt(conversation, attempts)

    async def submit_email_for_new_account(
        self, conversation: Conversation, phone: str, email_text: str
    ) -> AuthResult:
        """Enrol a new seller; an email that already has an account is linked instead."""
        self._check_throttle(conversation)
        fast = await self._phone_fast_path(conversation, phone)
        if fast:
            return fast
        if not is_valid_email(email_text):
            raise InvalidEmailError("not an email address")
        self.track_attempt(conversation)

        email = normalize_email(email_text)
        seller = await self.identity.find_seller_by_email(email)
        if seller:
            seller = await self.identity.link_phone_to_seller(seller.id, phone)
            revoked = await self.authorize(conversation, seller)
            return AuthResult(seller=seller, revoked_sessions=revoked)

        seller = await self.identity.create_seller(email, phone=phone)
        await self.authorize(conversation, seller)
        return AuthResult(seller=seller, account_created=True)
