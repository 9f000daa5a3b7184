"""
Sign-in states: new, awaiting_account_check, awaiting_existing_email,
awaiting_new_email and awaiting_email.
"""
from __future__ import annotations

from conversation_state import ConversationState, EmailVerifyContext
from flows import sell
from flows.common import Turn, register_confusion, reset_confusion
from messages import msg
from utils.error_handling import (
    EmailMismatchError,
    InvalidEmailError,
    RateLimitedError,
    TooManyAttemptsError,
)
from utils.helpers import detect_sell_intent, is_affirmative, is_negative
from utils.logging_config import logger


async def handle_new(turn: Turn) -> str:
    conversation = turn.conversation
    sessions = turn.engine.sessions
    intent = "sell" if detect_sell_intent(turn.text) is not None else None

    # signed in on this phone before (logged out, revoked or expired): re-verify
    if conversation.seller_id and turn.seller:
        sessions.begin_email_verification(conversation, pending_intent=intent)
        turn.effect("verification_started", pending_intent=intent)
        return msg("ASK_EMAIL_VERIFY")

    # phone already linked to a seller: skip lookup/enrolment
    if turn.seller:
        revoked = await sessions.authorize(conversation, turn.seller)
        turn.effect("authorized", seller_id=turn.seller.id, via_phone=True, revoked=revoked)
        if intent is not None:
            return await sell.start_selling(turn, detect_sell_intent(turn.text) or "")
        return msg("WELCOME_KNOWN_SELLER")

    conversation.transition(ConversationState.AWAITING_ACCOUNT_CHECK)
    return msg("WELCOME_NEW_USER")


async def handle_account_check(turn: Turn) -> str:
    conversation = turn.conversation
    if is_affirmative(turn.text) or turn.lowered == "1":
        conversation.transition(ConversationState.AWAITING_EXISTING_EMAIL)
        return msg("ASK_EXISTING_EMAIL")
    if is_negative(turn.text) or turn.lowered in ("2", "new"):
        conversation.transition(ConversationState.AWAITING_NEW_EMAIL)
        return msg("ASK_NEW_EMAIL")
    return register_confusion(turn, msg("ACCOUNT_CHECK_INVALID"), msg("ACCOUNT_CHECK_FALLBACK"))


async def handle_existing_email(turn: Turn) -> str:
    conversation = turn.conversation
    if turn.lowered in ("new", "create"):
        conversation.transition(ConversationState.AWAITING_NEW_EMAIL)
        return msg("ASK_NEW_EMAIL")

    try:
        result = await turn.engine.sessions.submit_email_for_account_lookup(conversation, turn.phone, turn.text)
    except RateLimitedError:
        return msg("RATE_LIMITED")
    except InvalidEmailError:
        return register_confusion(turn, msg("INVALID_EMAIL"), msg("EMAIL_FALLBACK"))
    except TooManyAttemptsError:
        logger.info(f"🔁 Account lookup reset after too many attempts: {conversation.id}")
        return msg("EMAIL_NOT_FOUND_MAX")
    except EmailMismatchError as e:
        reset_confusion(turn)
        return msg("EMAIL_NOT_FOUND", e.attempt)

    turn.seller = result.seller
    turn.effect("authorized", seller_id=result.seller.id, via_phone=result.via_phone, revoked=result.revoked_sessions)
    return msg("EMAIL_FOUND_LINKED", result.seller.name)


async def handle_new_email(turn: Turn) -> str:
    conversation = turn.conversation
    try:
        result = await turn.engine.sessions.submit_email_for_new_account(conversation, turn.phone, turn.text)
    except RateLimitedError:
        return msg("RATE_LIMITED")
    except InvalidEmailError:
        return register_confusion(turn, msg("INVALID_EMAIL"), msg("INVALID_EMAIL"))

    turn.seller = result.seller
    if result.account_created:
        turn.effect("account_created", seller_id=result.seller.id)
        return msg("ACCOUNT_CREATED")
    turn.effect("authorized", seller_id=result.seller.id, via_phone=result.via_phone, revoked=result.revoked_sessions)
    return msg("EMAIL_EXISTS_LINKED", result.seller.name)


async def handle_awaiting_email(turn: Turn) -> str:
    conversation = turn.conversation
    seller = turn.seller
    if seller is None:
        # nothing to verify against any more
        conversation.transition(ConversationState.NEW)
        return await handle_new(turn)

    context = conversation.context
    if isinstance(context, EmailVerifyContext) and not context.prompt_shown:
        context.prompt_shown = True
        return msg("ASK_EMAIL_VERIFY")

    try:
        result = await turn.engine.sessions.submit_email_for_verification(conversation, seller, turn.text)
    except RateLimitedError:
        return msg("RATE_LIMITED")
    except InvalidEmailError:
        return register_confusion(turn, msg("INVALID_EMAIL"), msg("INVALID_EMAIL"))
    except TooManyAttemptsError:
        return msg("EMAIL_TOO_MANY_ATTEMPTS")
    except EmailMismatchError as e:
        reset_confusion(turn)
        return msg("EMAIL_NO_MATCH", e.attempt)

    turn.effect("authorized", seller_id=seller.id, via_phone=False, revoked=result.revoked_sessions)
    if result.pending_intent == "sell":
        return "You're in! ✅\n\n" + await sell.start_selling(turn, "")
    return msg("VERIFIED")
