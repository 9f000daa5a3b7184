"""
Sell states: sell_started, sell_draft_choice, sell_collecting, sell_details,
sell_photos, sell_confirming and sell_editing.

Every handler returns the reply text and leaves the conversation in the state
the next message should be handled in. Draft writes go through the repository
immediately; the conversation row is written back by the caller.
"""
from __future__ import annotations

import re
from typing import List, Optional, Tuple

from conversation_state import ConversationState, DraftChoiceContext, MenuContext, SellContext, Seller
from draft_state import REQUIRED_FIELDS, Draft, FieldUpdate, changed_fields
from flows.common import Turn, register_confusion, reset_confusion
from messages import msg
from services.photo_intake import IntakeResult
from tools.clean_price import parse_bare_price
from utils.error_handling import DraftIncompleteError, FieldValidationError, FlowStateError, SubmissionError
from utils.helpers import is_skip, is_status_question
from utils.logging_config import logger

CONTINUE_WORDS = {"1", "continue", "yes", "y", "resume"}
FRESH_WORDS = {"2", "fresh", "new", "start", "start fresh"}
SUBMIT_WORDS = {"1", "yes", "y", "submit", "confirm"}
EDIT_WORDS = {"2", "edit"}
CANCEL_WORDS = {"3", "cancel", "no", "n"}


def _sell_context(turn: Turn) -> SellContext:
    ctx = turn.conversation.context
    if not isinstance(ctx, SellContext):
        raise FlowStateError(f"{turn.conversation.state.value} has a {type(ctx).__name__} context")
    return ctx


def _seller(turn: Turn) -> Seller:
    if turn.seller is None:
        raise FlowStateError(f"conversation {turn.conversation.id} reached selling without a seller")
    return turn.seller


def _move(turn: Turn, state: ConversationState, draft_id: str, asked_details: bool = False) -> None:
    turn.conversation.transition(state, SellContext(draft_id=draft_id, asked_details=asked_details))


async def _create_draft(turn: Turn) -> Draft:
    draft = await turn.engine.drafts.create(_seller(turn).id, turn.conversation.id)
    turn.effect("draft_created", draft_id=draft.id)
    logger.info(f"📝 New draft {draft.id} for conversation {turn.conversation.id}")
    return draft


def _draft_missing(turn: Turn) -> str:
    """The draft vanished (cancelled elsewhere); never resurrect it from a stale turn."""
    turn.conversation.transition(ConversationState.AUTHORIZED)
    turn.effect("draft_missing")
    return msg("SELL_DRAFT_MISSING")


async def _load_draft(turn: Turn) -> Optional[Draft]:
    draft_id = getattr(turn.conversation.context, "draft_id", "")
    if not draft_id:
        return None
    draft = await turn.engine.drafts.get(draft_id)
    return draft if draft and draft.is_open else None


def _advance(turn: Turn, draft: Draft, asked_details: bool) -> str:
    """
    All required fields known: photos, details or confirmation.

    Short on photos, the details question rides along with the photo request;
    it only gets its own turn when the photos were already in.
    """
    wants_details = not draft.fields.details and not asked_details
    if draft.photos_needed():
        _move(turn, ConversationState.SELL_PHOTOS, draft.id, asked_details=True)
        reply = msg("SELL_READY_FOR_PHOTOS", draft)
        return _join(reply, msg("SELL_DETAILS_HINT")) if wants_details else reply
    if wants_details:
        _move(turn, ConversationState.SELL_DETAILS, draft.id, asked_details=True)
        return _join(msg("SELL_EXTRACTED", draft, []), msg("SELL_ASK_DETAILS"))
    _move(turn, ConversationState.SELL_CONFIRMING, draft.id, asked_details=True)
    return msg("SELL_SUMMARY", draft)


def _resume(turn: Turn, draft: Draft) -> str:
    missing = draft.missing_fields()
    if missing:
        _move(turn, ConversationState.SELL_COLLECTING, draft.id)
        return msg("SELL_RESUME", draft, missing)
    if draft.photos_needed():
        _move(turn, ConversationState.SELL_PHOTOS, draft.id, asked_details=True)
        return msg("SELL_RESUME", draft, missing)
    _move(turn, ConversationState.SELL_CONFIRMING, draft.id, asked_details=True)
    return msg("SELL_SUMMARY", draft)


async def _extract_update(turn: Turn, draft: Draft, allow_bare_price: bool) -> Tuple[FieldUpdate, Optional[FieldValidationError]]:
    """Run the extractor on the turn's text; invalid values come back as a FieldValidationError."""
    if not turn.text.strip():
        return FieldUpdate(), None
    engine = turn.engine
    try:
        raw = await engine.extractor.extract(turn.text, draft.fields.known(), engine.extractor_config)
    except Exception as e:
        # an extractor outage means nothing was extracted; the conversation carries on
        logger.warning(f"⚠️ Extraction failed for draft {draft.id}, treating as empty: {e}")
        raw = {}
    update, invalid = FieldUpdate.from_extraction(raw)

    missing = draft.missing_fields()
    if update.is_empty() and allow_bare_price and missing and missing[0] == "asking_price":
        price = parse_bare_price(turn.text)
        if price is not None:
            update = FieldUpdate(asking_price=price)
        elif re.fullmatch(r"[\s$\-\d.,]+(usd|dollars?)?\s*", turn.lowered) and re.search(r"\d", turn.lowered):
            invalid.append("asking_price")

    error = None
    if "asking_price" in invalid and "asking_price" not in update.present():
        error = FieldValidationError("asking_price", "price did not parse to a positive amount")
        logger.info(f"⚠️ Rejected invalid price for draft {draft.id}")
    return update, error


async def _apply(turn: Turn, draft: Draft, update: FieldUpdate) -> Tuple[Optional[Draft], List[str]]:
    """Write the update; returns (latest draft or None if it is gone, names of fields that changed)."""
    changed = changed_fields(draft.fields, update)
    if not changed:
        return draft, []
    updated = await turn.engine.drafts.apply_field_update(draft.id, FieldUpdate(**changed))
    if updated is None:
        return None, []
    turn.effect("fields_updated", draft_id=draft.id, fields=sorted(changed))
    return updated, sorted(changed)


async def _ingest(turn: Turn, draft: Draft) -> Optional[IntakeResult]:
    if not turn.photos:
        return None
    result = await turn.engine.intake.ingest(turn.photos, draft)
    if result.accepted:
        turn.effect("photos_added", draft_id=draft.id, count=len(result.accepted))
    if result.failed:
        turn.effect("photos_failed", draft_id=draft.id, count=len(result.failed))
    if result.rejected:
        turn.effect("photos_rejected", draft_id=draft.id, count=len(result.rejected))
    return result


def _photo_notes(result: Optional[IntakeResult]) -> List[str]:
    if result is None:
        return []
    if result.batch_rejected:
        return [msg("SELL_PHOTO_NOT_CLOTHING")]
    if result.failed:
        return [msg("SELL_PHOTO_FAILED", len(result.failed))]
    return []


def _join(*parts: str) -> str:
    return "\n\n".join(p for p in parts if p)


# ============ ENTRY ============

async def start_selling(turn: Turn, content: str) -> str:
    """SELL from the menu. ``content`` is whatever came after the keyword."""
    existing = await turn.engine.drafts.find_open_draft_for_seller(_seller(turn).id)
    if existing:
        turn.conversation.transition(ConversationState.SELL_DRAFT_CHOICE, DraftChoiceContext(draft_id=existing.id))
        return msg("SELL_DRAFT_FOUND", existing)

    if not content.strip() and not turn.photos:
        turn.conversation.transition(ConversationState.SELL_STARTED, MenuContext())
        return msg("SELL_START")

    draft = await _create_draft(turn)
    _move(turn, ConversationState.SELL_COLLECTING, draft.id)
    turn.text = content
    return await handle_collecting(turn)


async def handle_started(turn: Turn) -> str:
    """First message after SELL: the draft is created now, with this message as its first input."""
    if not turn.text.strip() and not turn.photos:
        return msg("SELL_START")
    return await start_selling(turn, turn.text)


async def handle_draft_choice(turn: Turn) -> str:
    ctx = turn.conversation.context
    if not isinstance(ctx, DraftChoiceContext):
        raise FlowStateError(f"sell_draft_choice has a {type(ctx).__name__} context")
    drafts = turn.engine.drafts
    old = await drafts.get(ctx.draft_id) if ctx.draft_id else None
    lowered = turn.lowered

    if lowered in CONTINUE_WORDS:
        if old is None or not old.is_open:
            draft = await _create_draft(turn)
            _move(turn, ConversationState.SELL_COLLECTING, draft.id)
            return msg("SELL_START")
        return _resume(turn, old)

    if lowered in FRESH_WORDS:
        if old is not None:
            await drafts.delete(old.id)
            turn.effect("draft_deleted", draft_id=old.id)
        draft = await _create_draft(turn)
        _move(turn, ConversationState.SELL_COLLECTING, draft.id)
        return _join(msg("SELL_DRAFT_DELETED"), msg("SELL_START"))

    fallback = msg("SELL_DRAFT_FOUND", old) if old else msg("SELL_DRAFT_CHOICE_INVALID")
    return register_confusion(turn, msg("SELL_DRAFT_CHOICE_INVALID"), fallback)


# ============ COMMANDS ============

async def cancel(turn: Turn) -> str:
    draft_id = getattr(turn.conversation.context, "draft_id", "")
    if draft_id:
        await turn.engine.drafts.delete(draft_id)
        turn.effect("draft_deleted", draft_id=draft_id)
    turn.conversation.transition(ConversationState.AUTHORIZED)
    return msg("SELL_CANCELLED")


async def restart(turn: Turn) -> str:
    draft_id = getattr(turn.conversation.context, "draft_id", "")
    if draft_id:
        await turn.engine.drafts.delete(draft_id)
        turn.effect("draft_deleted", draft_id=draft_id)
    draft = await _create_draft(turn)
    _move(turn, ConversationState.SELL_COLLECTING, draft.id)
    return _join(msg("SELL_DRAFT_DELETED"), msg("SELL_START"))


def _status(draft: Draft) -> str:
    return msg("SELL_STATUS", draft, draft.missing_fields())


async def _fallback_choice(turn: Turn, draft: Draft) -> Optional[str]:
    """Digits from the numbered fallback menu, once it has been shown."""
    ctx = _sell_context(turn)
    if not ctx.fallback_shown or turn.lowered not in ("1", "2", "3"):
        return None
    if turn.lowered == "1":
        reset_confusion(turn)
        return _status(draft)
    if turn.lowered == "2":
        return await restart(turn)
    return await cancel(turn)


# ============ COLLECTING ============

async def handle_collecting(turn: Turn) -> str:
    draft = await _load_draft(turn)
    if draft is None:
        return _draft_missing(turn)
    ctx = _sell_context(turn)

    if is_status_question(turn.text):
        return _status(draft)
    chosen = await _fallback_choice(turn, draft)
    if chosen is not None:
        return chosen

    intake = await _ingest(turn, draft)
    if intake is not None:
        if intake.draft_missing:
            return _draft_missing(turn)
        draft = intake.draft or draft
    notes = _photo_notes(intake)

    update, invalid = await _extract_update(turn, draft, allow_bare_price=True)
    updated, changed = await _apply(turn, draft, update)
    if updated is None:
        # cancelled while the extractor was running; drop the result
        return _draft_missing(turn)
    draft = updated

    progress = bool(changed) or bool(intake and intake.accepted)
    missing = draft.missing_fields()
    if not missing:
        return _join(*notes, _advance(turn, draft, ctx.asked_details))

    if invalid is not None and not changed:
        return _join(*notes, msg("SELL_INVALID_PRICE"))
    if progress:
        reset_confusion(turn)
        return _join(*notes, msg("SELL_EXTRACTED", draft, missing))
    if intake is not None and not turn.text.strip():
        # photo-only turn that added nothing (rejected or failed): the note says what to do
        return _join(*notes, msg("SELL_ASK_FIELD", missing[0]))
    return _join(*notes, register_confusion(
        turn,
        msg("SELL_DIDNT_UNDERSTAND"),
        msg("SELL_FALLBACK_MENU", missing[0]),
    ))


# ============ DETAILS ============

async def handle_details(turn: Turn) -> str:
    draft = await _load_draft(turn)
    if draft is None:
        return _draft_missing(turn)

    if is_status_question(turn.text):
        return _status(draft)

    intake = await _ingest(turn, draft)
    if intake is not None:
        if intake.draft_missing:
            return _draft_missing(turn)
        draft = intake.draft or draft
        if intake.batch_rejected and not turn.text.strip():
            return _join(msg("SELL_PHOTO_NOT_CLOTHING"), msg("SELL_ASK_DETAILS"))
    notes = _photo_notes(intake)

    text = turn.text.strip()
    if text and not is_skip(text):
        # corrections to required fields still count, the message itself is the details note
        update, _ = await _extract_update(turn, draft, allow_bare_price=False)
        values = update.without("details").present()
        values["details"] = text
        updated, _ = await _apply(turn, draft, FieldUpdate(**values))
        if updated is None:
            return _draft_missing(turn)
        draft = updated

    if draft.missing_fields():
        _move(turn, ConversationState.SELL_COLLECTING, draft.id, asked_details=True)
        return _join(*notes, msg("SELL_EXTRACTED", draft, draft.missing_fields()))
    return _join(*notes, _advance(turn, draft, asked_details=True))


# ============ PHOTOS ============

async def handle_photos(turn: Turn) -> str:
    draft = await _load_draft(turn)
    if draft is None:
        return _draft_missing(turn)

    if is_status_question(turn.text):
        return _status(draft)
    chosen = await _fallback_choice(turn, draft)
    if chosen is not None:
        return chosen

    intake = await _ingest(turn, draft)
    if intake is not None:
        if intake.draft_missing:
            return _draft_missing(turn)
        draft = intake.draft or draft

    # text alongside (or instead of) photos is a correction
    update, invalid = await _extract_update(turn, draft, allow_bare_price=False)
    updated, changed = await _apply(turn, draft, update)
    if updated is None:
        return _draft_missing(turn)
    draft = updated

    if draft.missing_fields():
        _move(turn, ConversationState.SELL_COLLECTING, draft.id, asked_details=True)
        return msg("SELL_EXTRACTED", draft, draft.missing_fields())

    if draft.is_ready_for_review():
        return _join(*_photo_notes(intake), _advance(turn, draft, asked_details=True))

    if intake is not None and intake.batch_rejected:
        return msg("SELL_PHOTO_NOT_CLOTHING")
    if intake is not None and (intake.accepted or intake.failed):
        reset_confusion(turn)
        nudge = bool(intake.accepted) and not draft.tag_photo
        return msg("SELL_PHOTO_RECEIVED", draft.photo_count(), intake.feedback, len(intake.failed), nudge)
    if invalid is not None:
        return msg("SELL_INVALID_PRICE")
    if changed:
        reset_confusion(turn)
        return _join(msg("SELL_UPDATED"), msg("SELL_READY_FOR_PHOTOS", draft))
    return register_confusion(
        turn,
        msg("SELL_READY_FOR_PHOTOS", draft),
        msg("SELL_PHOTOS_FALLBACK_MENU", draft.photos_needed()),
    )


# ============ CONFIRMING ============

async def _submit(turn: Turn, draft: Draft) -> str:
    seller = _seller(turn)
    engine = turn.engine
    try:
        catalog_id = await engine.catalog.submit(draft.fields.known(), draft.all_photos(), draft.id, seller)
    except SubmissionError as e:
        logger.warning(f"⚠️ Catalog submission failed for draft {draft.id}: {e}")
        turn.effect("submission_failed", draft_id=draft.id)
        return msg("SELL_SUBMIT_FAILED")
    except Exception as e:
        # any other submitter failure is still a failed hand-off: draft and state stay put
        logger.error(f"❌ Unexpected catalog error for draft {draft.id}: {e}", exc_info=True)
        turn.effect("submission_failed", draft_id=draft.id)
        return msg("SELL_SUBMIT_FAILED")

    try:
        await engine.drafts.mark_pending_review(draft.id, catalog_id)
    except DraftIncompleteError as e:
        logger.error(f"❌ Draft {draft.id} submitted but failed the completeness check: {e}")
        latest = await engine.drafts.get(draft.id)
        if latest is None:
            return _draft_missing(turn)
        return _resume(turn, latest)

    turn.effect("submitted", draft_id=draft.id, catalog_id=catalog_id)
    turn.conversation.transition(ConversationState.AUTHORIZED)
    return msg("SELL_COMPLETE")


async def handle_confirming(turn: Turn) -> str:
    ctx = _sell_context(turn)
    draft_id = ctx.draft_id
    stored = await turn.engine.drafts.get(draft_id) if draft_id else None
    if stored is not None and not stored.is_open:
        # already handed off (e.g. the reply to a retried submit was lost)
        turn.conversation.transition(ConversationState.AUTHORIZED)
        return msg("SELL_COMPLETE")
    draft = stored
    if draft is None:
        return _draft_missing(turn)

    lowered = turn.lowered
    if is_status_question(turn.text):
        return msg("SELL_SUMMARY", draft)
    if lowered in SUBMIT_WORDS and not turn.photos:
        if not draft.is_ready_for_review():
            return _resume(turn, draft)
        return await _submit(turn, draft)
    if lowered in EDIT_WORDS:
        _move(turn, ConversationState.SELL_EDITING, draft.id, asked_details=True)
        return msg("SELL_WHAT_TO_EDIT")
    if lowered in CANCEL_WORDS:
        return await cancel(turn)

    intake = await _ingest(turn, draft)
    if intake is not None:
        if intake.draft_missing:
            return _draft_missing(turn)
        draft = intake.draft or draft

    update, invalid = await _extract_update(turn, draft, allow_bare_price=False)
    updated, changed = await _apply(turn, draft, update)
    if updated is None:
        return _draft_missing(turn)
    draft = updated

    if changed or (intake and intake.accepted):
        reset_confusion(turn)
        return _join(*_photo_notes(intake), msg("SELL_UPDATED"), msg("SELL_SUMMARY", draft))
    if intake is not None:
        return _join(*_photo_notes(intake), msg("SELL_CONFIRM_OPTIONS"))
    if invalid is not None:
        return _join(msg("SELL_INVALID_PRICE"), msg("SELL_CONFIRM_OPTIONS"))
    return register_confusion(turn, msg("SELL_CONFIRM_DIDNT_UNDERSTAND"), msg("SELL_SUMMARY", draft))


# ============ EDITING ============

async def handle_editing(turn: Turn) -> str:
    draft = await _load_draft(turn)
    if draft is None:
        return _draft_missing(turn)
    drafts = turn.engine.drafts
    lowered = turn.lowered

    if lowered in ("1", "details"):
        await drafts.clear_fields(draft.id, REQUIRED_FIELDS + ("details",))
        turn.effect("fields_cleared", draft_id=draft.id, fields=list(REQUIRED_FIELDS) + ["details"])
        _move(turn, ConversationState.SELL_COLLECTING, draft.id)
        return msg("SELL_START")
    if lowered in ("2", "photos"):
        cleared = await drafts.clear_photos(draft.id)
        turn.effect("photos_cleared", draft_id=draft.id)
        _move(turn, ConversationState.SELL_PHOTOS, draft.id, asked_details=True)
        return msg("SELL_READY_FOR_PHOTOS", cleared or draft)
    if lowered in ("3", "price"):
        await drafts.clear_fields(draft.id, ("asking_price",))
        turn.effect("fields_cleared", draft_id=draft.id, fields=["asking_price"])
        _move(turn, ConversationState.SELL_COLLECTING, draft.id, asked_details=True)
        return msg("SELL_ASK_NEW_PRICE")
    if lowered in ("4", "back"):
        _move(turn, ConversationState.SELL_CONFIRMING, draft.id, asked_details=True)
        return msg("SELL_SUMMARY", draft)
    return register_confusion(turn, msg("SELL_WHAT_TO_EDIT"), msg("SELL_WHAT_TO_EDIT"))
