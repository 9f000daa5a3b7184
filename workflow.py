"""
Listing conversation workflow.

One inbound SMS goes through ``run_workflow``:

  1. resolve the conversation row (and the seller behind the phone),
  2. claim the message id so a redelivered webhook is a no-op,
  3. hand the message to ``ConversationEngine.handle`` (global commands first,
     then the handler for the current state),
  4. write the conversation back with a version check.

Draft rows are written by the state handlers as they go; the conversation row
is the only thing written at the end of the turn.
"""
from __future__ import annotations

from typing import Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from conversation_state import (
    AUTH_STATES,
    SELL_STATES,
    Conversation,
    ConversationState,
    MenuContext,
    Seller,
)
from flows import auth, sell
from flows.common import HandleResult, SideEffect, Turn, register_confusion, reset_confusion
from messages import msg
from services.catalog_client import CatalogSubmitter, HttpCatalogSubmitter, InMemoryCatalogSubmitter
from services.draft_repository import DraftRepository, InMemoryDraftRepository, SupabaseDraftRepository
from services.field_extractor import ExtractorConfig, FieldExtractor, OpenAIFieldExtractor
from services.identity_store import InMemoryIdentityStore, SupabaseIdentityStore
from services.photo_classifier import OpenAIPhotoClassifier
from services.photo_intake import PhotoIntakePipeline
from services.photo_storage import PassthroughPhotoStorage, PhotoStorage, SupabasePhotoStorage
from services.session_manager import SessionManager
from services.supabase_rest import SupabaseRest
from services.transcriber import OpenAITranscriber, Transcriber
from settings import Settings
from utils.error_handling import ConcurrentUpdateError, TranscriptionError
from utils.helpers import detect_sell_intent, get_global_command, normalize_phone
from utils.logging_config import PerformanceLogger, logger
from utils.retry import RetryPolicy

__all__ = [
    "ConversationEngine",
    "HandleResult",
    "SideEffect",
    "WorkflowInput",
    "WorkflowResult",
    "build_engine",
    "run_workflow",
]

RESTART_WORDS = {"restart", "start over"}

StateHandler = Callable[[Turn], Awaitable[str]]


class WorkflowInput(BaseModel):
    phone: str
    text: str = ""
    media: List[str] = Field(default_factory=list)
    # voice notes, transcribed into the message text before handling
    audio: List[str] = Field(default_factory=list)
    message_id: Optional[str] = None


class WorkflowResult(BaseModel):
    reply: str
    state: str
    duplicate: bool = False
    side_effects: List[str] = Field(default_factory=list)


class ConversationEngine:
    """The state machine: ``handle`` is total over (state x input) and never raises for user input."""

    def __init__(
        self,
        sessions: SessionManager,
        drafts: DraftRepository,
        extractor: FieldExtractor,
        intake: PhotoIntakePipeline,
        catalog: CatalogSubmitter,
        extractor_config: Optional[ExtractorConfig] = None,
        confusion_threshold: int = 3,
        processed_id_limit: int = 100,
        transcriber: Optional[Transcriber] = None,
    ):
        self.sessions = sessions
        self.drafts = drafts
        self.extractor = extractor
        self.intake = intake
        self.catalog = catalog
        self.extractor_config = extractor_config or ExtractorConfig()
        self.confusion_threshold = confusion_threshold
        self.processed_id_limit = processed_id_limit
        self.transcriber = transcriber

        self.handlers: Dict[ConversationState, StateHandler] = {
            ConversationState.NEW: auth.handle_new,
            ConversationState.AWAITING_ACCOUNT_CHECK: auth.handle_account_check,
            ConversationState.AWAITING_EXISTING_EMAIL: auth.handle_existing_email,
            ConversationState.AWAITING_NEW_EMAIL: auth.handle_new_email,
            ConversationState.AWAITING_EMAIL: auth.handle_awaiting_email,
            ConversationState.AUTHORIZED: self._handle_menu,
            ConversationState.SELL_STARTED: sell.handle_started,
            ConversationState.SELL_DRAFT_CHOICE: sell.handle_draft_choice,
            ConversationState.SELL_COLLECTING: sell.handle_collecting,
            ConversationState.SELL_DETAILS: sell.handle_details,
            ConversationState.SELL_PHOTOS: sell.handle_photos,
            ConversationState.SELL_CONFIRMING: sell.handle_confirming,
            ConversationState.SELL_EDITING: sell.handle_editing,
        }

    async def handle(
        self,
        message: str,
        photo_refs: Optional[List[str]],
        conversation: Conversation,
        seller: Optional[Seller],
    ) -> HandleResult:
        turn = Turn(
            engine=self,
            phone=conversation.phone,
            text=message or "",
            photos=list(photo_refs or []),
            conversation=conversation,
            seller=seller,
        )
        reply = await self._dispatch(turn)
        return HandleResult(reply=reply, side_effects=turn.side_effects)

    async def _dispatch(self, turn: Turn) -> str:
        conversation = turn.conversation
        command = get_global_command(turn.text) if not turn.photos else None

        if conversation.opted_out:
            if command == "START":
                conversation.opted_out = False
                turn.effect("opted_in")
                return msg("START")
            return msg("UNSUBSCRIBED_BLOCK")

        if command == "STOP":
            conversation.opted_out = True
            turn.effect("opted_out")
            logger.info(f"🛑 Conversation {conversation.id} opted out")
            return msg("STOP")
        if command == "HELP":
            return msg("HELP")
        if command == "LOGOUT":
            self.sessions.logout(conversation)
            turn.effect("logged_out")
            return msg("LOGOUT")

        if conversation.state in AUTH_STATES:
            if command == "MENU" and conversation.state != ConversationState.NEW:
                conversation.transition(ConversationState.NEW)
            return await self.handlers[conversation.state](turn)

        gate = await self._check_session(turn)
        if gate is not None:
            return gate

        if command == "MENU":
            return self._back_to_menu(turn)
        if command == "START" and conversation.state == ConversationState.AUTHORIZED:
            return msg("MENU")

        if conversation.state in SELL_STATES:
            if turn.lowered == "cancel":
                return await sell.cancel(turn)
            if turn.lowered in RESTART_WORDS:
                return await sell.restart(turn)

        return await self.handlers[conversation.state](turn)

    async def _check_session(self, turn: Turn) -> Optional[str]:
        """Past the sign-in states the conversation must hold a live session for a known seller."""
        conversation = turn.conversation
        if turn.seller is None:
            logger.warning(f"⚠️ Conversation {conversation.id} has no seller, restarting sign-in")
            conversation.is_authorized = False
            conversation.transition(ConversationState.NEW)
            return await auth.handle_new(turn)

        revoked = not conversation.is_authorized
        if not revoked and not self.sessions.is_session_expired(conversation):
            return None

        in_sell = conversation.state in SELL_STATES or detect_sell_intent(turn.text) is not None
        pending_intent = "sell" if in_sell else None
        self.sessions.begin_email_verification(conversation, pending_intent=pending_intent)
        turn.effect("verification_started", pending_intent=pending_intent, revoked=revoked)
        logger.info(f"🔒 Conversation {conversation.id} needs re-verification (revoked={revoked})")
        return msg("SESSION_REVOKED") if revoked else msg("SESSION_EXPIRED")

    def _back_to_menu(self, turn: Turn) -> str:
        conversation = turn.conversation
        had_draft = bool(getattr(conversation.context, "draft_id", ""))
        conversation.transition(ConversationState.AUTHORIZED)
        if had_draft:
            return msg("SELL_DRAFT_SAVED")
        return msg("MENU")

    async def _handle_menu(self, turn: Turn) -> str:
        content = detect_sell_intent(turn.text)
        if content is not None:
            return await sell.start_selling(turn, content)
        if turn.photos:
            # photos straight from the menu start a listing with them
            return await sell.start_selling(turn, turn.text)

        ctx = turn.conversation.context
        if isinstance(ctx, MenuContext) and ctx.fallback_shown and turn.lowered in ("2", "3"):
            reset_confusion(turn)
            if turn.lowered == "2":
                return msg("HELP")
            self.sessions.logout(turn.conversation)
            turn.effect("logged_out")
            return msg("LOGOUT")
        return register_confusion(turn, msg("DIDNT_UNDERSTAND"), msg("FALLBACK_MENU"))


async def _transcribe(engine: ConversationEngine, audio: List[str]) -> Optional[str]:
    """Joined transcript of the voice notes, or None when any of them could not be read."""
    if engine.transcriber is None:
        logger.warning("⚠️ Voice note received but no transcriber is configured")
        return None
    parts: List[str] = []
    for media_url in audio:
        try:
            parts.append(await engine.transcriber.transcribe(media_url))
        except TranscriptionError as e:
            logger.warning(f"⚠️ Transcription failed: {e}")
            return None
    return " ".join(parts)


async def _reset_after_error(engine: ConversationEngine, conversation: Conversation) -> Conversation:
    """Put the conversation back in a known state after an unexpected failure."""
    latest = await engine.sessions.identity.get_conversation(conversation.id) or conversation
    if latest.is_authorized and latest.seller_id:
        latest.transition(ConversationState.AUTHORIZED)
    else:
        latest.transition(ConversationState.NEW)
    try:
        await engine.sessions.identity.save_conversation(latest)
    except ConcurrentUpdateError:
        logger.warning(f"⚠️ Could not reset conversation {conversation.id}: changed concurrently")
    return latest


async def run_workflow(engine: ConversationEngine, workflow_input: WorkflowInput) -> WorkflowResult:
    phone = normalize_phone(workflow_input.phone) or workflow_input.phone
    message_id = workflow_input.message_id
    identity = engine.sessions.identity

    with PerformanceLogger(logger, "handle_message", message_id=message_id):
        resolved = await engine.sessions.resolve(phone)
        conversation = resolved.conversation

        # claim the message id first so a redelivery racing this one becomes a no-op
        if message_id:
            if conversation.has_processed(message_id):
                logger.info(f"🔁 Duplicate message {message_id} ignored")
                return WorkflowResult(reply="", state=conversation.state.value, duplicate=True)
            conversation.record_message(message_id, engine.processed_id_limit)
            try:
                conversation = await identity.save_conversation(conversation)
            except ConcurrentUpdateError:
                latest = await identity.get_conversation(conversation.id)
                if latest is not None and latest.has_processed(message_id):
                    logger.info(f"🔁 Duplicate message {message_id} ignored (claimed concurrently)")
                    return WorkflowResult(reply="", state=latest.state.value, duplicate=True)
                state = latest.state.value if latest else conversation.state.value
                return WorkflowResult(reply=msg("CONCURRENT_UPDATE"), state=state)

        text = workflow_input.text
        if workflow_input.audio:
            transcript = await _transcribe(engine, workflow_input.audio)
            if transcript is None:
                return WorkflowResult(
                    reply=msg("VOICE_NOT_TRANSCRIBED"),
                    state=conversation.state.value,
                    side_effects=["transcription_failed"],
                )
            text = " ".join(part for part in (text.strip(), transcript) if part)

        logger.info(f"📩 Message for conversation {conversation.id} in state {conversation.state.value}")
        try:
            result = await engine.handle(text, workflow_input.media, conversation, resolved.seller)
        except Exception as e:
            logger.error(f"❌ Unhandled error in state {conversation.state.value}: {e}", exc_info=True)
            reset = await _reset_after_error(engine, conversation)
            return WorkflowResult(reply=msg("ERROR"), state=reset.state.value)

        try:
            conversation = await identity.save_conversation(conversation)
        except ConcurrentUpdateError as e:
            logger.warning(f"⚠️ {e}")
            latest = await identity.get_conversation(conversation.id)
            state = latest.state.value if latest else conversation.state.value
            return WorkflowResult(reply=msg("CONCURRENT_UPDATE"), state=state)

    logger.info(f"✅ Reply sent, conversation {conversation.id} now {conversation.state.value}")
    return WorkflowResult(
        reply=result.reply,
        state=conversation.state.value,
        side_effects=[e.kind for e in result.side_effects],
    )


def build_engine(settings: Settings) -> ConversationEngine:
    """Wire collaborators from settings; without Supabase everything lives in memory."""
    retry = RetryPolicy(
        max_attempts=settings.collaborator_attempts,
        delay_seconds=settings.collaborator_delay_seconds,
    )
    media_auth = (
        (settings.media_account_sid, settings.media_auth_token)
        if settings.media_account_sid and settings.media_auth_token
        else None
    )
    storage: PhotoStorage
    if settings.use_supabase:
        rest = SupabaseRest(settings.supabase_url, settings.supabase_service_key)
        identity = SupabaseIdentityStore(rest)
        drafts: DraftRepository = SupabaseDraftRepository(rest)
        storage = SupabasePhotoStorage(
            settings.supabase_url,
            settings.supabase_service_key,
            bucket=settings.storage_bucket,
            media_auth=media_auth,
            poll=RetryPolicy(
                max_attempts=settings.photo_poll_attempts,
                delay_seconds=settings.photo_poll_delay_seconds,
                backoff=1.5,
            ),
        )
        logger.info("🗄️ Using Supabase persistence")
    else:
        identity = InMemoryIdentityStore()
        drafts = InMemoryDraftRepository()
        storage = PassthroughPhotoStorage()
        logger.warning("⚠️ SUPABASE_URL/SUPABASE_SERVICE_KEY not set, using in-memory stores")

    catalog: CatalogSubmitter
    if settings.catalog_api_url:
        catalog = HttpCatalogSubmitter(settings.catalog_api_url, settings.catalog_api_key, retry=retry)
    else:
        catalog = InMemoryCatalogSubmitter()
        logger.warning("⚠️ CATALOG_API_URL not set, submissions stay in memory")

    config = ExtractorConfig(model=settings.extraction_model)
    sessions = SessionManager(
        identity,
        attempts_per_hour=settings.auth_attempts_per_hour,
        email_attempt_limit=settings.email_attempt_limit,
        session_max_age_days=settings.session_max_age_days,
    )
    classifier = OpenAIPhotoClassifier(model=settings.vision_model, retry=retry)
    return ConversationEngine(
        sessions=sessions,
        drafts=drafts,
        extractor=OpenAIFieldExtractor(retry=retry, default_config=config),
        intake=PhotoIntakePipeline(drafts, classifier, storage),
        catalog=catalog,
        extractor_config=config,
        confusion_threshold=settings.confusion_threshold,
        processed_id_limit=settings.processed_id_limit,
        transcriber=OpenAITranscriber(
            model=settings.transcription_model,
            media_auth=media_auth,
            retry=retry,
        ),
    )
