import pytest

from conversation_state import ConversationState
from messages import msg
from workflow import WorkflowInput, run_workflow

from tests.conftest import PHONE_A, PHONE_B, SELLER_EMAIL


@pytest.mark.asyncio
async def test_linked_phone_is_signed_in_on_first_message(send, seller, identity):
    result = await send(PHONE_A, "hi")

    assert result.state == "authorized"
    assert result.reply == msg("WELCOME_KNOWN_SELLER")
    stored = await identity.find_conversation(PHONE_A)
    assert stored.is_authorized
    assert stored.seller_id == seller.id


@pytest.mark.asyncio
async def test_new_seller_enrolment(send, identity):
    welcome = await send(PHONE_B, "hello")
    assert welcome.state == "awaiting_account_check"
    assert welcome.reply == msg("WELCOME_NEW_USER")

    ask = await send(PHONE_B, "no")
    assert ask.state == "awaiting_new_email"

    invalid = await send(PHONE_B, "my email is nida")
    assert invalid.reply == msg("INVALID_EMAIL")
    assert invalid.state == "awaiting_new_email"

    created = await send(PHONE_B, "nida@example.com")
    assert created.state == "authorized"
    assert created.reply == msg("ACCOUNT_CREATED")
    seller = await identity.find_seller_by_email("nida@example.com")
    assert seller.phone == PHONE_B


@pytest.mark.asyncio
async def test_existing_seller_on_new_phone_revokes_old_phone(send, seller, identity):
    await send(PHONE_A, "hi")

    await send(PHONE_B, "hi")
    await send(PHONE_B, "yes")
    linked = await send(PHONE_B, SELLER_EMAIL)

    assert linked.state == "authorized"
    assert "Welcome back Amna" in linked.reply
    phone_a = await identity.find_conversation(PHONE_A)
    phone_b = await identity.find_conversation(PHONE_B)
    assert not phone_a.is_authorized
    assert phone_b.is_authorized

    # phone A has to verify again before doing anything, and keeps its intent
    revoked = await send(PHONE_A, "sell")
    assert revoked.reply == msg("SESSION_REVOKED")
    assert revoked.state == "awaiting_email"

    verified = await send(PHONE_A, SELLER_EMAIL.upper())
    assert verified.state == "sell_started"
    assert verified.reply.startswith("You're in!")
    assert not (await identity.find_conversation(PHONE_B)).is_authorized


@pytest.mark.asyncio
async def test_three_unknown_emails_reset_account_lookup(send):
    await send(PHONE_B, "hi")
    await send(PHONE_B, "yes")

    first = await send(PHONE_B, "who@example.com")
    second = await send(PHONE_B, "what@example.com")
    third = await send(PHONE_B, "where@example.com")

    assert first.reply == msg("EMAIL_NOT_FOUND", 1)
    assert second.reply == msg("EMAIL_NOT_FOUND", 2)
    assert third.reply == msg("EMAIL_NOT_FOUND_MAX")
    assert third.state == "awaiting_account_check"

    # counter starts over on the next round
    await send(PHONE_B, "yes")
    again = await send(PHONE_B, "who@example.com")
    assert again.reply == msg("EMAIL_NOT_FOUND", 1)


@pytest.mark.asyncio
async def test_three_wrong_verification_emails_reset(send, signed_in):
    await send(PHONE_A, "logout")
    prompt = await send(PHONE_A, "menu")
    assert prompt.reply == msg("ASK_EMAIL_VERIFY")
    assert prompt.state == "awaiting_email"

    await send(PHONE_A, "nope@example.com")
    await send(PHONE_A, "nah@example.com")
    third = await send(PHONE_A, "never@example.com")

    assert third.reply == msg("EMAIL_TOO_MANY_ATTEMPTS")
    assert third.state == "awaiting_account_check"


@pytest.mark.asyncio
async def test_logout_then_verify_again(send, signed_in, identity):
    out = await send(PHONE_A, "log out")
    assert out.reply == msg("LOGOUT")
    assert out.state == "new"
    assert not (await identity.find_conversation(PHONE_A)).is_authorized

    await send(PHONE_A, "hi")
    verified = await send(PHONE_A, SELLER_EMAIL)
    assert verified.reply == msg("VERIFIED")
    assert verified.state == "authorized"


@pytest.mark.asyncio
async def test_expired_session_requires_verification(send, signed_in, clock):
    clock.advance(days=31)

    expired = await send(PHONE_A, "sell")

    assert expired.reply == msg("SESSION_EXPIRED")
    assert expired.state == "awaiting_email"
    resumed = await send(PHONE_A, SELLER_EMAIL)
    assert resumed.state == "sell_started"


@pytest.mark.asyncio
async def test_rate_limited_verification(send, signed_in, identity, clock):
    await send(PHONE_A, "logout")
    await send(PHONE_A, "hi")
    conversation = await identity.find_conversation(PHONE_A)
    conversation.auth_attempts = 10
    conversation.last_auth_attempt = clock()
    await identity.save_conversation(conversation)

    blocked = await send(PHONE_A, SELLER_EMAIL)

    assert blocked.reply == msg("RATE_LIMITED")
    assert blocked.state == "awaiting_email"


@pytest.mark.asyncio
async def test_stop_blocks_everything_until_start(send, signed_in):
    stopped = await send(PHONE_A, "STOP")
    assert stopped.reply == msg("STOP")

    blocked = await send(PHONE_A, "sell")
    assert blocked.reply == msg("UNSUBSCRIBED_BLOCK")

    started = await send(PHONE_A, "start")
    assert started.reply == msg("START")

    selling = await send(PHONE_A, "sell")
    assert selling.state == "sell_started"


@pytest.mark.asyncio
async def test_help_never_changes_state(send, signed_in):
    await send(PHONE_A, "sell")
    await send(PHONE_A, "Sana Safinaz")

    result = await send(PHONE_A, "help")

    assert result.reply == msg("HELP")
    assert result.state == "sell_collecting"


@pytest.mark.asyncio
async def test_menu_confusion_reaches_numbered_fallback(send, signed_in):
    replies = [await send(PHONE_A, "what's the weather") for _ in range(3)]

    assert replies[0].reply == msg("DIDNT_UNDERSTAND")
    assert replies[2].reply == msg("FALLBACK_MENU")

    help_reply = await send(PHONE_A, "2")
    assert help_reply.reply == msg("HELP")


@pytest.mark.asyncio
async def test_replayed_message_id_is_handled_once(send, signed_in, extractor, identity):
    await send(PHONE_A, "sell")
    first = await send(PHONE_A, "Sana Safinaz", message_id="SM-1")
    conversation = await identity.find_conversation(PHONE_A)

    replay = await send(PHONE_A, "Sana Safinaz", message_id="SM-1")

    assert not first.duplicate
    assert replay.duplicate
    assert replay.reply == ""
    assert extractor.calls.count("Sana Safinaz") == 1
    after = await identity.find_conversation(PHONE_A)
    assert after.version == conversation.version
    assert after.context.confusion_count == 0


@pytest.mark.asyncio
async def test_unexpected_error_resets_to_known_state(send, signed_in, drafts, identity):
    async def explode(seller_id):
        raise RuntimeError("boom")

    drafts.find_open_draft_for_seller = explode
    result = await send(PHONE_A, "sell")

    assert result.reply == msg("ERROR")
    assert result.state == "authorized"
    stored = await identity.find_conversation(PHONE_A)
    assert stored.state == ConversationState.AUTHORIZED
    assert stored.is_authorized


@pytest.mark.asyncio
async def test_concurrent_write_is_detected(send, signed_in, extractor, identity):
    await send(PHONE_A, "sell")
    await send(PHONE_A, "Sana Safinaz")

    async def other_message_lands_first(text):
        other = await identity.find_conversation(PHONE_A)
        await identity.save_conversation(other)

    extractor.before_return = other_message_lands_first
    result = await send(PHONE_A, "kurta")

    assert result.reply == msg("CONCURRENT_UPDATE")


@pytest.mark.asyncio
async def test_run_workflow_without_message_id(engine, seller):
    result = await run_workflow(engine, WorkflowInput(phone="555-123-0001", text="hi"))

    assert result.state == "authorized"
    assert not result.duplicate


@pytest.mark.asyncio
async def test_extractor_outage_keeps_the_seller_collecting(send, signed_in, extractor, drafts):
    await send(PHONE_A, "sell")
    await send(PHONE_A, "Sana Safinaz")

    async def llm_down(text):
        raise RuntimeError("model overloaded")

    extractor.before_return = llm_down
    result = await send(PHONE_A, "kurta")

    assert result.state == "sell_collecting"
    assert msg("SELL_DIDNT_UNDERSTAND") in result.reply
    draft = await drafts.find_open_draft_for_seller(signed_in.id)
    assert draft.fields.designer == "Sana Safinaz"
    assert draft.fields.item_type is None


@pytest.mark.asyncio
async def test_voice_note_is_handled_like_typed_text(send, signed_in, extractor, transcriber, drafts):
    await send(PHONE_A, "sell")
    transcriber.transcripts["https://media.test/voice-1"] = "kurta medium like new $85"

    result = await send(PHONE_A, "Sana Safinaz", audio=["https://media.test/voice-1"])

    assert extractor.calls[-1] == "Sana Safinaz kurta medium like new $85"
    assert result.state == "sell_photos"
    draft = await drafts.find_open_draft_for_seller(signed_in.id)
    assert draft.fields.asking_price == 85


@pytest.mark.asyncio
async def test_unreadable_voice_note_asks_to_type(send, signed_in, transcriber, identity):
    await send(PHONE_A, "sell")
    before = await identity.find_conversation(PHONE_A)

    result = await send(PHONE_A, audio=["https://media.test/static"])

    assert result.reply == msg("VOICE_NOT_TRANSCRIBED")
    assert result.state == "sell_started"
    assert "transcription_failed" in result.side_effects
    after = await identity.find_conversation(PHONE_A)
    assert after.state == before.state
    assert transcriber.calls == ["https://media.test/static"]


@pytest.mark.asyncio
async def test_voice_note_without_transcriber_asks_to_type(engine, seller):
    engine.transcriber = None
    await run_workflow(engine, WorkflowInput(phone=PHONE_A, text="hi", message_id="SM-v0"))

    result = await run_workflow(
        engine,
        WorkflowInput(phone=PHONE_A, audio=["https://media.test/voice-2"], message_id="SM-v1"),
    )

    assert result.reply == msg("VOICE_NOT_TRANSCRIBED")
    assert result.state == "authorized"
