from draft_state import PHOTO_QUOTA, Draft, DraftStatus, FieldUpdate, ListingFields, changed_fields, merge_fields
from conversation_state import (
    CONTEXT_TYPES,
    Conversation,
    ConversationState,
    EmailVerifyContext,
    SellContext,
)

import pytest


def test_merge_overwrites_present_and_keeps_absent():
    current = ListingFields(designer="Elan", size="M", asking_price=90)
    merged = merge_fields(current, FieldUpdate(asking_price=85, condition="like new"))

    assert merged.designer == "Elan"
    assert merged.size == "M"
    assert merged.asking_price == 85
    assert merged.condition == "like new"


def test_explicit_none_is_not_a_present_field():
    current = ListingFields(designer="Elan")
    merged = merge_fields(current, FieldUpdate(designer=None, size="S"))

    assert merged.designer == "Elan"
    assert merged.size == "S"


def test_from_extraction_maps_aliases_and_cleans_price():
    update, invalid = FieldUpdate.from_extraction({
        "brand": "Maria B",
        "type": "lehnga",
        "asking_price_usd": "$1,200",
        "pieces_included": ["shirt", "dupatta"],
        "unknown": "ignored",
    })

    assert invalid == []
    assert update.present() == {
        "designer": "Maria B",
        "item_type": "lehnga",
        "asking_price": 1200,
        "pieces_included": "shirt, dupatta",
    }


def test_from_extraction_reports_unparseable_price():
    update, invalid = FieldUpdate.from_extraction({"designer": "Elan", "asking_price": "free"})

    assert invalid == ["asking_price"]
    assert "asking_price" not in update.present()
    assert update.present() == {"designer": "Elan"}


def test_from_extraction_rejects_non_dict():
    update, invalid = FieldUpdate.from_extraction(["designer"])  # type: ignore[arg-type]
    assert update.is_empty()
    assert invalid == []


def test_changed_fields_ignores_repeats():
    current = ListingFields(designer="Elan", size="M")
    assert changed_fields(current, FieldUpdate(designer="Elan")) == {}
    assert changed_fields(current, FieldUpdate(designer="Elan", size="L")) == {"size": "L"}


def test_missing_fields_in_priority_order():
    draft = Draft.new("seller-1")
    draft.fields = ListingFields(size="M", asking_price=50)
    assert draft.missing_fields() == ["designer", "item_type", "condition"]


def test_tag_photo_counts_toward_quota():
    draft = Draft.new("seller-1")
    draft.fields = ListingFields(designer="Elan", item_type="kurta", size="M", condition="like new", asking_price=85)
    draft.item_photos = ["a.jpg", "b.jpg"]
    assert not draft.is_ready_for_review()

    draft.tag_photo = "tag.jpg"
    assert draft.photo_count() == 3
    assert draft.all_photos() == ["tag.jpg", "a.jpg", "b.jpg"]
    assert draft.is_ready_for_review()


def test_photo_gate_and_review_readiness_share_one_quota():
    draft = Draft.new("seller-1")
    draft.fields = ListingFields(designer="Elan", item_type="kurta", size="M", condition="like new", asking_price=85)

    for count in range(PHOTO_QUOTA + 2):
        draft.item_photos = [f"p{i}.jpg" for i in range(count)]
        assert draft.is_ready_for_review() == (draft.photos_needed() == 0)
    assert draft.photos_needed() == 0


def test_draft_record_round_trip_keeps_photos_and_status():
    draft = Draft.new("seller-1", "conv-1")
    draft.fields = ListingFields(designer="Elan", asking_price=85)
    draft.tag_photo = "tag.jpg"
    draft.item_photos = ["a.jpg"]
    draft.photo_sources = ["MM1-0"]
    draft.status = DraftStatus.PENDING_REVIEW

    restored = Draft.from_record(draft.to_record())

    assert restored.fields == draft.fields
    assert restored.tag_photo == "tag.jpg"
    assert restored.item_photos == ["a.jpg"]
    assert restored.photo_sources == ["MM1-0"]
    assert restored.status == DraftStatus.PENDING_REVIEW
    assert not restored.is_open


def test_every_state_has_a_context_type():
    assert set(CONTEXT_TYPES) == set(ConversationState)


def test_transition_installs_fresh_context():
    conversation = Conversation(phone="+15550000000")
    conversation.transition(ConversationState.SELL_COLLECTING, SellContext(draft_id="d1", confusion_count=2))
    conversation.transition(ConversationState.SELL_PHOTOS, SellContext(draft_id="d1"))

    assert conversation.context.confusion_count == 0


def test_transition_rejects_wrong_context_shape():
    conversation = Conversation(phone="+15550000000")
    with pytest.raises(TypeError):
        conversation.transition(ConversationState.SELL_COLLECTING, EmailVerifyContext())


def test_conversation_record_round_trip_restores_typed_context():
    conversation = Conversation(phone="+15550000000")
    conversation.transition(ConversationState.AWAITING_EMAIL, EmailVerifyContext(email_attempts=2, pending_intent="sell"))

    restored = Conversation.from_record(conversation.to_record())

    assert restored.state == ConversationState.AWAITING_EMAIL
    assert isinstance(restored.context, EmailVerifyContext)
    assert restored.context.email_attempts == 2
    assert restored.context.pending_intent == "sell"


def test_processed_ids_are_capped():
    conversation = Conversation(phone="+15550000000")
    for i in range(105):
        conversation.record_message(f"m{i}", limit=100)

    assert len(conversation.processed_message_ids) == 100
    assert not conversation.has_processed("m0")
    assert conversation.has_processed("m104")
