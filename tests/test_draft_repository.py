import pytest

from draft_state import DraftStatus, FieldUpdate
from services.draft_repository import InMemoryDraftRepository
from utils.error_handling import DraftIncompleteError

COMPLETE = FieldUpdate(designer="Elan", item_type="kurta", size="M", condition="like new", asking_price=85)


@pytest.mark.asyncio
async def test_update_is_a_partial_merge(drafts):
    draft = await drafts.create("seller-1")
    await drafts.apply_field_update(draft.id, FieldUpdate(designer="Elan", size="M"))
    updated = await drafts.apply_field_update(draft.id, FieldUpdate(asking_price=85))

    assert updated.fields.designer == "Elan"
    assert updated.fields.size == "M"
    assert updated.fields.asking_price == 85


@pytest.mark.asyncio
async def test_field_update_for_deleted_draft_is_dropped(drafts):
    draft = await drafts.create("seller-1")
    await drafts.delete(draft.id)

    assert await drafts.apply_field_update(draft.id, FieldUpdate(designer="Elan")) is None
    assert draft.id not in drafts.rows


@pytest.mark.asyncio
async def test_tag_photo_fills_slot_once(drafts):
    draft = await drafts.create("seller-1")
    await drafts.add_photo(draft.id, "tag-1.jpg", is_tag=True)
    await drafts.add_photo(draft.id, "tag-2.jpg", is_tag=True)
    updated = await drafts.add_photo(draft.id, "item.jpg")

    assert updated.tag_photo == "tag-1.jpg"
    assert updated.item_photos == ["tag-2.jpg", "item.jpg"]


@pytest.mark.asyncio
async def test_duplicate_photo_is_not_attached_twice(drafts):
    draft = await drafts.create("seller-1")
    await drafts.add_photo(draft.id, "a.jpg")
    updated = await drafts.add_photo(draft.id, "a.jpg")

    assert updated.item_photos == ["a.jpg"]


@pytest.mark.asyncio
async def test_photo_from_a_known_source_is_not_attached_twice(drafts):
    draft = await drafts.create("seller-1")
    await drafts.add_photo(draft.id, "https://cdn.test/one.jpg", source_ref="MM1-0")
    updated = await drafts.add_photo(draft.id, "https://cdn.test/two.jpg", source_ref="MM1-0")

    assert updated.item_photos == ["https://cdn.test/one.jpg"]
    assert updated.photo_sources == ["MM1-0"]
    assert updated.has_photo("MM1-0")


@pytest.mark.asyncio
async def test_clear_fields_and_photos(drafts):
    draft = await drafts.create("seller-1")
    await drafts.apply_field_update(draft.id, COMPLETE)
    await drafts.add_photo(draft.id, "tag.jpg", is_tag=True)
    await drafts.add_photo(draft.id, "a.jpg", source_ref="MM2-0")

    cleared = await drafts.clear_fields(draft.id, ["asking_price", "not_a_field"])
    assert cleared.fields.asking_price is None
    assert cleared.fields.designer == "Elan"

    no_photos = await drafts.clear_photos(draft.id)
    assert no_photos.photo_count() == 0
    assert no_photos.photo_sources == []


@pytest.mark.asyncio
async def test_pending_review_requires_fields_and_photos(drafts):
    draft = await drafts.create("seller-1")
    await drafts.apply_field_update(draft.id, COMPLETE)
    await drafts.add_photo(draft.id, "a.jpg")
    await drafts.add_photo(draft.id, "b.jpg")

    with pytest.raises(DraftIncompleteError):
        await drafts.mark_pending_review(draft.id, "cat-1")

    await drafts.add_photo(draft.id, "c.jpg")
    submitted = await drafts.mark_pending_review(draft.id, "cat-1")
    assert submitted.status == DraftStatus.PENDING_REVIEW
    assert submitted.catalog_id == "cat-1"


@pytest.mark.asyncio
async def test_pending_review_rejects_missing_field(drafts):
    draft = await drafts.create("seller-1")
    await drafts.apply_field_update(draft.id, COMPLETE.without("condition"))
    for ref in ("a.jpg", "b.jpg", "c.jpg"):
        await drafts.add_photo(draft.id, ref)

    with pytest.raises(DraftIncompleteError):
        await drafts.mark_pending_review(draft.id)


@pytest.mark.asyncio
async def test_find_open_draft_skips_submitted(drafts):
    submitted = await drafts.create("seller-1")
    await drafts.update(submitted.id, {"status": DraftStatus.PENDING_REVIEW.value})
    assert await drafts.find_open_draft_for_seller("seller-1") is None

    open_draft = await drafts.create("seller-1")
    found = await drafts.find_open_draft_for_seller("seller-1")
    assert found.id == open_draft.id
    assert await drafts.find_open_draft_for_seller("seller-2") is None


class VanishingDraftRepository(InMemoryDraftRepository):
    """Drops the row just before the status write, as a cancel from another phone would."""

    async def update(self, draft_id, changes):
        if "status" in changes:
            await self.delete(draft_id)
        return await super().update(draft_id, changes)


@pytest.mark.asyncio
async def test_pending_review_for_draft_deleted_during_hand_off():
    drafts = VanishingDraftRepository()
    draft = await drafts.create("seller-1")
    await drafts.apply_field_update(draft.id, COMPLETE)
    for ref in ("a.jpg", "b.jpg", "c.jpg"):
        await drafts.add_photo(draft.id, ref)

    with pytest.raises(DraftIncompleteError, match="deleted during hand-off"):
        await drafts.mark_pending_review(draft.id, "cat-1")
