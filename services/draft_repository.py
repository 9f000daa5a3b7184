"""
Listing drafts (``listing_drafts`` table).

Storage backends only implement create/get/update/delete/find; the field and
photo rules live once in the base class so both backends behave the same.
"""
from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from draft_state import (
    ALL_FIELDS,
    PHOTO_QUOTA,
    Draft,
    DraftStatus,
    FieldUpdate,
    merge_fields,
)
from services.supabase_rest import SupabaseRest
from utils.error_handling import DraftIncompleteError
from utils.logging_config import logger


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DraftRepository(ABC):
    @abstractmethod
    async def create(self, seller_id: str, conversation_id: Optional[str] = None) -> Draft:
        ...

    @abstractmethod
    async def get(self, draft_id: str) -> Optional[Draft]:
        """The draft, or None if it never existed or was deleted."""

    @abstractmethod
    async def update(self, draft_id: str, changes: Dict[str, Any]) -> Optional[Draft]:
        """Write only the given columns; everything else on the row is kept."""

    @abstractmethod
    async def delete(self, draft_id: str) -> bool:
        ...

    @abstractmethod
    async def find_open_draft_for_seller(self, seller_id: str) -> Optional[Draft]:
        ...

    async def apply_field_update(self, draft_id: str, update: FieldUpdate) -> Optional[Draft]:
        """
        Merge an extraction into the draft: present fields overwrite, absent ones stay.

        Returns None when the draft is gone (e.g. cancelled while the extractor was
        still running); the caller must then drop the result.
        """
        draft = await self.get(draft_id)
        if draft is None:
            logger.info(f"ℹ️ Dropping field update for missing draft {draft_id}")
            return None
        present = update.present()
        if not present:
            return draft
        merged = merge_fields(draft.fields, update)
        return await self.update(draft_id, {name: getattr(merged, name) for name in present})

    async def clear_fields(self, draft_id: str, names: Iterable[str]) -> Optional[Draft]:
        changes = {name: None for name in names if name in ALL_FIELDS}
        if not changes:
            return await self.get(draft_id)
        return await self.update(draft_id, changes)

    async def clear_photos(self, draft_id: str) -> Optional[Draft]:
        return await self.update(draft_id, {"photo_tag_url": None, "photo_urls": [], "photo_source_refs": []})

    async def add_photo(
        self, draft_id: str, url: str, is_tag: bool = False, source_ref: Optional[str] = None
    ) -> Optional[Draft]:
        """
        Tag photos fill the tag slot while it is empty; everything else is appended in order.

        ``source_ref`` is the inbound reference the URL was stored from, kept so a
        resent photo is recognised even though storage gave it a new URL.
        """
        draft = await self.get(draft_id)
        if draft is None:
            return None
        if draft.has_photo(url) or (source_ref and draft.has_photo(source_ref)):
            return draft
        changes: Dict[str, Any] = {}
        if source_ref:
            changes["photo_source_refs"] = draft.photo_sources + [source_ref]
        if is_tag and not draft.tag_photo:
            changes["photo_tag_url"] = url
        else:
            changes["photo_urls"] = draft.item_photos + [url]
        return await self.update(draft_id, changes)

    async def mark_pending_review(self, draft_id: str, catalog_id: Optional[str] = None) -> Draft:
        draft = await self.get(draft_id)
        if draft is None:
            raise DraftIncompleteError(f"draft {draft_id} no longer exists")
        missing = draft.missing_fields()
        if missing or draft.photos_needed():
            raise DraftIncompleteError(
                f"draft {draft_id} not ready: missing={missing} photos={draft.photo_count()}/{PHOTO_QUOTA}"
            )
        updated = await self.update(draft_id, {
            "status": DraftStatus.PENDING_REVIEW.value,
            "catalog_id": catalog_id,
        })
        if updated is None:
            raise DraftIncompleteError(f"draft {draft_id} was deleted during hand-off")
        return updated


class InMemoryDraftRepository(DraftRepository):
    def __init__(self) -> None:
        self.rows: Dict[str, Dict[str, Any]] = {}

    async def create(self, seller_id: str, conversation_id: Optional[str] = None) -> Draft:
        draft = Draft.new(seller_id, conversation_id)
        self.rows[draft.id] = draft.to_record()
        return draft

    async def get(self, draft_id: str) -> Optional[Draft]:
        rec = self.rows.get(draft_id or "")
        if not rec or rec.get("status") == DraftStatus.DELETED.value:
            return None
        return Draft.from_record(copy.deepcopy(rec))

    async def update(self, draft_id: str, changes: Dict[str, Any]) -> Optional[Draft]:
        rec = self.rows.get(draft_id or "")
        if not rec or rec.get("status") == DraftStatus.DELETED.value:
            return None
        rec.update(copy.deepcopy(changes))
        rec["updated_at"] = _utcnow().isoformat()
        return Draft.from_record(copy.deepcopy(rec))

    async def delete(self, draft_id: str) -> bool:
        return self.rows.pop(draft_id or "", None) is not None

    async def find_open_draft_for_seller(self, seller_id: str) -> Optional[Draft]:
        candidates = [
            rec for rec in self.rows.values()
            if rec.get("seller_id") == seller_id and rec.get("status") == DraftStatus.DRAFT.value
        ]
        if not candidates:
            return None
        newest = max(candidates, key=lambda r: r.get("updated_at") or "")
        return Draft.from_record(copy.deepcopy(newest))


class SupabaseDraftRepository(DraftRepository):
    TABLE = "listing_drafts"

    def __init__(self, rest: SupabaseRest):
        self.rest = rest

    async def create(self, seller_id: str, conversation_id: Optional[str] = None) -> Draft:
        draft = Draft.new(seller_id, conversation_id)
        rec = await self.rest.insert(self.TABLE, draft.to_record())
        logger.info(f"📝 Draft created: {draft.id}")
        return Draft.from_record(rec)

    async def get(self, draft_id: str) -> Optional[Draft]:
        if not draft_id:
            return None
        rec = await self.rest.select_one(self.TABLE, {
            "id": f"eq.{draft_id}",
            "status": f"neq.{DraftStatus.DELETED.value}",
        })
        return Draft.from_record(rec) if rec else None

    async def update(self, draft_id: str, changes: Dict[str, Any]) -> Optional[Draft]:
        if not draft_id:
            return None
        payload = {**changes, "updated_at": _utcnow().isoformat()}
        rows = await self.rest.update(self.TABLE, {
            "id": f"eq.{draft_id}",
            "status": f"neq.{DraftStatus.DELETED.value}",
        }, payload)
        return Draft.from_record(rows[0]) if rows else None

    async def delete(self, draft_id: str) -> bool:
        if not draft_id:
            return False
        deleted = await self.rest.delete(self.TABLE, {"id": f"eq.{draft_id}"})
        if deleted:
            logger.info(f"🗑️ Draft deleted: {draft_id}")
        return deleted > 0

    async def find_open_draft_for_seller(self, seller_id: str) -> Optional[Draft]:
        rec = await self.rest.select_one(self.TABLE, {
            "seller_id": f"eq.{seller_id}",
            "status": f"eq.{DraftStatus.DRAFT.value}",
            "order": "updated_at.desc",
        })
        return Draft.from_record(rec) if rec else None
