"""
Listing draft model and the deterministic merge rules for extractor output.

The extractor is never authoritative for fields it didn't mention: a field present
in a FieldUpdate overwrites, an absent field is preserved.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from tools.clean_price import normalize_price_value
from utils.helpers import parse_timestamp

REQUIRED_FIELDS: Tuple[str, ...] = ("designer", "item_type", "size", "condition", "asking_price")
OPTIONAL_FIELDS: Tuple[str, ...] = ("pieces_included", "details", "color", "material", "reference_link")
ALL_FIELDS: Tuple[str, ...] = REQUIRED_FIELDS + OPTIONAL_FIELDS

FIELD_LABELS: Dict[str, str] = {
    "designer": "designer/brand",
    "item_type": "item type",
    "size": "size",
    "condition": "condition",
    "asking_price": "price",
}

# extractor / legacy payload keys that map onto our field names
FIELD_ALIASES: Dict[str, str] = {
    "asking_price_usd": "asking_price",
    "price": "asking_price",
    "brand": "designer",
    "type": "item_type",
    "includes": "pieces_included",
    "link": "reference_link",
    "url": "reference_link",
}

PHOTO_QUOTA = 3


class DraftStatus(str, Enum):
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    DELETED = "deleted"


class ListingFields(BaseModel):
    """Everything the seller tells us about the item."""

    model_config = ConfigDict(extra="ignore")

    designer: Optional[str] = None
    item_type: Optional[str] = None
    size: Optional[str] = None
    condition: Optional[str] = None
    asking_price: Optional[int] = None
    pieces_included: Optional[str] = None
    details: Optional[str] = None
    color: Optional[str] = None
    material: Optional[str] = None
    reference_link: Optional[str] = None

    def known(self) -> Dict[str, Any]:
        return {k: v for k, v in self.model_dump().items() if v not in (None, "")}


class FieldUpdate(BaseModel):
    """Partial update: only fields in ``model_fields_set`` are considered present."""

    model_config = ConfigDict(extra="ignore")

    designer: Optional[str] = None
    item_type: Optional[str] = None
    size: Optional[str] = None
    condition: Optional[str] = None
    asking_price: Optional[int] = None
    pieces_included: Optional[str] = None
    details: Optional[str] = None
    color: Optional[str] = None
    material: Optional[str] = None
    reference_link: Optional[str] = None

    def present(self) -> Dict[str, Any]:
        """Fields this update actually carries (set and non-empty)."""
        return {
            name: getattr(self, name)
            for name in ALL_FIELDS
            if name in self.model_fields_set and getattr(self, name) not in (None, "")
        }

    def is_empty(self) -> bool:
        return not self.present()

    def without(self, *names: str) -> "FieldUpdate":
        return FieldUpdate(**{k: v for k, v in self.present().items() if k not in names})

    @classmethod
    def from_extraction(cls, raw: Optional[Dict[str, Any]]) -> Tuple["FieldUpdate", List[str]]:
        """
        Build an update from untrusted extractor output.

        Returns the update plus the names of fields that were mentioned but invalid
        (e.g. a price that doesn't parse); invalid fields never reach the draft.
        """
        if not isinstance(raw, dict):
            return cls(), []

        values: Dict[str, Any] = {}
        invalid: List[str] = []
        for key, value in raw.items():
            name = FIELD_ALIASES.get(str(key).strip().lower(), str(key).strip().lower())
            if name not in ALL_FIELDS or value is None:
                continue
            if name == "asking_price":
                price = normalize_price_value(value)
                if price is None:
                    if str(value).strip():
                        invalid.append(name)
                    continue
                values[name] = price
                continue
            if isinstance(value, (list, tuple)):
                value = ", ".join(str(v).strip() for v in value if str(v).strip())
            text = str(value).strip()
            if text:
                values[name] = text
        return cls(**values), invalid


def merge_fields(current: ListingFields, update: FieldUpdate) -> ListingFields:
    """Field-present-overwrites, field-absent-preserves."""
    merged = current.model_dump()
    merged.update(update.present())
    return ListingFields(**merged)


def changed_fields(current: ListingFields, update: FieldUpdate) -> Dict[str, Any]:
    """Subset of the update that differs from what the draft already has."""
    return {k: v for k, v in update.present().items() if getattr(current, k) != v}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Draft:
    """A listing-in-progress owned by one seller."""

    id: str
    seller_id: str
    conversation_id: Optional[str] = None
    status: DraftStatus = DraftStatus.DRAFT
    fields: ListingFields = field(default_factory=ListingFields)
    tag_photo: Optional[str] = None
    item_photos: List[str] = field(default_factory=list)
    # inbound refs the attached photos were stored from
    photo_sources: List[str] = field(default_factory=list)
    catalog_id: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def new(cls, seller_id: str, conversation_id: Optional[str] = None) -> "Draft":
        return cls(id=str(uuid.uuid4()), seller_id=seller_id, conversation_id=conversation_id)

    @property
    def is_open(self) -> bool:
        return self.status == DraftStatus.DRAFT

    def missing_fields(self) -> List[str]:
        """Required fields still empty, in prompting priority order."""
        return [name for name in REQUIRED_FIELDS if getattr(self.fields, name) in (None, "")]

    def photo_count(self) -> int:
        return len(self.item_photos) + (1 if self.tag_photo else 0)

    def photos_needed(self) -> int:
        return max(0, PHOTO_QUOTA - self.photo_count())

    def all_photos(self) -> List[str]:
        photos = [self.tag_photo] if self.tag_photo else []
        photos.extend(p for p in self.item_photos if p not in photos)
        return photos

    def has_photo(self, ref: str) -> bool:
        """True for a stored URL on the draft or the inbound ref it was stored from."""
        return ref == self.tag_photo or ref in self.item_photos or ref in self.photo_sources

    def is_ready_for_review(self) -> bool:
        return not self.missing_fields() and not self.photos_needed()

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "conversation_id": self.conversation_id,
            "status": self.status.value,
            **self.fields.model_dump(),
            "photo_tag_url": self.tag_photo,
            "photo_urls": list(self.item_photos),
            "photo_source_refs": list(self.photo_sources),
            "catalog_id": self.catalog_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_record(cls, rec: Dict[str, Any]) -> "Draft":
        status_raw = rec.get("status") or DraftStatus.DRAFT.value
        photos = rec.get("photo_urls") or []
        sources = rec.get("photo_source_refs") or []
        return cls(
            id=str(rec.get("id")),
            seller_id=str(rec.get("seller_id")),
            conversation_id=rec.get("conversation_id"),
            status=DraftStatus(status_raw) if status_raw in DraftStatus._value2member_map_ else DraftStatus.DRAFT,
            fields=ListingFields(**{k: rec.get(k) for k in ALL_FIELDS}),
            tag_photo=rec.get("photo_tag_url"),
            item_photos=list(photos) if isinstance(photos, list) else [],
            photo_sources=list(sources) if isinstance(sources, list) else [],
            catalog_id=rec.get("catalog_id"),
            created_at=parse_timestamp(rec.get("created_at")) or _utcnow(),
            updated_at=parse_timestamp(rec.get("updated_at")) or _utcnow(),
        )
