"""
Sellers and per-phone conversation rows.

Conversation writes are compare-and-swap on ``version``: a save whose version no
longer matches the stored row raises ConcurrentUpdateError instead of silently
overwriting a newer state.
"""
from __future__ import annotations

import copy
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from conversation_state import Conversation, Seller
from services.supabase_rest import SupabaseRest, in_filter
from utils.error_handling import ConcurrentUpdateError
from utils.helpers import normalize_email, normalize_phone, phone_variants
from utils.logging_config import logger


class IdentityStore(ABC):
    @abstractmethod
    async def find_seller_by_phone(self, phone: str) -> Optional[Seller]:
        ...

    @abstractmethod
    async def find_seller_by_email(self, email: str) -> Optional[Seller]:
        """Case-insensitive match against the primary or alternate (PayPal) email."""

    @abstractmethod
    async def get_seller(self, seller_id: str) -> Optional[Seller]:
        ...

    @abstractmethod
    async def create_seller(self, email: str, phone: Optional[str] = None, name: Optional[str] = None) -> Seller:
        ...

    @abstractmethod
    async def link_phone_to_seller(self, seller_id: str, phone: str) -> Seller:
        """Attach ``phone`` to the seller, detaching it from anyone else who had it."""

    @abstractmethod
    async def find_conversation(self, phone: str) -> Optional[Conversation]:
        ...

    @abstractmethod
    async def create_conversation(self, phone: str) -> Conversation:
        ...

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        ...

    @abstractmethod
    async def save_conversation(self, conversation: Conversation) -> Conversation:
        """Persist the row if its version is unchanged; bumps ``conversation.version`` on success."""

    @abstractmethod
    async def revoke_other_sessions(self, seller_id: str, keep_conversation_id: str) -> int:
        """De-authorize every other conversation of the seller; returns how many were revoked."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryIdentityStore(IdentityStore):
    """Process-local store for development and tests. Rows are copied in and out like a real DB."""

    def __init__(self) -> None:
        self.sellers: Dict[str, Dict[str, Any]] = {}
        self.conversations: Dict[str, Dict[str, Any]] = {}

    def add_seller(self, email: str, phone: Optional[str] = None, name: Optional[str] = None,
                   paypal_email: Optional[str] = None) -> Seller:
        seller = Seller(
            id=str(uuid.uuid4()),
            email=email,
            phone=normalize_phone(phone) if phone else None,
            name=name,
            paypal_email=paypal_email,
        )
        self.sellers[seller.id] = seller.to_record()
        return seller

    async def find_seller_by_phone(self, phone: str) -> Optional[Seller]:
        variants = set(phone_variants(phone))
        for rec in self.sellers.values():
            if rec.get("phone") and rec["phone"] in variants:
                return Seller.from_record(copy.deepcopy(rec))
        return None

    async def find_seller_by_email(self, email: str) -> Optional[Seller]:
        for rec in self.sellers.values():
            seller = Seller.from_record(copy.deepcopy(rec))
            if seller.matches_email(email):
                return seller
        return None

    async def get_seller(self, seller_id: str) -> Optional[Seller]:
        rec = self.sellers.get(seller_id)
        return Seller.from_record(copy.deepcopy(rec)) if rec else None

    async def create_seller(self, email: str, phone: Optional[str] = None, name: Optional[str] = None) -> Seller:
        return self.add_seller(normalize_email(email), phone=phone, name=name)

    async def link_phone_to_seller(self, seller_id: str, phone: str) -> Seller:
        normalized = normalize_phone(phone)
        variants = set(phone_variants(phone))
        for sid, rec in self.sellers.items():
            if sid != seller_id and rec.get("phone") in variants:
                rec["phone"] = None
        rec = self.sellers[seller_id]
        rec["phone"] = normalized
        return Seller.from_record(copy.deepcopy(rec))

    async def find_conversation(self, phone: str) -> Optional[Conversation]:
        for rec in self.conversations.values():
            if rec.get("phone_number") == phone:
                return Conversation.from_record(copy.deepcopy(rec))
        return None

    async def create_conversation(self, phone: str) -> Conversation:
        existing = await self.find_conversation(phone)
        if existing:
            return existing
        conversation = Conversation(phone=phone)
        self.conversations[conversation.id] = conversation.to_record()
        return conversation

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        rec = self.conversations.get(conversation_id)
        return Conversation.from_record(copy.deepcopy(rec)) if rec else None

    async def save_conversation(self, conversation: Conversation) -> Conversation:
        stored = self.conversations.get(conversation.id)
        stored_version = int(stored.get("version") or 0) if stored else 0
        if stored is not None and stored_version != conversation.version:
            raise ConcurrentUpdateError(
                f"conversation {conversation.id} is at version {stored_version}, not {conversation.version}"
            )
        conversation.version += 1
        conversation.updated_at = _utcnow()
        self.conversations[conversation.id] = copy.deepcopy(conversation.to_record())
        return conversation

    async def revoke_other_sessions(self, seller_id: str, keep_conversation_id: str) -> int:
        revoked = 0
        for cid, rec in self.conversations.items():
            if cid == keep_conversation_id or rec.get("seller_id") != seller_id or not rec.get("is_authorized"):
                continue
            rec["is_authorized"] = False
            rec["version"] = int(rec.get("version") or 0) + 1
            revoked += 1
        return revoked


class SupabaseIdentityStore(IdentityStore):
    """``sellers`` and ``sms_conversations`` tables through PostgREST."""

    SELLERS = "sellers"
    CONVERSATIONS = "sms_conversations"

    def __init__(self, rest: SupabaseRest):
        self.rest = rest

    async def find_seller_by_phone(self, phone: str) -> Optional[Seller]:
        variants = phone_variants(phone)
        if not variants:
            return None
        rec = await self.rest.select_one(self.SELLERS, {"phone": in_filter(variants)})
        return Seller.from_record(rec) if rec else None

    async def find_seller_by_email(self, email: str) -> Optional[Seller]:
        candidate = normalize_email(email)
        rows = await self.rest.select(self.SELLERS, {
            "or": f'(email.ilike."{candidate}",paypal_email.ilike."{candidate}")',
            "limit": 5,
        })
        # ilike treats "_" as a wildcard, so confirm the match exactly
        for rec in rows:
            seller = Seller.from_record(rec)
            if seller.matches_email(candidate):
                return seller
        return None

    async def get_seller(self, seller_id: str) -> Optional[Seller]:
        rec = await self.rest.select_one(self.SELLERS, {"id": f"eq.{seller_id}"})
        return Seller.from_record(rec) if rec else None

    async def create_seller(self, email: str, phone: Optional[str] = None, name: Optional[str] = None) -> Seller:
        seller = Seller(
            id=str(uuid.uuid4()),
            email=normalize_email(email),
            phone=normalize_phone(phone) if phone else None,
            name=name,
        )
        rec = await self.rest.insert(self.SELLERS, seller.to_record())
        logger.info(f"✅ Seller created: {seller.id}")
        return Seller.from_record(rec)

    async def link_phone_to_seller(self, seller_id: str, phone: str) -> Seller:
        variants = phone_variants(phone)
        if variants:
            await self.rest.update(
                self.SELLERS,
                {"phone": in_filter(variants), "id": f"neq.{seller_id}"},
                {"phone": None},
            )
        rows = await self.rest.update(self.SELLERS, {"id": f"eq.{seller_id}"}, {"phone": normalize_phone(phone)})
        if not rows:
            raise LookupError(f"seller {seller_id} not found")
        return Seller.from_record(rows[0])

    async def find_conversation(self, phone: str) -> Optional[Conversation]:
        rec = await self.rest.select_one(self.CONVERSATIONS, {"phone_number": f"eq.{phone}"})
        return Conversation.from_record(rec) if rec else None

    async def create_conversation(self, phone: str) -> Conversation:
        conversation = Conversation(phone=phone)
        try:
            rec = await self.rest.insert(self.CONVERSATIONS, conversation.to_record())
        except Exception as e:
            # two first messages racing: the unique phone_number constraint picks a winner
            existing = await self.find_conversation(phone)
            if existing:
                logger.info(f"ℹ️ Conversation for phone already created concurrently: {existing.id}")
                return existing
            raise e
        return Conversation.from_record(rec)

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        rec = await self.rest.select_one(self.CONVERSATIONS, {"id": f"eq.{conversation_id}"})
        return Conversation.from_record(rec) if rec else None

    async def save_conversation(self, conversation: Conversation) -> Conversation:
        expected = conversation.version
        payload = conversation.to_record()
        payload["version"] = expected + 1
        payload["updated_at"] = _utcnow().isoformat()
        payload.pop("created_at", None)
        rows = await self.rest.update(
            self.CONVERSATIONS,
            {"id": f"eq.{conversation.id}", "version": f"eq.{expected}"},
            payload,
        )
        if not rows:
            raise ConcurrentUpdateError(f"conversation {conversation.id} changed since version {expected}")
        conversation.version = expected + 1
        conversation.updated_at = _utcnow()
        return conversation

    async def revoke_other_sessions(self, seller_id: str, keep_conversation_id: str) -> int:
        rows: List[Dict[str, Any]] = await self.rest.select(self.CONVERSATIONS, {
            "seller_id": f"eq.{seller_id}",
            "id": f"neq.{keep_conversation_id}",
            "is_authorized": "is.true",
        })
        revoked = 0
        for rec in rows:
            # the row may be mid-write by its own phone; re-read and retry a few times
            for _ in range(3):
                version = int(rec.get("version") or 0)
                updated = await self.rest.update(
                    self.CONVERSATIONS,
                    {"id": f"eq.{rec['id']}", "version": f"eq.{version}"},
                    {"is_authorized": False, "version": version + 1, "updated_at": _utcnow().isoformat()},
                )
                if updated:
                    revoked += 1
                    break
                fresh = await self.rest.select_one(self.CONVERSATIONS, {"id": f"eq.{rec['id']}"})
                if not fresh or not fresh.get("is_authorized"):
                    break
                rec = fresh
            else:
                logger.warning(f"⚠️ Could not revoke session {rec['id']}: row kept changing")
        return revoked
