"""
Hand-off of a finished draft to the catalog for human review.

The draft id is sent as the idempotency key so a retried submission can never
create a second catalog entry.
"""
from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from conversation_state import Seller
from utils.error_handling import SubmissionError
from utils.logging_config import PerformanceLogger, logger
from utils.retry import NO_RETRY, RetryPolicy


class CatalogSubmitter(ABC):
    @abstractmethod
    async def submit(
        self,
        draft_fields: Dict[str, Any],
        photo_refs: List[str],
        draft_id: str,
        seller: Seller,
    ) -> str:
        """Create the catalog entry and return its id; raises SubmissionError."""


def build_catalog_payload(
    draft_fields: Dict[str, Any], photo_refs: List[str], draft_id: str, seller: Seller
) -> Dict[str, Any]:
    title = " ".join(str(v) for v in (draft_fields.get("designer"), draft_fields.get("item_type")) if v)
    return {
        "external_id": draft_id,
        "title": title or "Untitled listing",
        "designer": draft_fields.get("designer"),
        "item_type": draft_fields.get("item_type"),
        "size": draft_fields.get("size"),
        "condition": draft_fields.get("condition"),
        "asking_price": draft_fields.get("asking_price"),
        "pieces_included": draft_fields.get("pieces_included"),
        "description": draft_fields.get("details"),
        "color": draft_fields.get("color"),
        "material": draft_fields.get("material"),
        "reference_link": draft_fields.get("reference_link"),
        "images": list(photo_refs),
        "seller": {"id": seller.id, "email": seller.email, "name": seller.name},
        "status": "pending_review",
    }


class HttpCatalogSubmitter(CatalogSubmitter):
    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        retry: RetryPolicy = NO_RETRY,
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.retry = retry
        self.timeout = timeout
        self.transport = transport

    async def _post(self, payload: Dict[str, Any], draft_id: str) -> str:
        headers = {"Content-Type": "application/json", "Idempotency-Key": draft_id}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            resp = await client.post(f"{self.base_url}/listings", json=payload, headers=headers)
        if not resp.is_success:
            raise SubmissionError(f"catalog returned {resp.status_code}: {resp.text[:200]}")
        try:
            data = resp.json() if resp.content else {}
        except ValueError as e:
            raise SubmissionError(f"catalog returned a non-JSON body: {resp.text[:200]}") from e
        catalog_id = (data or {}).get("id") if isinstance(data, dict) else None
        if not catalog_id:
            raise SubmissionError("catalog response had no id")
        return str(catalog_id)

    async def submit(
        self,
        draft_fields: Dict[str, Any],
        photo_refs: List[str],
        draft_id: str,
        seller: Seller,
    ) -> str:
        payload = build_catalog_payload(draft_fields, photo_refs, draft_id, seller)
        with PerformanceLogger(logger, "catalog_submit", draft_id=draft_id):
            try:
                catalog_id = await self.retry.run(
                    lambda: self._post(payload, draft_id),
                    operation="catalog_submit",
                    retry_on=(httpx.ConnectError,),
                )
            except SubmissionError:
                raise
            except httpx.HTTPError as e:
                raise SubmissionError(f"catalog unreachable: {e}") from e
        logger.info(f"✅ Draft {draft_id} submitted to catalog as {catalog_id}")
        return catalog_id


class InMemoryCatalogSubmitter(CatalogSubmitter):
    """Accepts everything; used for local runs without a catalog endpoint."""

    def __init__(self) -> None:
        self.entries: Dict[str, Dict[str, Any]] = {}
        self._by_draft: Dict[str, str] = {}

    async def submit(
        self,
        draft_fields: Dict[str, Any],
        photo_refs: List[str],
        draft_id: str,
        seller: Seller,
    ) -> str:
        existing: Optional[str] = self._by_draft.get(draft_id)
        if existing:
            return existing
        catalog_id = f"cat_{uuid.uuid4().hex[:12]}"
        self.entries[catalog_id] = build_catalog_payload(draft_fields, photo_refs, draft_id, seller)
        self._by_draft[draft_id] = catalog_id
        logger.info(f"📦 Draft {draft_id} stored in local catalog as {catalog_id}")
        return catalog_id
