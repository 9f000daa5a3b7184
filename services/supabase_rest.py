"""Thin async PostgREST helper shared by the Supabase-backed stores."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from utils.logging_config import logger


class SupabaseRest:
    def __init__(self, supabase_url: str, service_key: str, timeout: float = 10.0):
        self.base_url = f"{supabase_url.rstrip('/')}/rest/v1"
        self.service_key = service_key
        self.timeout = timeout

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def select(self, table: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        query = {"select": "*", **params}
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.get(f"{self.base_url}/{table}", params=query, headers=self._headers())
        if not resp.is_success:
            logger.error(f"❌ Supabase select {table} failed: {resp.status_code} {resp.text[:200]}")
            resp.raise_for_status()
        data = resp.json()
        return data if isinstance(data, list) else []

    async def select_one(self, table: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        rows = await self.select(table, {**params, "limit": 1})
        return rows[0] if rows else None

    async def insert(self, table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                f"{self.base_url}/{table}",
                json=payload,
                headers=self._headers("return=representation"),
            )
        if not resp.is_success:
            logger.error(f"❌ Supabase insert {table} failed: {resp.status_code} {resp.text[:200]}")
            resp.raise_for_status()
        data = resp.json()
        if isinstance(data, list):
            return data[0] if data else payload
        return data or payload

    async def update(self, table: str, params: Dict[str, Any], payload: Dict[str, Any]) -> List[Dict[str, Any]]:
        """PATCH every row matching ``params``; returns the updated rows (empty when nothing matched)."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.patch(
                f"{self.base_url}/{table}",
                params=params,
                json=payload,
                headers=self._headers("return=representation"),
            )
        if not resp.is_success:
            logger.error(f"❌ Supabase update {table} failed: {resp.status_code} {resp.text[:200]}")
            resp.raise_for_status()
        data = resp.json()
        return data if isinstance(data, list) else []

    async def delete(self, table: str, params: Dict[str, Any]) -> int:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.delete(
                f"{self.base_url}/{table}",
                params=params,
                headers=self._headers("return=representation"),
            )
        if not resp.is_success:
            logger.error(f"❌ Supabase delete {table} failed: {resp.status_code} {resp.text[:200]}")
            resp.raise_for_status()
        data = resp.json()
        return len(data) if isinstance(data, list) else 0


def in_filter(values: List[str]) -> str:
    """PostgREST ``in.(...)`` filter with every value double-quoted."""
    quoted = ",".join('"' + v.replace('"', "") + '"' for v in values)
    return f"in.({quoted})"
