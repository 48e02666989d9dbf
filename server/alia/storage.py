"""
Record storage — Supabase REST (PostgREST) tables, with an in-process fallback
used when Supabase is not configured.

Records are plain dicts keyed by column name. Timestamps are ISO-8601 strings
in UTC so they compare the same way in both backends.
"""
from __future__ import annotations

import copy
import logging
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

import httpx

logger = logging.getLogger("alia.storage")


class StorageError(Exception):
    """The backing store could not complete the operation."""


@dataclass(frozen=True)
class Op:
    """A non-equality filter, e.g. ``{"createdAt": gte(cutoff)}``."""

    operator: str
    value: Any


def gte(value: Any) -> Op:
    return Op("gte", value)


def lte(value: Any) -> Op:
    return Op("lte", value)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RecordStore(ABC):
    """Async table interface keyed by a single column."""

    def __init__(self, table: str, key: str = "id"):
        self.table = table
        self.key = key

    @abstractmethod
    async def create(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def update(self, key: Any, data: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def delete(self, key: Any) -> bool:
        """Remove one row. Returns False when nothing matched."""

    @abstractmethod
    async def find_many(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        search: Optional[str] = None,
        search_columns: Iterable[str] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def count(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        search: Optional[str] = None,
        search_columns: Iterable[str] = (),
    ) -> int:
        ...

    async def find_unique(self, key: Any) -> Optional[Dict[str, Any]]:
        return await self.find_first({self.key: key})

    async def find_first(self, filters: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        rows = await self.find_many(filters, limit=1)
        return rows[0] if rows else None


def _matches(record: Mapping[str, Any], column: str, condition: Any) -> bool:
    value = record.get(column)
    if isinstance(condition, Op):
        if value is None:
            return False
        if condition.operator == "gte":
            return value >= condition.value
        if condition.operator == "lte":
            return value <= condition.value
        raise ValueError(f"Unsupported operator {condition.operator!r}")
    if isinstance(condition, (list, tuple, set, frozenset)):
        return value in condition
    return value == condition


class MemoryStore(RecordStore):
    """In-process table. Returns copies so callers cannot mutate stored rows."""

    def __init__(self, table: str, key: str = "id"):
        super().__init__(table, key)
        self._rows: Dict[Any, Dict[str, Any]] = {}

    async def create(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        row = copy.deepcopy(dict(data))
        row.setdefault(self.key, str(uuid.uuid4()))
        row.setdefault("createdAt", utcnow_iso())
        if row[self.key] in self._rows:
            raise StorageError(f"Duplicate {self.key} in {self.table}")
        self._rows[row[self.key]] = row
        return copy.deepcopy(row)

    async def update(self, key: Any, data: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        row = self._rows.get(key)
        if row is None:
            return None
        row.update(copy.deepcopy(dict(data)))
        row["updatedAt"] = utcnow_iso()
        return copy.deepcopy(row)

    async def delete(self, key: Any) -> bool:
        return self._rows.pop(key, None) is not None

    async def find_many(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        search: Optional[str] = None,
        search_columns: Iterable[str] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        rows = self._select(filters, search, search_columns)
        if order_by:
            present = [r for r in rows if r.get(order_by) is not None]
            missing = [r for r in rows if r.get(order_by) is None]
            present.sort(key=lambda r: r[order_by], reverse=descending)
            rows = present + missing
        end = None if limit is None else offset + limit
        return [copy.deepcopy(r) for r in rows[offset:end]]

    async def count(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        search: Optional[str] = None,
        search_columns: Iterable[str] = (),
    ) -> int:
        return len(self._select(filters, search, search_columns))

    def _select(self, filters, search, search_columns) -> List[Dict[str, Any]]:
        rows = list(self._rows.values())
        for column, condition in (filters or {}).items():
            rows = [r for r in rows if _matches(r, column, condition)]
        if search:
            needle = search.lower()
            columns = list(search_columns)
            rows = [
                r for r in rows
                if any(needle in str(r.get(c) or "").lower() for c in columns)
            ]
        return rows


def _pg_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def _pg_condition(condition: Any) -> str:
    if isinstance(condition, Op):
        return f"{condition.operator}.{_pg_value(condition.value)}"
    if isinstance(condition, (list, tuple, set, frozenset)):
        return "in.(" + ",".join(_pg_value(v) for v in condition) + ")"
    if condition is None:
        return "is.null"
    return f"eq.{_pg_value(condition)}"


class SupabaseStore(RecordStore):
    """One Supabase table reached through the PostgREST endpoint."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        supabase_url: str,
        service_key: str,
        table: str,
        key: str = "id",
    ):
        super().__init__(table, key)
        self._client = client
        self._url = f"{supabase_url.rstrip('/')}/rest/v1/{table}"
        self._headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }

    def _params(
        self,
        filters: Optional[Mapping[str, Any]],
        search: Optional[str] = None,
        search_columns: Iterable[str] = (),
    ) -> Dict[str, str]:
        params = {column: _pg_condition(cond) for column, cond in (filters or {}).items()}
        columns = list(search_columns)
        if search and columns:
            # PostgREST reserves these inside or=(...)
            term = re.sub(r"[,()*]", " ", search)
            params["or"] = "(" + ",".join(f"{c}.ilike.*{term}*" for c in columns) + ")"
        return params

    async def _request(self, method: str, *, params=None, json=None, headers=None) -> httpx.Response:
        try:
            resp = await self._client.request(
                method,
                self._url,
                params=params,
                json=json,
                headers={**self._headers, **(headers or {})},
            )
        except httpx.HTTPError as e:
            logger.error("Supabase %s %s failed: %s", method, self.table, type(e).__name__)
            raise StorageError(f"Supabase request to {self.table} failed") from e
        if resp.status_code >= 400:
            logger.error("Supabase %s %s returned %d: %s", method, self.table, resp.status_code, resp.text[:200])
            raise StorageError(f"Supabase returned {resp.status_code} for {self.table}")
        return resp

    async def create(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        resp = await self._request(
            "POST",
            json=dict(data),
            headers={"Prefer": "return=representation"},
        )
        rows = resp.json()
        return rows[0] if rows else dict(data)

    async def update(self, key: Any, data: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        resp = await self._request(
            "PATCH",
            params=self._params({self.key: key}),
            json=dict(data),
            headers={"Prefer": "return=representation"},
        )
        rows = resp.json()
        return rows[0] if rows else None

    async def delete(self, key: Any) -> bool:
        resp = await self._request(
            "DELETE",
            params=self._params({self.key: key}),
            headers={"Prefer": "return=representation"},
        )
        return bool(resp.json())

    async def find_many(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        search: Optional[str] = None,
        search_columns: Iterable[str] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        params = {"select": "*", **self._params(filters, search, search_columns)}
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        if limit is not None:
            params["limit"] = str(limit)
        if offset:
            params["offset"] = str(offset)
        resp = await self._request("GET", params=params)
        return resp.json()

    async def count(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        search: Optional[str] = None,
        search_columns: Iterable[str] = (),
    ) -> int:
        params = {"select": self.key, "limit": "1", **self._params(filters, search, search_columns)}
        resp = await self._request("GET", params=params, headers={"Prefer": "count=exact"})
        content_range = resp.headers.get("content-range", "")
        total = content_range.rsplit("/", 1)[-1]
        return int(total) if total.isdigit() else len(resp.json())


class StoreFactory:
    """Builds one store per table against Supabase, or in memory when it is not configured."""

    def __init__(self, supabase_url: str = "", service_key: str = "", timeout: float = 15.0):
        self._supabase_url = supabase_url
        self._service_key = service_key
        self._client: Optional[httpx.AsyncClient] = None
        if supabase_url and service_key:
            self._client = httpx.AsyncClient(timeout=timeout)
            logger.info("Storage backend: Supabase")
        else:
            logger.warning("Supabase not configured — using in-memory storage")

    @classmethod
    def from_settings(cls, settings) -> "StoreFactory":
        return cls(settings.supabase_url, settings.supabase_service_key)

    def table(self, name: str, key: str = "id") -> RecordStore:
        if self._client is None:
            return MemoryStore(name, key)
        return SupabaseStore(self._client, self._supabase_url, self._service_key, name, key)

    async def shutdown(self):
        if self._client:
            await self._client.aclose()
            logger.info("Storage client shut down")
