"""Tests for the record stores."""
import json

import httpx
import pytest

from alia.storage import MemoryStore, StorageError, StoreFactory, SupabaseStore, gte


class TestMemoryStore:

    async def test_create_assigns_key_and_timestamp(self):
        store = MemoryStore("users")
        row = await store.create({"email": "dana@example.com"})
        assert row["id"]
        assert row["createdAt"]
        assert await store.find_unique(row["id"]) == row

    async def test_duplicate_key_rejected(self):
        store = MemoryStore("users")
        await store.create({"id": "1"})
        with pytest.raises(StorageError):
            await store.create({"id": "1"})

    async def test_returned_rows_are_copies(self):
        store = MemoryStore("users")
        row = await store.create({"id": "1", "tags": ["a"]})
        row["tags"].append("b")
        fetched = await store.find_unique("1")
        fetched["email"] = "changed"
        assert await store.find_unique("1") == {"id": "1", "tags": ["a"], "createdAt": row["createdAt"]}

    async def test_update_missing_returns_none(self):
        assert await MemoryStore("users").update("nope", {"a": 1}) is None

    async def test_delete(self):
        store = MemoryStore("users")
        await store.create({"id": "1"})
        assert await store.delete("1") is True
        assert await store.find_unique("1") is None
        assert await store.delete("1") is False

    async def test_filters_search_order_and_paging(self):
        store = MemoryStore("articles")
        for i, title in enumerate(["Aliá hoy", "Noticias de Haifa", "Aliá en Jerusalén"]):
            await store.create({"id": str(i), "title": title, "publishedAt": f"2025-01-0{i + 1}", "isActive": True})
        await store.create({"id": "x", "title": "Aliá oculta", "publishedAt": "2025-02-01", "isActive": False})

        rows = await store.find_many(
            {"isActive": True},
            search="aliá",
            search_columns=("title",),
            order_by="publishedAt",
            descending=True,
        )
        assert [r["id"] for r in rows] == ["2", "0"]

        page = await store.find_many({"isActive": True}, order_by="publishedAt", limit=1, offset=1)
        assert [r["id"] for r in page] == ["1"]

        assert await store.count({"id": ["0", "x"]}) == 2
        assert await store.count({"publishedAt": gte("2025-01-02")}) == 3
        assert await store.count(search="haifa", search_columns=("title",)) == 1


def _supabase(handler) -> SupabaseStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SupabaseStore(client, "https://db.example.supabase.co/", "service-key", "users")


class TestSupabaseStore:

    async def test_create_posts_with_representation(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json=[{"id": "1", "email": "dana@example.com"}])

        row = await _supabase(handler).create({"email": "dana@example.com"})

        assert row == {"id": "1", "email": "dana@example.com"}
        assert seen["method"] == "POST"
        assert seen["url"] == "https://db.example.supabase.co/rest/v1/users"
        assert seen["headers"]["apikey"] == "service-key"
        assert seen["headers"]["authorization"] == "Bearer service-key"
        assert seen["headers"]["prefer"] == "return=representation"
        assert seen["body"] == {"email": "dana@example.com"}

    async def test_find_many_builds_postgrest_query(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=[])

        await _supabase(handler).find_many(
            {"isActive": True, "sourceId": ["a", "b"], "createdAt": gte("2025-01-01")},
            search="aliá",
            search_columns=("title", "summary"),
            order_by="publishedAt",
            descending=True,
            limit=20,
            offset=40,
        )

        params = seen["params"]
        assert params["select"] == "*"
        assert params["isActive"] == "eq.true"
        assert params["sourceId"] == "in.(a,b)"
        assert params["createdAt"] == "gte.2025-01-01"
        assert params["or"] == "(title.ilike.*aliá*,summary.ilike.*aliá*)"
        assert params["order"] == "publishedAt.desc"
        assert params["limit"] == "20"
        assert params["offset"] == "40"

    async def test_update_filters_on_key(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["method"] = request.method
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=[])

        assert await _supabase(handler).update("42", {"status": "ACTIVE"}) is None
        assert seen["method"] == "PATCH"
        assert seen["params"] == {"id": "eq.42"}

    async def test_delete_filters_on_key(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["method"] = request.method
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=[{"id": "42"}])

        assert await _supabase(handler).delete("42") is True
        assert seen["method"] == "DELETE"
        assert seen["params"] == {"id": "eq.42"}

    async def test_count_reads_content_range(self):
        def handler(request: httpx.Request):
            assert request.headers["prefer"] == "count=exact"
            return httpx.Response(200, json=[{"id": "1"}], headers={"Content-Range": "0-0/17"})

        assert await _supabase(handler).count({"isActive": True}) == 17

    async def test_http_error_status_raises_storage_error(self):
        def handler(request: httpx.Request):
            return httpx.Response(500, text="boom")

        with pytest.raises(StorageError):
            await _supabase(handler).find_unique("1")

    async def test_transport_error_raises_storage_error(self):
        def handler(request: httpx.Request):
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(StorageError):
            await _supabase(handler).find_many()


class TestStoreFactory:

    async def test_falls_back_to_memory_without_supabase(self):
        factory = StoreFactory()
        assert isinstance(factory.table("users"), MemoryStore)
        await factory.shutdown()

    async def test_uses_supabase_when_configured(self):
        factory = StoreFactory("https://db.example.supabase.co", "service-key")
        assert isinstance(factory.table("users"), SupabaseStore)
        await factory.shutdown()
