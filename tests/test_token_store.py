import json

import httpx
import pytest

from auth.token_store import (
    FileTokenStore,
    MemoryTokenStore,
    SupabaseTokenStore,
    TokenStoreError,
)
from gateway_helpers import make_record


@pytest.mark.asyncio
async def test_memory_store_saves_row() -> None:
    store = MemoryTokenStore()

    await store.save(make_record(), "state-1")

    assert len(store.rows) == 1
    assert store.rows[0]["access_token"] == "access-1"
    assert store.rows[0]["state"] == "state-1"


@pytest.mark.asyncio
async def test_file_store_appends_rows(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    store = FileTokenStore(path)

    await store.save(make_record(), "state-1")
    await store.save(make_record(access_token="access-2", refresh_token="refresh-2"))

    rows = json.loads(path.read_text(encoding="utf-8"))
    assert [row["access_token"] for row in rows] == ["access-1", "access-2"]
    assert rows[0]["state"] == "state-1"
    assert rows[1]["state"] is None


@pytest.mark.asyncio
async def test_file_store_persists(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    await FileTokenStore(path).save(make_record())

    second_store = FileTokenStore(path)
    await second_store.save(make_record(access_token="access-2"))

    assert len(json.loads(path.read_text(encoding="utf-8"))) == 2


@pytest.mark.asyncio
async def test_file_store_rejects_corrupt_file(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    path.write_text("{}", encoding="utf-8")

    with pytest.raises(RuntimeError, match="expected top-level JSON array"):
        await FileTokenStore(path).save(make_record())


@pytest.mark.asyncio
async def test_file_store_leaves_no_temp_files(tmp_path) -> None:
    path = tmp_path / "nested" / "tokens.json"

    await FileTokenStore(path).save(make_record())

    assert [p.name for p in path.parent.iterdir()] == ["tokens.json"]


@pytest.mark.asyncio
async def test_supabase_store_inserts_row(httpx_mock) -> None:
    httpx_mock.add_response(
        url="https://project.supabase.co/rest/v1/schwab_tokens",
        method="POST",
        status_code=201,
    )
    store = SupabaseTokenStore("https://project.supabase.co/", "service-key")

    await store.save(make_record(), "state-1")

    request = httpx_mock.get_request()
    assert request.headers["apikey"] == "service-key"
    assert request.headers["Authorization"] == "Bearer service-key"
    rows = json.loads(request.content)
    assert rows[0]["refresh_token"] == "refresh-1"
    assert rows[0]["state"] == "state-1"


@pytest.mark.asyncio
async def test_supabase_store_raises_on_error_status(httpx_mock) -> None:
    httpx_mock.add_response(
        url="https://project.supabase.co/rest/v1/schwab_tokens",
        method="POST",
        status_code=401,
        json={"message": "Invalid API key"},
    )
    store = SupabaseTokenStore("https://project.supabase.co", "bad-key")

    with pytest.raises(RuntimeError, match="Supabase insert failed with status 401"):
        await store.save(make_record())


@pytest.mark.asyncio
async def test_supabase_store_uses_custom_table() -> None:
    seen: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(201, request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        store = SupabaseTokenStore(
            "https://project.supabase.co", "key", table="broker_tokens", client=client
        )
        await store.save(make_record())

    assert seen == ["/rest/v1/broker_tokens"]


@pytest.mark.asyncio
async def test_supabase_error_keeps_row_values_out_of_message(httpx_mock) -> None:
    httpx_mock.add_response(
        url="https://project.supabase.co/rest/v1/schwab_tokens",
        method="POST",
        status_code=409,
        json={
            "code": "23505",
            "message": "duplicate key value violates unique constraint",
            "details": "Key (access_token)=(access-1) already exists.",
        },
    )
    store = SupabaseTokenStore("https://project.supabase.co", "service-key")

    with pytest.raises(TokenStoreError) as excinfo:
        await store.save(make_record(), "state-1")

    assert excinfo.value.status_code == 409
    assert "code=23505" in str(excinfo.value)
    assert "access-1" not in str(excinfo.value)
