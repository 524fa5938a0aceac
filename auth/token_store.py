from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

import httpx

from auth.models import TokenRecord

logger = logging.getLogger(__name__)

DEFAULT_TOKENS_TABLE = "schwab_tokens"


class TokenStoreError(RuntimeError):
    """Store failure whose message never includes row contents."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TokenStore(ABC):
    """Durable sink for token material obtained from a grant."""

    @abstractmethod
    async def save(self, record: TokenRecord, state: str | None = None) -> None:
        raise NotImplementedError


class MemoryTokenStore(TokenStore):
    def __init__(self) -> None:
        self.rows: list[dict] = []

    async def save(self, record: TokenRecord, state: str | None = None) -> None:
        self.rows.append(record.to_row(state))


class FileTokenStore(TokenStore):
    def __init__(self, path: str | Path = ".schwab_tokens.json") -> None:
        self._path = Path(path)

    async def save(self, record: TokenRecord, state: str | None = None) -> None:
        rows = self._read_all()
        rows.append(record.to_row(state))
        self._write_all(rows)

    def _read_all(self) -> list[dict]:
        if not self._path.exists():
            return []

        raw = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(raw, list):
            raise TokenStoreError("Token store file is invalid; expected top-level JSON array.")
        return raw

    def _write_all(self, rows: list[dict]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        tmp_path = Path(tmp_name)

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(rows, handle, indent=2, sort_keys=True)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()


class SupabaseTokenStore(TokenStore):
    """Inserts token rows through Supabase's PostgREST endpoint."""

    def __init__(
        self,
        url: str,
        service_role_key: str,
        *,
        table: str = DEFAULT_TOKENS_TABLE,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.endpoint = f"{url.rstrip('/')}/rest/v1/{table}"
        self._service_role_key = service_role_key
        self.timeout = timeout
        self._client = client

    async def save(self, record: TokenRecord, state: str | None = None) -> None:
        own_client = self._client is None
        http_client = self._client or httpx.AsyncClient(timeout=self.timeout)

        try:
            response = await http_client.post(
                self.endpoint,
                json=[record.to_row(state)],
                headers={
                    "apikey": self._service_role_key,
                    "Authorization": f"Bearer {self._service_role_key}",
                    "Prefer": "return=minimal",
                },
            )
        finally:
            if own_client:
                await http_client.aclose()

        if not response.is_success:
            # PostgREST error details echo the offending row values.
            raise TokenStoreError(
                f"Supabase insert failed with status {response.status_code} "
                f"code={_postgrest_code(response)}",
                status_code=response.status_code,
            )
        logger.info(
            "Schwab tokens stored in Supabase has_refresh_token=%s",
            record.refresh_token is not None,
        )


def _postgrest_code(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return "-"
    code = body.get("code") if isinstance(body, dict) else None
    return code if isinstance(code, str) else "-"
