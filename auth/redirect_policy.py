from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass


def resolve_redirect_uri(requested: str | None, allowed: Iterable[str], default: str) -> str:
    # Exact string match only: no prefix, case, slash or query normalization.
    if requested and requested in allowed:
        return requested
    return default


@dataclass(frozen=True)
class RedirectAllowList:
    uris: frozenset[str]
    default: str
    allow_any: bool = False

    def __post_init__(self) -> None:
        if not self.default:
            raise ValueError("A default redirect URI is required.")
        if self.default not in self.uris:
            object.__setattr__(self, "uris", frozenset(self.uris) | {self.default})

    def resolve(self, requested: str | None) -> str:
        if self.allow_any and requested:
            return requested
        return resolve_redirect_uri(requested, self.uris, self.default)
