"""
Result objects returned across the engine's public boundary.

Nothing in the engine raises to its callers: storage and corruption problems
land in the recovery flag, domain-rule violations come back as
``OperationResult(ok=False, error=...)`` and non-fatal fixes accumulate in
``warnings``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class OperationResult:
    ok: bool
    error: str | None = None
    warnings: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, warnings: list[str] | None = None, **data: Any) -> "OperationResult":
        return cls(ok=True, warnings=list(warnings or []), data=data)

    @classmethod
    def failure(cls, error: str, warnings: list[str] | None = None, **data: Any) -> "OperationResult":
        return cls(ok=False, error=error, warnings=list(warnings or []), data=data)

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def to_dict(self) -> dict:
        out = {"ok": self.ok, "warnings": list(self.warnings)}
        if self.error is not None:
            out["error"] = self.error
        out.update(self.data)
        return out


@dataclass
class SaveResult:
    ok: bool
    warnings: list[str] = field(default_factory=list)
    snapshot_created: bool = False
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "warnings": list(self.warnings),
            "snapshot_created": self.snapshot_created,
            "error": self.error,
        }


@dataclass
class InitResult:
    ok: bool
    storage_key: str
    version_from: int | None
    version_to: int
    repaired: bool = False
    warnings: list[str] = field(default_factory=list)
    migrations: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "storage_key": self.storage_key,
            "version_from": self.version_from,
            "version_to": self.version_to,
            "repaired": self.repaired,
            "warnings": list(self.warnings),
            "migrations": list(self.migrations),
        }
