"""Persist and load JSON settings profiles for the CLI."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict

from cardvalue.config.settings import ValuationSettings


@dataclass
class SettingsProfile:
    overrides: Dict[str, Any] = field(default_factory=dict)
    db_path: str | None = None

    @classmethod
    def load(cls, path: Path) -> "SettingsProfile":
        data = json.loads(path.read_text(encoding="utf-8"))
        return cls(
            overrides=data.get("overrides", {}),
            db_path=data.get("db_path"),
        )

    @classmethod
    def from_settings(cls, settings: ValuationSettings, *, db_path: str | None = None) -> "SettingsProfile":
        return cls(overrides=asdict(settings), db_path=db_path)

    def apply(self, settings: ValuationSettings) -> ValuationSettings:
        return settings.with_overrides(self.overrides)

    def save(self, path: Path) -> None:
        payload = {
            "overrides": self.overrides,
            "db_path": self.db_path,
        }
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
