"""
RuleCatalog — read-only view over the remotely supplied settings rows.

Each row is `{name, type, value}`. Global switches use the GENERIC type;
per-product date offsets use the vaccine product code as `type`, e.g.

    {"name": "vaccine_end_day_complete", "type": "EU/1/20/1528", "value": "180"}

Values are strings on the wire; typed accessors parse them and fall back to
the given default when a row is missing or unparseable. Refreshing the
catalog (remote settings bootstrap) swaps the whole table at once.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import structlog
from pydantic import BaseModel, TypeAdapter

log = structlog.get_logger()

GENERIC = "GENERIC"

DRL_SYNC_ACTIVE = "DRL_SYNC_ACTIVE"
DRL_MAX_RETRIES = "MAX_RETRY"
BLACK_LIST_UVCI = "black_list_uvci"
HOME_COUNTRY = "home_country"


@dataclass(frozen=True, slots=True)
class Setting:
    name: str
    type: str
    value: str


class _SettingRow(BaseModel):
    name: str
    type: str = GENERIC
    value: str | int | bool | float

    def to_domain(self) -> Setting:
        value = self.value
        if isinstance(value, bool):
            value = "true" if value else "false"
        return Setting(name=self.name, type=self.type, value=str(value))


_ROWS = TypeAdapter(list[_SettingRow])


class RuleCatalog:
    """Settings lookups used by the sync controller and the validation engine."""

    def __init__(self, settings: Iterable[Setting] = (), home_country: str = "IT") -> None:
        self._lock = threading.Lock()
        self._default_home_country = home_country
        self._rows: tuple[Setting, ...] = tuple(settings)

    @classmethod
    def from_json(cls, payload: str | bytes, home_country: str = "IT") -> RuleCatalog:
        rows = _ROWS.validate_json(payload)
        return cls((row.to_domain() for row in rows), home_country=home_country)

    @classmethod
    def from_file(cls, path: Path, home_country: str = "IT") -> RuleCatalog:
        catalog = cls.from_json(path.read_bytes(), home_country=home_country)
        log.info("catalog.loaded", path=str(path), rows=len(catalog))
        return catalog

    def replace(self, settings: Iterable[Setting]) -> None:
        rows = tuple(settings)
        with self._lock:
            self._rows = rows

    def __len__(self) -> int:
        return len(self._rows)

    # ─────────────────────── Lookups ───────────────────────

    def get(self, name: str, type: str | None = None) -> str | None:
        """First value named `name`; restricted to rows of `type` when given."""
        for row in self._rows:
            if row.name == name and (type is None or row.type == type):
                return row.value
        return None

    def get_int(self, name: str, type: str | None = None, default: int | None = None) -> int | None:
        raw = self.get(name, type)
        if raw is None:
            return default
        try:
            return int(raw.strip())
        except ValueError:
            log.warning("catalog.not_an_integer", name=name, type=type, value=raw)
            return default

    def get_bool(self, name: str, default: bool) -> bool:
        raw = self.get(name)
        if raw is None:
            return default
        return raw.strip().lower() in ("true", "1", "yes")

    def types_for(self, name: str) -> frozenset[str]:
        """All `type` values configured for `name` (e.g. known vaccine products)."""
        return frozenset(row.type for row in self._rows if row.name == name)

    # ─────────────────────── Well-known settings ───────────────────────

    @property
    def sync_enabled(self) -> bool:
        return self.get_bool(DRL_SYNC_ACTIVE, default=True)

    @property
    def max_retries(self) -> int:
        value = self.get_int(DRL_MAX_RETRIES, default=1)
        return 1 if value is None else value

    @property
    def blacklist(self) -> frozenset[str]:
        raw = self.get(BLACK_LIST_UVCI)
        if not raw:
            return frozenset()
        return frozenset(item.strip() for item in raw.split(";") if item.strip())

    @property
    def home_country(self) -> str:
        return (self.get(HOME_COUNTRY) or self._default_home_country).upper()
