"""Stage catalog resolution and production detection.

Order statuses and job stages come from two independent catalogs. Historical
rows hold values that predate the catalog records (display names, accented
spellings, numeric ids), so every lookup goes through the lenient resolver
below instead of comparing raw strings at call sites.
"""

from __future__ import annotations

import logging
import unicodedata
from typing import Iterable, Protocol, Sequence

logger = logging.getLogger(__name__)

_PRODUCTION_KEYWORDS: tuple[str, ...] = ("produ", "progress")
_LEGACY_NUMERIC_PRODUCTION_MIN = 2


class StageLike(Protocol):
    id: str
    name: str


def normalize_stage_key(value: object) -> str:
    """Lower-case, strip diacritics and surrounding whitespace."""
    text = unicodedata.normalize("NFD", str(value or "")).lower()
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return text.strip()


def find_stage(stages: Iterable[StageLike], raw: object) -> StageLike | None:
    """Exact id match first, then exact name match. No fallback."""
    key = normalize_stage_key(raw)
    if not key:
        return None
    stage_list = list(stages)
    for stage in stage_list:
        if normalize_stage_key(stage.id) == key:
            return stage
    for stage in stage_list:
        if normalize_stage_key(stage.name) == key:
            return stage
    return None


def resolve_stage_id(stages: Sequence[StageLike], raw: object) -> str:
    """Resolve a stored value to a catalog stage id; never fails.

    Unknown values land in the first stage of the catalog. With an empty
    catalog the normalized raw value is returned unchanged.
    """
    stage = find_stage(stages, raw)
    if stage is not None:
        return str(stage.id)
    if stages:
        logger.warning(f"Unknown stage value {raw!r}, falling back to {stages[0].id!r}")
        return str(stages[0].id)
    return normalize_stage_key(raw)


def resolve_kanban_stage(kanban_stages: Sequence[StageLike], raw_status: object) -> str:
    return resolve_stage_id(kanban_stages, raw_status)


def resolve_production_stage(production_stages: Sequence[StageLike], raw_stage_id: object) -> str:
    return resolve_stage_id(production_stages, raw_stage_id)


def stage_display_name(stages: Iterable[StageLike], raw: object) -> str | None:
    stage = find_stage(stages, raw)
    return str(stage.name) if stage is not None else None


def is_production_status(
    status: object,
    kanban_stages: Iterable[StageLike],
    *,
    production_status_ids: Iterable[str],
    legacy_numeric: bool = False,
) -> bool:
    """Decide whether an order in ``status`` belongs on the production floor.

    Priority: configured production ids, then the catalog flag
    ``triggers_production`` of a known stage, then the legacy keyword rule for
    values the catalog does not know.
    """
    key = normalize_stage_key(status)
    if not key:
        return False

    if key in {normalize_stage_key(v) for v in production_status_ids}:
        return True

    stage = find_stage(kanban_stages, key)
    if stage is not None:
        return bool(getattr(stage, "triggers_production", False))

    if key.isdigit():
        return legacy_numeric and int(key) >= _LEGACY_NUMERIC_PRODUCTION_MIN

    return any(word in key for word in _PRODUCTION_KEYWORDS)


def slugify_stage_id(name: str) -> str:
    """Stage ids are derived from the display name: ``Em Produção`` -> ``em_producao``."""
    key = normalize_stage_key(name)
    key = "_".join(key.split())
    return "".join(ch for ch in key if (ch.isascii() and ch.isalnum()) or ch == "_")
