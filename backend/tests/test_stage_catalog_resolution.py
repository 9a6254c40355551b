from __future__ import annotations

from types import SimpleNamespace

import pytest

from labflow.services.stage_catalog import (
    find_stage,
    is_production_status,
    normalize_stage_key,
    resolve_kanban_stage,
    resolve_production_stage,
    slugify_stage_id,
    stage_display_name,
)

PRODUCTION_IDS = ["in_progress", "em producao"]


def _stage(stage_id: str, name: str, *, triggers_production: bool = False) -> SimpleNamespace:
    return SimpleNamespace(id=stage_id, name=name, triggers_production=triggers_production)


KANBAN = [
    _stage("pending", "Pendente"),
    _stage("in_progress", "Em Produção", triggers_production=True),
    _stage("acabamento", "Acabamento", triggers_production=True),
    _stage("completed", "Concluído"),
]

PRODUCTION = [
    _stage("iniciado", "Iniciado"),
    _stage("modelos", "Modelos"),
    _stage("desenho", "Desenho"),
]


def test_normalize_strips_diacritics_case_and_whitespace() -> None:
    assert normalize_stage_key("  Em Produção ") == "em producao"
    assert normalize_stage_key(None) == ""
    assert normalize_stage_key(3) == "3"


def test_find_stage_prefers_id_over_name() -> None:
    stages = [_stage("a", "b"), _stage("b", "other")]
    assert find_stage(stages, "B").id == "b"
    assert find_stage(stages, "OTHER").id == "b"
    assert find_stage(stages, "missing") is None
    assert find_stage(stages, "") is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("in_progress", "in_progress"),
        ("EM PRODUÇÃO", "in_progress"),
        ("concluido", "completed"),
        ("archived", "pending"),
        (None, "pending"),
    ],
)
def test_resolve_kanban_stage_matches_id_then_name_then_first(raw, expected: str) -> None:
    assert resolve_kanban_stage(KANBAN, raw) == expected


def test_resolve_production_stage_falls_back_to_first_column() -> None:
    assert resolve_production_stage(PRODUCTION, "Desenho") == "desenho"
    assert resolve_production_stage(PRODUCTION, "gesso") == "iniciado"


def test_resolve_with_empty_catalog_returns_normalized_value() -> None:
    assert resolve_production_stage([], " Modelos ") == "modelos"


def test_stage_display_name_is_none_for_unknown_values() -> None:
    assert stage_display_name(KANBAN, "in_progress") == "Em Produção"
    assert stage_display_name(KANBAN, "ghost") is None


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        ("in_progress", True),
        ("Em Produção", True),
        ("acabamento", True),
        ("pending", False),
        ("completed", False),
        ("", False),
        (None, False),
    ],
)
def test_production_detection_uses_configured_ids_and_catalog_flag(status, expected: bool) -> None:
    assert is_production_status(status, KANBAN, production_status_ids=PRODUCTION_IDS) is expected


def test_unknown_statuses_fall_back_to_keyword_rule() -> None:
    assert is_production_status("producao_externa", KANBAN, production_status_ids=[]) is True
    assert is_production_status("work in progress", KANBAN, production_status_ids=[]) is True
    assert is_production_status("waiting", KANBAN, production_status_ids=[]) is False


def test_catalog_flag_beats_keyword_for_known_stage() -> None:
    stages = [_stage("pre_producao", "Pré-produção", triggers_production=False)]
    assert is_production_status("pre_producao", stages, production_status_ids=[]) is False


def test_numeric_status_heuristic_is_opt_in() -> None:
    assert is_production_status("3", KANBAN, production_status_ids=PRODUCTION_IDS) is False
    assert is_production_status("3", KANBAN, production_status_ids=PRODUCTION_IDS, legacy_numeric=True) is True
    assert is_production_status("1", KANBAN, production_status_ids=PRODUCTION_IDS, legacy_numeric=True) is False


def test_slugify_stage_id() -> None:
    assert slugify_stage_id("Em Produção") == "em_producao"
    assert slugify_stage_id("  Prova   de Cera! ") == "prova_de_cera"
