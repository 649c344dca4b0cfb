from __future__ import annotations

import pytest

from studio_bot_kernel.actions.stages import Stage, StageCatalog
from studio_bot_kernel.config import EngineConfig
from studio_bot_kernel.errors import ErrorCategory, UserInputError
from tests.studio_bot_kernel._draft_testkit import build_catalog


def test_alias_beats_name_match() -> None:
    catalog = StageCatalog(
        stages=(Stage(key="LEAD", name="Lead"), Stage(key="QUALIFIED", name="Qualified")),
        aliases={"Lead": "QUALIFIED"},
    )
    assert catalog.resolve("Lead").key == "QUALIFIED"


def test_name_match_is_case_insensitive() -> None:
    catalog = build_catalog()
    assert catalog.resolve("  proposal sent ").key == "PROPOSAL"
    assert catalog.resolve("WON").name == "Won"


def test_alias_is_exact() -> None:
    catalog = build_catalog()
    assert catalog.resolve("offer").key == "PROPOSAL"
    with pytest.raises(UserInputError):
        catalog.resolve("Offer")


def test_unknown_label_is_user_input_error() -> None:
    with pytest.raises(UserInputError) as exc_info:
        build_catalog().resolve("Closed Lost")
    err = exc_info.value
    assert err.category is ErrorCategory.USER_INPUT
    assert err.code == "stage_not_found"
    assert err.retryable is False
    assert "Lead" in err.details["known"]


def test_from_raw_accepts_json_and_pairs() -> None:
    catalog = StageCatalog.from_raw(
        '[{"key": "A", "name": "Alpha"}, {"id": "B", "label": "Beta"}]',
        '{"a": "A"}',
    )
    assert catalog.resolve("a").name == "Alpha"
    assert catalog.resolve("beta").key == "B"

    pairs = StageCatalog.from_raw([["X", "Ex"]], None)
    assert pairs.stages == (Stage(key="X", name="Ex"),)

    with pytest.raises(ValueError):
        StageCatalog.from_raw([{"key": "X"}])


def test_settings_overrides_replace_bindings_and_catalog() -> None:
    config = EngineConfig(crm_account_id="env-crm")
    merged = config.with_overrides(
        {
            "crm.connected_account_id": "db-crm",
            "linear.team_id": "  ",
            "crm.stages": [{"key": "W", "name": "Won"}],
            "crm.stage_aliases": {"won": "W"},
        }
    )
    assert merged.crm_account_id == "db-crm"
    assert merged.tracker_team_id is None
    assert merged.stage_catalog.resolve("won").key == "W"
    assert config.with_overrides({}) is config
