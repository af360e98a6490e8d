"""Tests for the settings table, YAML seeding and required-key loading."""

from __future__ import annotations

import pytest

from devlog.config import DATA_DIR, REQUIRED_INSTRUCTION_KEYS
from devlog.errors import ConfigurationError
from devlog.storage.settings_store import SQLiteSettingsStore, load_required


def test_get_missing_key_returns_none(db):
    assert SQLiteSettingsStore(db).get_by_key("agents/repoAnalyzer") is None


def test_set_then_get_and_overwrite(db):
    store = SQLiteSettingsStore(db)
    store.set_by_key("agents/repoAnalyzer", "v1")
    store.set_by_key("agents/repoAnalyzer", "v2")
    assert store.get_by_key("agents/repoAnalyzer") == "v2"


def test_seed_from_yaml_keeps_existing_values(db, tmp_path):
    seed = tmp_path / "seed.yaml"
    seed.write_text("a: from seed\nb: |\n  multi\n  line\n")
    store = SQLiteSettingsStore(db)
    store.set_by_key("a", "custom")

    written = store.seed_from_yaml(seed)

    assert written == 1
    assert store.get_by_key("a") == "custom"
    assert store.get_by_key("b") == "multi\nline"


def test_seed_overwrite(db, tmp_path):
    seed = tmp_path / "seed.yaml"
    seed.write_text("a: from seed\n")
    store = SQLiteSettingsStore(db)
    store.set_by_key("a", "custom")

    assert store.seed_from_yaml(seed, overwrite=True) == 1
    assert store.get_by_key("a") == "from seed"


def test_seed_rejects_non_mapping(db, tmp_path):
    seed = tmp_path / "seed.yaml"
    seed.write_text("- just\n- a list\n")
    with pytest.raises(ConfigurationError):
        SQLiteSettingsStore(db).seed_from_yaml(seed)


def test_bundled_seed_has_every_required_key(db):
    store = SQLiteSettingsStore(db)
    store.seed_from_yaml(DATA_DIR / "instructions.yaml")
    assert set(load_required(store, REQUIRED_INSTRUCTION_KEYS)) == set(REQUIRED_INSTRUCTION_KEYS)


def test_load_required_names_missing_key(settings_store):
    settings_store.set_by_key("agents/globalAnalysis", "")

    with pytest.raises(ConfigurationError) as exc_info:
        load_required(settings_store, REQUIRED_INSTRUCTION_KEYS)

    assert exc_info.value.key == "agents/globalAnalysis"
    assert "Missing settings: agents/globalAnalysis" in str(exc_info.value)
