"""
Tests for runtime configuration and archetype presets.
"""
import json

import pytest
import yaml

from npc_affect.config import (
    PRESETS,
    RuntimeConfig,
    get_preset,
    list_presets,
)
from npc_affect.errors import ConfigError


class TestRuntimeConfig:
    """Test RuntimeConfig loading and overrides."""

    def test_default_values(self):
        config = RuntimeConfig()
        assert config.significance_threshold == 50
        assert config.decay_rate_per_hour == 0.1
        assert config.rapid_fire_max_actions == 20
        assert config.stage_timeout_s == 30.0
        assert config.catalog_path is None

    def test_from_dict_ignores_unknown_keys(self):
        config = RuntimeConfig.from_dict({"significance_threshold": 40, "llm_model": "x"})
        assert config.significance_threshold == 40

    def test_load_yaml(self, tmp_path, monkeypatch):
        monkeypatch.delenv("NPC_AFFECT_DECAY_RATE_PER_HOUR", raising=False)
        path = tmp_path / "runtime.yaml"
        path.write_text(yaml.safe_dump({"decay_rate_per_hour": 0.25, "identical_window": 8}))

        config = RuntimeConfig.load(str(path))
        assert config.decay_rate_per_hour == 0.25
        assert config.identical_window == 8

    def test_load_json_with_env_override(self, tmp_path, monkeypatch):
        path = tmp_path / "runtime.json"
        path.write_text(json.dumps({"stage_timeout_s": 5}))
        monkeypatch.setenv("NPC_AFFECT_STAGE_TIMEOUT_S", "2.5")

        assert RuntimeConfig.load(str(path)).stage_timeout_s == 2.5

    def test_load_errors(self, tmp_path):
        with pytest.raises(ConfigError):
            RuntimeConfig.load(str(tmp_path / "missing.yaml"))

        bad = tmp_path / "bad.json"
        bad.write_text("{not json")
        with pytest.raises(ConfigError):
            RuntimeConfig.load(str(bad))

        listed = tmp_path / "list.yaml"
        listed.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigError):
            RuntimeConfig.load(str(listed))

    def test_env_overrides_coerce_types(self):
        config = RuntimeConfig().with_env_overrides({
            "NPC_AFFECT_SIGNIFICANCE_THRESHOLD": "60",
            "NPC_AFFECT_SUCCESS_RATE_MAX": "0.9",
            "NPC_AFFECT_SNAPSHOT_DIR": "/tmp/npc",
        })
        assert config.significance_threshold == 60
        assert config.success_rate_max == 0.9
        assert config.snapshot_dir == "/tmp/npc"

    def test_bad_env_value(self):
        with pytest.raises(ConfigError):
            RuntimeConfig().with_env_overrides({"NPC_AFFECT_RETENTION_MS": "a week"})


class TestPresets:

    def test_list_presets(self):
        presets = list_presets()
        for name in ("warrior", "merchant", "scholar", "trickster", "guardian", "balanced"):
            assert name in presets

    def test_get_preset_is_case_insensitive(self):
        assert get_preset("Warrior") is PRESETS["warrior"]

    def test_unknown_preset_falls_back(self):
        assert get_preset("dragon").name == "balanced"
        assert get_preset(None).name == "balanced"

    def test_preset_to_dict(self):
        data = PRESETS["guardian"].to_dict()
        assert data["base_state"]["trust"] == 80
        assert data["personality"]["loyal"] == 95
