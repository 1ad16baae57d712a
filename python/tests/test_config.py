"""
Tests for interview configuration loading from an explicit environment mapping.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from avatar_interview import load_interview_config
from avatar_interview.client import API_KEY_PLACEHOLDER, DEFAULT_BASE_URL
from avatar_interview.config import STOCK_PERSONA_ID, clean_config_value


class TestCleanConfigValue:

    def test_blank_and_placeholder(self):
        assert clean_config_value(None) is None
        assert clean_config_value("   ") is None
        assert clean_config_value("your_value_here", "your_value_here") is None

    def test_strips(self):
        assert clean_config_value("  abc ") == "abc"
        assert clean_config_value("abc", "your_value_here") == "abc"


class TestLoadInterviewConfig:

    def test_empty_environment_defaults(self):
        config = load_interview_config({})

        assert config.api_key is None
        assert not config.has_api_key
        assert config.base_url == DEFAULT_BASE_URL
        assert config.replica_ids == {}
        assert config.default_persona_id == STOCK_PERSONA_ID
        assert config.frame_origin == "https://tavus.daily.co"
        assert config.interview_type is None
        assert config.advance_delay_seconds == 1.0
        assert config.apply_greenscreen is None
        assert config.host_port == 8770
        assert config.callback_url is None

    def test_full_environment(self, tmp_path: Path):
        config = load_interview_config(
            {
                "TAVUS_API_KEY": " tvs_live ",
                "TAVUS_BASE_URL": "https://provider.test",
                "TAVUS_HR_REPLICA_ID": "r-hr",
                "TAVUS_TECHNICAL_REPLICA_ID": "r-tech",
                "TAVUS_BEHAVIORAL_REPLICA_ID": "r-beh",
                "TAVUS_TECHNICAL_PERSONA_ID": "p-tech",
                "TAVUS_PERSONA_ID": "p-stock",
                "HOST_ORIGIN": "https://interview.example.com/",
                "INTERVIEW_TYPE": "Mixed",
                "ROUND_ADVANCE_DELAY_SECONDS": "0.5",
                "TAVUS_GREENSCREEN": "true",
                "HOST_BIND": "127.0.0.1",
                "HOST_PORT": "9000",
                "ARTIFACT_DIR": str(tmp_path),
            }
        )

        assert config.api_key == "tvs_live"
        assert config.base_url == "https://provider.test"
        assert config.replica_ids == {
            "screening": "r-hr",
            "technical": "r-tech",
            "behavioral": "r-beh",
        }
        assert config.persona_ids == {"technical": "p-tech"}
        assert config.default_persona_id == "p-stock"
        assert config.interview_type == "mixed"
        assert config.advance_delay_seconds == 0.5
        assert config.apply_greenscreen is True
        assert config.host_bind == "127.0.0.1"
        assert config.host_port == 9000
        assert config.artifact_dir == tmp_path
        assert config.callback_url == "https://interview.example.com/api/tavus/callback"

    def test_placeholders_mean_not_configured(self):
        config = load_interview_config(
            {
                "TAVUS_API_KEY": API_KEY_PLACEHOLDER,
                "TAVUS_HR_REPLICA_ID": "your_hr_replica_id_here",
                "TAVUS_TECHNICAL_REPLICA_ID": "r-tech",
                "TAVUS_BEHAVIORAL_REPLICA_ID": "your_behavioral_replica_id_here",
            }
        )

        assert not config.has_api_key
        assert config.replica_ids == {"technical": "r-tech"}

    @pytest.mark.parametrize(
        "name,value",
        [
            ("HOST_PORT", "eighty"),
            ("HOST_PORT", "70000"),
            ("ROUND_ADVANCE_DELAY_SECONDS", "soon"),
            ("ROUND_ADVANCE_DELAY_SECONDS", "-1"),
        ],
    )
    def test_malformed_numbers_fail_fast(self, name, value):
        with pytest.raises(RuntimeError, match=name):
            load_interview_config({name: value})

    def test_greenscreen_false(self):
        assert load_interview_config({"TAVUS_GREENSCREEN": "no"}).apply_greenscreen is False
