"""Tests for environment-driven configuration."""

import pytest

from kgraph.config import (
    DEFAULT_BUSY_TIMEOUT_MS,
    DEFAULT_CHECKPOINT_TRIGGERS,
    DEFAULT_DOC_FILES,
    load_config,
)


class TestLoadConfig:
    def test_defaults(self):
        config = load_config({})
        assert config.busy_timeout_ms == DEFAULT_BUSY_TIMEOUT_MS
        assert config.checkpoint_triggers == DEFAULT_CHECKPOINT_TRIGGERS
        assert config.doc_files == DEFAULT_DOC_FILES
        assert config.capture_docs_on_read is False
        assert config.log_level == "INFO"

    def test_overrides(self):
        config = load_config(
            {
                "KGRAPH_BUSY_TIMEOUT_MS": "250",
                "KGRAPH_CHECKPOINT_TRIGGERS": "git commit, make release ,",
                "KGRAPH_DOC_FILES": "DESIGN.md",
                "KGRAPH_CAPTURE_ON_READ": "yes",
                "KGRAPH_LOG_LEVEL": "debug",
            }
        )
        assert config.busy_timeout_ms == 250
        assert config.checkpoint_triggers == ("git commit", "make release")
        assert config.doc_files == ("DESIGN.md",)
        assert config.capture_docs_on_read is True
        assert config.log_level == "DEBUG"

    def test_blank_list_falls_back(self):
        assert load_config({"KGRAPH_CHECKPOINT_TRIGGERS": " , "}).checkpoint_triggers == DEFAULT_CHECKPOINT_TRIGGERS

    @pytest.mark.parametrize("value", ["soon", "-1", "1.5"])
    def test_bad_timeout(self, value):
        with pytest.raises(ValueError, match="KGRAPH_BUSY_TIMEOUT_MS"):
            load_config({"KGRAPH_BUSY_TIMEOUT_MS": value})
