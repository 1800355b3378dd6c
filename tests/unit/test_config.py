"""
Unit tests for configuration system.

Tests:
- Config loading and initialization
- Path configuration
- Config validation
- Token tracker functionality
"""

import threading

import pytest

from sopcoach.config import Config, RAGConfig, TokenTracker, config, token_tracker


class TestConfig:
    """Test suite for Config class."""

    def test_config_singleton(self):
        """Test that Config implements singleton pattern."""
        config1 = Config()
        config2 = Config()
        assert config1 is config2, "Config should be a singleton"

    def test_config_initialization(self):
        """Test that config initializes with expected values."""
        assert config.model.gemini_model
        assert config.model.openai_model
        assert config.model.temperature == 0.2
        assert config.rag.embedding_dimension == 256
        assert config.rag.top_k == 4
        assert config.rag.quiz_top_k == 5
        assert config.assessment.default_module == "General Onboarding"
        assert config.assessment.short_answer_threshold == 0.6
        assert config.assessment.pass_threshold == 70

    def test_paths_configured(self):
        """Test that all required paths are configured."""
        assert config.paths.data_dir.is_absolute()
        assert config.paths.documents_dir.parent == config.paths.data_dir

    def test_config_validation_with_valid_config(self):
        """Missing provider keys are not validation errors."""
        assert config.validate() == []

    def test_config_validation_detects_invalid_temperature(self, monkeypatch):
        monkeypatch.setattr(config.model, "temperature", 3.0)
        assert any("temperature" in err.lower() for err in config.validate())

    def test_config_validation_detects_invalid_top_k(self, monkeypatch):
        monkeypatch.setattr(config.rag, "top_k", 0)
        assert any("top_k" in err for err in config.validate())

    def test_config_validation_detects_inverted_thresholds(self, monkeypatch):
        monkeypatch.setattr(config.assessment, "intermediate_threshold", 90.0)
        assert any("intermediate_threshold" in err for err in config.validate())

    def test_config_validation_detects_negative_delay(self, monkeypatch):
        monkeypatch.setattr(config.streaming, "token_delay_seconds", -1.0)
        assert any("token_delay_seconds" in err for err in config.validate())

    def test_chunk_overlap_must_be_smaller(self):
        with pytest.raises(ValueError):
            RAGConfig(chunk_size=100, chunk_overlap=100)

    def test_prepare_fs_creates_directories(self, tmp_path, monkeypatch):
        monkeypatch.setattr(config.paths, "data_dir", tmp_path / "data")
        monkeypatch.setattr(config.paths, "documents_dir", tmp_path / "data" / "documents")
        config.prepare_fs()
        assert (tmp_path / "data" / "documents").is_dir()


class TestTokenTracker:
    """Test suite for TokenTracker class."""

    def test_token_tracker_initialization(self):
        tracker = TokenTracker()
        assert tracker.input_tokens == 0
        assert tracker.output_tokens == 0
        assert tracker.total_calls == 0
        assert tracker.calls_by_provider == {}

    def test_add_tokens_counts_per_provider(self):
        tracker = TokenTracker()
        tracker.add_tokens(input_tokens=100, output_tokens=50, provider="gemini")
        tracker.add_tokens(input_tokens=10, output_tokens=5, provider="openai")
        tracker.add_tokens(input_tokens=1, output_tokens=1, provider="gemini")

        assert tracker.input_tokens == 111
        assert tracker.output_tokens == 56
        assert tracker.total_calls == 3
        assert tracker.calls_by_provider == {"gemini": 2, "openai": 1}

    def test_summary(self, monkeypatch):
        monkeypatch.setattr(config.logging, "cost_per_1k_input", 1.0)
        monkeypatch.setattr(config.logging, "cost_per_1k_output", 2.0)
        tracker = TokenTracker()
        tracker.add_tokens(input_tokens=1234, output_tokens=500, provider="gemini")

        summary = tracker.summary()

        assert summary.startswith("1 provider call(s) [gemini=1]")
        assert "1,234 input / 500 output tokens" in summary
        assert summary.endswith("est. $2.2340")

    def test_reset(self):
        tracker = TokenTracker()
        tracker.add_tokens(input_tokens=5, output_tokens=5, provider="openai")
        tracker.reset()
        assert tracker.input_tokens == 0
        assert tracker.total_calls == 0
        assert tracker.calls_by_provider == {}

    def test_thread_safety(self):
        tracker = TokenTracker()

        def add_many():
            for _ in range(1000):
                tracker.add_tokens(input_tokens=1, output_tokens=1)

        threads = [threading.Thread(target=add_many) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert tracker.input_tokens + tracker.output_tokens == 8000
        assert tracker.calls_by_provider == {"unknown": 4000}

    def test_global_tracker_is_reset_between_tests(self):
        assert token_tracker.total_calls == 0
