"""Unit tests for the configuration module."""

import pytest
from pydantic import ValidationError

from napoleon_ai.config import Settings, get_settings


def _make_settings(**overrides) -> Settings:
    """Create a Settings instance isolated from any real .env file."""
    defaults = {"_env_file": None}
    defaults.update(overrides)
    return Settings(**defaults)


class TestDefaults:
    """Tests for settings defaults."""

    def test_analysis_backend_default_is_heuristic(self, monkeypatch):
        """Test that no model backend is used unless configured."""
        monkeypatch.delenv("ANALYSIS_BACKEND", raising=False)
        settings = _make_settings()
        assert settings.analysis_backend == "heuristic"

    def test_batch_defaults(self, monkeypatch):
        """Test the batch and rate limit defaults."""
        for name in ("BATCH_CHUNK_SIZE", "RATE_LIMIT_MAX_MESSAGES", "RATE_LIMIT_WINDOW_SECONDS"):
            monkeypatch.delenv(name, raising=False)
        settings = _make_settings()
        assert settings.batch_chunk_size == 3
        assert settings.rate_limit_max_messages == 100
        assert settings.rate_limit_window_seconds == 3600.0

    def test_urgent_threshold_default(self, monkeypatch):
        """Test that the urgent threshold defaults to 80."""
        monkeypatch.delenv("URGENT_THRESHOLD", raising=False)
        assert _make_settings().urgent_threshold == 80

    def test_postgres_dsn_optional(self, monkeypatch):
        """Test that persistence is optional."""
        monkeypatch.delenv("POSTGRES_DSN", raising=False)
        assert _make_settings().postgres_dsn is None


class TestAnalysisBackend:
    """Tests for the analysis_backend validator."""

    @pytest.mark.parametrize("backend", ["heuristic", "ollama", "openai"])
    def test_known_backends_accepted(self, backend):
        """Test that every supported backend is accepted."""
        assert _make_settings(analysis_backend=backend).analysis_backend == backend

    def test_backend_is_normalized(self):
        """Test that the backend name is lower-cased and stripped."""
        assert _make_settings(analysis_backend="  OpenAI ").analysis_backend == "openai"

    def test_unknown_backend_rejected(self):
        """Test that an unknown backend raises ValidationError."""
        with pytest.raises(ValidationError):
            _make_settings(analysis_backend="gemini")


class TestRanges:
    """Tests for numeric range constraints."""

    def test_urgent_threshold_above_100_rejected(self):
        """Test that thresholds above 100 are rejected."""
        with pytest.raises(ValidationError):
            _make_settings(urgent_threshold=101)

    def test_non_positive_timeout_rejected(self):
        """Test that a zero upstream timeout is rejected."""
        with pytest.raises(ValidationError):
            _make_settings(upstream_timeout_seconds=0)

    def test_tiny_summary_length_rejected(self):
        """Test that summaries cannot be bounded below 40 characters."""
        with pytest.raises(ValidationError):
            _make_settings(summary_max_length=10)


class TestDerivedProperties:
    """Tests for computed settings properties."""

    def test_ollama_url(self):
        """Test the composed Ollama URL."""
        settings = _make_settings(ollama_host="localhost", ollama_port=11500)
        assert settings.ollama_url == "http://localhost:11500"

    def test_is_development(self):
        """Test development detection is case-insensitive."""
        assert _make_settings(environment="Development").is_development is True
        assert _make_settings(environment="production").is_development is False

    def test_log_file_paths(self):
        """Test log file paths live under the log directory."""
        settings = _make_settings(log_directory="/var/log/napoleon")
        assert settings.log_file_path == "/var/log/napoleon/napoleon_ai.log"
        assert settings.error_log_file_path == "/var/log/napoleon/napoleon_ai_error.log"

    def test_openai_key_is_secret(self):
        """Test that the OpenAI key is not exposed in repr."""
        settings = _make_settings(openai_api_key="sk-test-123")
        assert "sk-test-123" not in repr(settings)
        assert settings.openai_api_key.get_secret_value() == "sk-test-123"


class TestGetSettings:
    """Tests for the cached settings accessor."""

    def test_get_settings_is_cached(self):
        """Test that get_settings returns the same instance."""
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
