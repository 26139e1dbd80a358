"""Tests for AnalysisBackendFactory."""

from unittest.mock import patch

import pytest

from docinsight.analysis.compliance_backend import ComplianceBackend
from docinsight.analysis.factory import (
    COMPLIANCE_BACKEND_ID,
    SEMANTIC_BACKEND_ID,
    AnalysisBackendFactory,
)
from docinsight.analysis.semantic_backend import SemanticBackend
from docinsight.capture.models import DocumentType
from docinsight.config.settings import Settings


class TestAnalysisBackendFactory:
    async def test_example_provider_needs_no_network(self) -> None:
        settings = Settings(semantic_provider="example", compliance_provider="example")

        backends = AnalysisBackendFactory.create_all(settings)

        assert [b.backend_id for b in backends] == [SEMANTIC_BACKEND_ID, COMPLIANCE_BACKEND_ID]
        assert isinstance(backends[0], SemanticBackend)
        assert isinstance(backends[1], ComplianceBackend)
        result = await backends[0].analyze(None, "text", ["en"], DocumentType.GENERIC)
        assert result.source_backend_id == SEMANTIC_BACKEND_ID

    def test_uses_backend_settings(self) -> None:
        settings = Settings(
            semantic_provider="openai",
            semantic_api_key="sem-key",
            semantic_timeout_seconds=42,
            compliance_provider="example",
        )
        with patch("docinsight.analysis.factory.OpenAIClientAdapter") as mock_adapter:
            AnalysisBackendFactory.create_all(settings)
        mock_adapter.assert_called_once_with(
            api_key="sem-key",
            timeout_seconds=42,
            base_url=None,
            service="semantic backend",
        )

    def test_uses_provider_default_base_url_for_gemini(self) -> None:
        settings = Settings(
            semantic_provider="example",
            compliance_provider="gemini",
            compliance_api_key="g",
        )
        with patch("docinsight.analysis.factory.OpenAIClientAdapter") as mock_adapter:
            AnalysisBackendFactory.create_all(settings)
        assert mock_adapter.call_args.kwargs["base_url"] == (
            "https://generativelanguage.googleapis.com/v1beta/openai/"
        )

    def test_configured_base_url_overrides_default(self) -> None:
        settings = Settings(
            semantic_provider="openrouter",
            semantic_base_url="https://proxy.test/v1",
            compliance_provider="example",
        )
        with patch("docinsight.analysis.factory.OpenAIClientAdapter") as mock_adapter:
            AnalysisBackendFactory.create_all(settings)
        assert mock_adapter.call_args.kwargs["base_url"] == "https://proxy.test/v1"

    def test_openai_compatible_requires_base_url(self) -> None:
        settings = Settings(semantic_provider="openai_compatible", compliance_provider="example")
        with pytest.raises(ValueError, match="semantic_base_url"):
            AnalysisBackendFactory.create_all(settings)

    def test_unknown_provider_raises_value_error(self) -> None:
        settings = Settings(semantic_provider="example", compliance_provider="unknown")
        with pytest.raises(ValueError, match="Unknown compliance provider"):
            AnalysisBackendFactory.create_all(settings)
