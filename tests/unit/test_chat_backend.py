"""Tests for the chat-completion analysis backends."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from docinsight.analysis.compliance_backend import ComplianceBackend
from docinsight.analysis.exceptions import AnalysisResponseError, AnalysisValidationError
from docinsight.analysis.semantic_backend import SemanticBackend
from docinsight.capture.models import DocumentType
from docinsight.remote.exceptions import RemoteConnectivityLost, RemoteTransientFailure


def _valid_semantic_response() -> str:
    return json.dumps({
        "summary": "One value is high.",
        "insights": ["Glucose above range"],
        "actions": [{"title": "Retest", "description": "Fasting", "priority": "medium"}],
        "confidence": 0.9,
    })


def _make_client(*responses: object) -> MagicMock:
    client = MagicMock()
    client.create_chat_completion = AsyncMock(side_effect=list(responses))
    return client


def _make_semantic(client: MagicMock, temperature: float = 0.0) -> SemanticBackend:
    return SemanticBackend(
        backend_id="semantic",
        client=client,
        model="test-model",
        temperature=temperature,
        max_retries=2,
        retry_base_delay_seconds=0.0,
    )


async def _analyze(backend: SemanticBackend | ComplianceBackend, text: str = "text") -> object:
    return await backend.analyze(None, text, ["en"], DocumentType.LAB_REPORT)


class TestSemanticBackend:
    async def test_returns_analysis_result(self) -> None:
        backend = _make_semantic(_make_client(_valid_semantic_response()))

        result = await backend.analyze(None, "Glucose 210", ["en"], DocumentType.LAB_REPORT)

        assert result.source_backend_id == "semantic"
        assert result.summary == "One value is high."
        assert result.action_items[0].title == "Retest"

    async def test_prompt_carries_type_focus_and_text(self) -> None:
        client = _make_client(_valid_semantic_response())
        backend = _make_semantic(client)

        await backend.analyze(None, "Glucose 210", ["en", "ar"], DocumentType.LAB_REPORT)

        kwargs = client.create_chat_completion.await_args.kwargs
        assert "lab report" in kwargs["user_prompt"]
        assert "abnormal values" in kwargs["user_prompt"]
        assert "Glucose 210" in kwargs["user_prompt"]
        assert "en, ar" in kwargs["user_prompt"]
        assert kwargs["schema_name"] == "semantic_analysis"
        assert kwargs["image_bytes"] is None

    async def test_temperature_is_capped(self) -> None:
        client = _make_client(_valid_semantic_response())
        backend = _make_semantic(client, temperature=0.9)

        await _analyze(backend)

        assert client.create_chat_completion.await_args.kwargs["temperature"] == 0.2

    async def test_strips_code_fences(self) -> None:
        fenced = f"```json\n{_valid_semantic_response()}\n```"
        backend = _make_semantic(_make_client(fenced))

        result = await backend.analyze(None, "t", [], DocumentType.GENERIC)

        assert result.summary == "One value is high."

    async def test_invalid_json_raises(self) -> None:
        backend = _make_semantic(_make_client("not json"))
        with pytest.raises(AnalysisResponseError, match="Invalid JSON"):
            await _analyze(backend)

    async def test_non_object_json_raises(self) -> None:
        backend = _make_semantic(_make_client("[1, 2]"))
        with pytest.raises(AnalysisResponseError, match="must be an object"):
            await _analyze(backend)

    async def test_validation_error_propagates(self) -> None:
        backend = _make_semantic(_make_client(json.dumps({"summary": "x"})))
        with pytest.raises(AnalysisValidationError):
            await _analyze(backend)

    async def test_retries_transient_failure(self) -> None:
        client = _make_client(RemoteTransientFailure("503"), _valid_semantic_response())
        backend = _make_semantic(client)

        result = await _analyze(backend)

        assert client.create_chat_completion.await_count == 2
        assert result.summary == "One value is high."  # type: ignore[attr-defined]

    async def test_connectivity_loss_surfaces_immediately(self) -> None:
        client = _make_client(RemoteConnectivityLost("down"), _valid_semantic_response())
        backend = _make_semantic(client)

        with pytest.raises(RemoteConnectivityLost):
            await _analyze(backend)

        assert client.create_chat_completion.await_count == 1


class TestComplianceBackend:
    async def test_builds_bilingual_result(self) -> None:
        response = json.dumps({
            "summary_en": "Complete.",
            "summary_ar": "مكتمل.",
            "compliance_checks": [
                {"rule": "units", "status": "passed", "severity": "low", "details": ""}
            ],
            "risk_flags": [],
            "confidence": 0.6,
        })
        client = _make_client(response)
        backend = ComplianceBackend(backend_id="compliance", client=client, model="m")

        result = await _analyze(backend)

        assert result.source_backend_id == "compliance"  # type: ignore[attr-defined]
        assert len(result.compliance_flags) == 1  # type: ignore[attr-defined]
        kwargs = client.create_chat_completion.await_args.kwargs
        assert kwargs["schema_name"] == "compliance_analysis"
        assert "unit and a reference range" in kwargs["user_prompt"]
