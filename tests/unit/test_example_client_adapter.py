"""Tests for ExampleClientAdapter (template/reference adapter)."""

import json

from docinsight.analysis.example_client_adapter import ExampleClientAdapter
from docinsight.analysis.validator import build_compliance_result, build_semantic_result


async def _complete(
    adapter: ExampleClientAdapter,
    schema_name: str,
    *,
    model: str = "any",
    user_prompt: str = "user",
    image_bytes: bytes | None = None,
) -> str:
    return await adapter.create_chat_completion(
        model=model,
        temperature=0.0,
        system_prompt="sys",
        user_prompt=user_prompt,
        schema_name=schema_name,
        json_schema={"type": "object"},
        image_bytes=image_bytes,
    )


class TestExampleClientAdapter:
    async def test_semantic_response_passes_validation(self) -> None:
        raw = await _complete(ExampleClientAdapter(), "semantic_analysis")
        result = build_semantic_result(json.loads(raw), "semantic")
        assert result.summary
        assert result.confidence == 0.5

    async def test_compliance_response_passes_validation(self) -> None:
        raw = await _complete(ExampleClientAdapter(), "compliance_analysis")
        result = build_compliance_result(json.loads(raw), "compliance")
        assert [v.language for v in result.language_variants] == ["en", "ar"]

    async def test_unknown_schema_returns_empty_object(self) -> None:
        raw = await _complete(ExampleClientAdapter(), "other")
        assert json.loads(raw) == {}

    async def test_ignores_input_parameters(self) -> None:
        adapter = ExampleClientAdapter()
        r1 = await _complete(adapter, "semantic_analysis", model="a", user_prompt="u1")
        r2 = await _complete(adapter, "semantic_analysis", model="b", image_bytes=b"img")
        assert r1 == r2
