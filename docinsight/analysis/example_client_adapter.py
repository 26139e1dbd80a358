"""Example analysis client adapter.

Use this module as a reference when implementing new provider adapters.
Implement BaseAnalysisClient and register the provider in AnalysisBackendFactory.
"""

import json
from typing import ClassVar

from docinsight.analysis.client_base import BaseAnalysisClient


class ExampleClientAdapter(BaseAnalysisClient):
    """Example adapter that returns a fixed valid response per schema.

    No network calls. Useful for local development and tests.
    """

    RESPONSES: ClassVar[dict[str, dict[str, object]]] = {
        "semantic_analysis": {
            "summary": "Document analysed offline by the example backend.",
            "insights": [],
            "actions": [],
            "confidence": 0.5,
        },
        "compliance_analysis": {
            "summary_en": "No compliance issues detected by the example backend.",
            "summary_ar": "لم يتم اكتشاف مشكلات امتثال.",
            "compliance_checks": [],
            "risk_flags": [],
            "confidence": 0.5,
        },
    }

    async def create_chat_completion(
        self,
        *,
        model: str,
        temperature: float,
        system_prompt: str,
        user_prompt: str,
        schema_name: str,
        json_schema: dict[str, object],
        image_bytes: bytes | None = None,
    ) -> str:
        _ = model, temperature, system_prompt, user_prompt, json_schema, image_bytes
        return json.dumps(self.RESPONSES.get(schema_name, {}), ensure_ascii=False)
