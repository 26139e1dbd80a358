from pathlib import Path
from typing import ClassVar

from docinsight.analysis.base import BaseAnalysisBackend
from docinsight.analysis.chat_backend import ChatAnalysisBackend
from docinsight.analysis.client_base import BaseAnalysisClient
from docinsight.analysis.compliance_backend import ComplianceBackend
from docinsight.analysis.example_client_adapter import ExampleClientAdapter
from docinsight.analysis.openai_client_adapter import OpenAIClientAdapter
from docinsight.analysis.semantic_backend import SemanticBackend
from docinsight.config.settings import Settings

SEMANTIC_BACKEND_ID = "semantic"
COMPLIANCE_BACKEND_ID = "compliance"


class AnalysisBackendFactory:
    """Creates the configured pair of analysis backends."""

    OPENAI_COMPATIBLE_BASE_URLS: ClassVar[dict[str, str]] = {
        "gemini": "https://generativelanguage.googleapis.com/v1beta/openai/",
        "openrouter": "https://openrouter.ai/api/v1",
        "groq": "https://api.groq.com/openai/v1",
        "together": "https://api.together.xyz/v1",
        "deepseek": "https://api.deepseek.com/v1",
        "ollama": "http://localhost:11434/v1",
    }

    @classmethod
    def create_all(
        cls, settings: Settings, prompt_dir: Path | None = None
    ) -> list[BaseAnalysisBackend]:
        """Create both backends; order is the fan-out order."""
        return [
            cls._create(
                SemanticBackend,
                SEMANTIC_BACKEND_ID,
                provider=settings.semantic_provider,
                model=settings.semantic_model_name,
                api_key=settings.semantic_api_key,
                base_url=settings.semantic_base_url,
                timeout_seconds=settings.semantic_timeout_seconds,
                settings=settings,
                prompt_dir=prompt_dir,
            ),
            cls._create(
                ComplianceBackend,
                COMPLIANCE_BACKEND_ID,
                provider=settings.compliance_provider,
                model=settings.compliance_model_name,
                api_key=settings.compliance_api_key,
                base_url=settings.compliance_base_url,
                timeout_seconds=settings.compliance_timeout_seconds,
                settings=settings,
                prompt_dir=prompt_dir,
            ),
        ]

    @classmethod
    def _create(
        cls,
        backend_cls: type[ChatAnalysisBackend],
        backend_id: str,
        *,
        provider: str,
        model: str,
        api_key: str,
        base_url: str,
        timeout_seconds: int,
        settings: Settings,
        prompt_dir: Path | None,
    ) -> ChatAnalysisBackend:
        provider = provider.lower()
        client: BaseAnalysisClient
        if provider == "example":
            client = ExampleClientAdapter()
            model = "example"
        else:
            client = OpenAIClientAdapter(
                api_key=api_key,
                timeout_seconds=timeout_seconds,
                base_url=cls._resolve_base_url(provider, base_url, backend_id),
                service=f"{backend_id} backend",
            )
        return backend_cls(
            backend_id=backend_id,
            client=client,
            model=model,
            temperature=settings.analysis_temperature,
            max_retries=settings.remote_max_inline_retries,
            retry_base_delay_seconds=settings.remote_retry_base_delay_seconds,
            prompt_dir=prompt_dir,
        )

    @classmethod
    def _resolve_base_url(cls, provider: str, base_url: str, backend_id: str) -> str | None:
        if provider == "openai":
            return None
        if provider == "openai_compatible":
            url = (base_url or "").strip()
            if not url:
                raise ValueError(
                    f"{backend_id}_base_url is required for "
                    f"{backend_id}_provider=openai_compatible"
                )
            return url
        default_base_url = cls.OPENAI_COMPATIBLE_BASE_URLS.get(provider)
        if default_base_url is not None:
            return (base_url or "").strip() or default_base_url
        supported = [
            "example",
            "openai",
            "openai_compatible",
            *sorted(cls.OPENAI_COMPATIBLE_BASE_URLS),
        ]
        raise ValueError(
            f"Unknown {backend_id} provider '{provider}'. Choose from: {supported}"
        )
