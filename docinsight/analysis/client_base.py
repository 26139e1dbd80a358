from abc import ABC, abstractmethod


class BaseAnalysisClient(ABC):
    """Contract for provider-specific chat clients used by analysis backends."""

    @abstractmethod
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
        """Return provider response as plain text.

        Raises:
            RemoteFailure: classified into transient, connectivity or terminal.
        """
