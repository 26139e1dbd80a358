import asyncio
import base64

import openai

from docinsight.analysis.client_base import BaseAnalysisClient
from docinsight.analysis.exceptions import AnalysisResponseError
from docinsight.remote.exceptions import (
    RemoteConnectivityLost,
    RemoteTerminalFailure,
    RemoteTransientFailure,
)
from docinsight.remote.retry import classify_status


class OpenAIClientAdapter(BaseAnalysisClient):
    """Analysis client built on the OpenAI-compatible chat API."""

    def __init__(
        self,
        *,
        api_key: str,
        timeout_seconds: int,
        base_url: str | None = None,
        service: str = "analysis backend",
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._service = service
        self._client = openai.AsyncOpenAI(
            api_key=api_key,
            timeout=timeout_seconds,
            base_url=base_url,
            max_retries=0,
        )

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
        user_content: list[dict[str, object]] = [{"type": "text", "text": user_prompt}]
        if image_bytes:
            encoded = base64.b64encode(image_bytes).decode("ascii")
            user_content.append(
                {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{encoded}"}}
            )
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=model,
                    temperature=temperature,
                    response_format={
                        "type": "json_schema",
                        "json_schema": {
                            "name": schema_name,
                            "strict": True,
                            "schema": json_schema,
                        },
                    },
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_content},
                    ],
                ),
                timeout=self._timeout_seconds,
            )
        except (asyncio.TimeoutError, openai.APITimeoutError) as exc:
            raise RemoteTransientFailure(f"{self._service} timed out") from exc
        except openai.APIConnectionError as exc:
            raise RemoteConnectivityLost(f"{self._service} unreachable: {exc}") from exc
        except openai.APIStatusError as exc:
            raise classify_status(exc.status_code, str(exc), self._service) from exc
        except openai.APIError as exc:
            raise RemoteTerminalFailure(f"{self._service} API error: {exc}") from exc

        if not response.choices:
            raise AnalysisResponseError(f"{self._service} returned no choices")
        content = response.choices[0].message.content
        if content is None:
            raise AnalysisResponseError(f"{self._service} returned empty response")
        return content
