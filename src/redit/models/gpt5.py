"""Production GPT-5 planner client that speaks the Responses API."""

from __future__ import annotations

import json
import os
from typing import Any, Callable, Dict, Optional

from .llm_client import LLMClient, LLMResponseFormatError, LLMTransportError

__all__ = ["GPT5Client"]


Transport = Callable[[Dict[str, Any]], str]


class GPT5Client(LLMClient):
    """Thin adapter around the GPT-5 Responses API returning plain text."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = "https://api.openai.com/v1/responses",
        model: str = "gpt-5-mini",
        transport: Optional[Transport] = None,
        timeout: float = 120.0,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        super().__init__(model=model, max_attempts=max_attempts, retry_delay=retry_delay)
        self._api_key = api_key or os.getenv("OPENAI_API_KEY")
        self._base_url = base_url
        timeout_override = os.getenv("REDIT_MODEL_TIMEOUT")
        if timeout_override:
            try:
                parsed = float(timeout_override)
                if parsed > 0:
                    timeout = parsed
            except ValueError:
                pass
        self._timeout = timeout
        self._transport = transport or self._http_transport

        if transport is None and not self._api_key:
            raise ValueError("An API key is required when using the default transport.")

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Send the request over the configured transport."""
        try:
            raw_response = self._transport(payload)
        except LLMTransportError:
            raise
        except Exception as error:  # pragma: no cover - defensive path
            raise LLMTransportError(f"Transport rejected the request: {error}") from error

        text = self._extract_output_text(raw_response)
        if text is None:
            raise LLMResponseFormatError("GPT-5 response did not contain output text.")
        return text

    def _http_transport(self, payload: Dict[str, Any]) -> str:
        """Default HTTP transport that targets the OpenAI Responses API."""
        import urllib.error
        import urllib.request

        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            self._base_url,
            data=data,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
                "X-OpenAI-Client": "redit/0.1",
            },
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read()
                status = getattr(response, "status", 200)
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError("GPT-5 response timed out.") from error
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            message = error.read().decode("utf-8", errors="ignore")
            raise LLMTransportError(f"HTTP {error.code}: {message}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Failed to reach GPT-5 endpoint: {error.reason}") from error

        if status >= 400:
            raise LLMTransportError(f"Unexpected HTTP status {status}")

        return raw.decode("utf-8")

    def _extract_output_text(self, raw_response: str) -> Optional[str]:
        """Concatenate the assistant text returned by the Responses API."""
        if not raw_response:
            return None

        try:
            data = json.loads(raw_response)
        except json.JSONDecodeError:
            return raw_response

        if not isinstance(data, dict):
            return raw_response

        output_text = data.get("output_text")
        if isinstance(output_text, str) and output_text.strip():
            return output_text

        for key in ("output", "choices"):
            text = self._collect_text(data.get(key))
            if text:
                return text

        response_container = data.get("response")
        if isinstance(response_container, dict):
            text = self._collect_text(response_container.get("output"))
            if text:
                return text

        return None

    @staticmethod
    def _collect_text(container: Any) -> Optional[str]:
        """Join text fragments of message entries, skipping reasoning items."""
        if not container:
            return None
        if isinstance(container, dict):
            container = [container]

        fragments: list[str] = []
        for item in container:
            if not isinstance(item, dict) or item.get("type") == "reasoning":
                continue

            contents = item.get("content")
            if isinstance(contents, list):
                for content_item in contents:
                    if not isinstance(content_item, dict):
                        continue
                    text = content_item.get("text")
                    if isinstance(text, str) and text:
                        fragments.append(text)
                continue

            # Chat-completions shaped payloads.
            message = item.get("message")
            if isinstance(message, dict):
                text = message.get("content")
                if isinstance(text, str) and text:
                    fragments.append(text)

        joined = "".join(fragments)
        return joined if joined.strip() else None
