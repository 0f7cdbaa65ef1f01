from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List

import httpx


NO_CONTENT = "Could not extract suggestion from LLM response."


def extract_reply_text(data: Any) -> str:
    """
    OpenAI chat schema first, then the legacy completions shape, then a bare string body.
    """
    if isinstance(data, str):
        return data
    if isinstance(data, dict):
        choices = data.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            first = choices[0]
            message = first.get("message")
            content = message.get("content") if isinstance(message, dict) else None
            if content:
                return str(content)
            if first.get("text"):
                return str(first["text"])
    return NO_CONTENT


@dataclass(frozen=True)
class ChatCompletionsClient:
    """
    Calls an OpenAI-compatible chat completions endpoint.

    `endpoint` is the full URL (e.g. https://api.openai.com/v1/chat/completions).
    No retries: a timed out call is terminal for the request that made it.
    """

    api_key: str
    endpoint: str
    timeout_s: float = 180.0
    transport: httpx.BaseTransport | None = None

    def chat(
        self,
        *,
        model: str,
        messages: List[Dict[str, str]],
        max_tokens: int = 3500,
        temperature: float = 1.0,
    ) -> str:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": int(max(1, min(int(max_tokens), 16384))),
        }
        with httpx.Client(timeout=self.timeout_s, transport=self.transport) as client:
            r = client.post(self.endpoint, headers=headers, json=payload)
            if r.status_code // 100 != 2:
                raise RuntimeError(f"llm_http_{r.status_code}: {r.text[:1500]}")
            try:
                data = r.json()
            except ValueError:
                data = r.text
        return extract_reply_text(data)
