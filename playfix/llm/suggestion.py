from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import List, Optional

from playfix.llm.chat_client import ChatCompletionsClient
from playfix.models import FixCandidate, LlmSuggestion
from playfix.prompting.meta import SYSTEM_PROMPT
from playfix.settings import Settings
from playfix.telemetry.audit import EventSink, emit


DISABLED_MESSAGE = "LLM integration is disabled (API Key or Endpoint not configured)."

# ```<lang> <relative/path>\n<body>```  (language and path share the fence line)
_FIX_BLOCK_RE = re.compile(r"```(\w+)[ \t]+([\w/.\-]+)[ \t]*\r?\n([\s\S]*?)```")
_ANY_BLOCK_RE = re.compile(r"```(?:[\w.+-]+)?[^\n]*\n([\s\S]*?)```")


def parse_fix_blocks(text: str | None) -> List[FixCandidate]:
    out: List[FixCandidate] = []
    for m in _FIX_BLOCK_RE.finditer(text or ""):
        code = m.group(3).strip()
        if not code:
            continue
        out.append(FixCandidate(language=m.group(1).strip(), file_path=m.group(2).strip(), code=code))
    return out


def extract_first_code_block(text: str | None) -> Optional[str]:
    """Body of the first fenced block whatever its header; None when the reply has none."""
    m = _ANY_BLOCK_RE.search(text or "")
    if not m:
        return None
    body = m.group(1).strip()
    return body or None


@dataclass(frozen=True)
class SuggestionService:
    """
    Prompt/LLM client: one system+user call to the oracle, fenced blocks parsed into
    full-file fix candidates. Oracle failures become data, never exceptions.
    """

    settings: Settings
    client: ChatCompletionsClient | None = None
    on_event: EventSink | None = None

    def _client(self) -> ChatCompletionsClient:
        if self.client is not None:
            return self.client
        return ChatCompletionsClient(
            api_key=str(self.settings.llm_api_key),
            endpoint=str(self.settings.llm_endpoint),
            timeout_s=self.settings.llm_timeout_s,
        )

    def get_suggestion(self, prompt: str) -> LlmSuggestion:
        if not self.settings.llm_configured and self.client is None:
            emit(self.on_event, "llm.skipped", {"reason": "llm_not_configured"})
            return LlmSuggestion(raw=DISABLED_MESSAGE, candidates=[])

        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]
        emit(self.on_event, "llm.requested", {"model": self.settings.llm_model, "prompt_chars": len(prompt)})
        t0 = time.monotonic()
        try:
            raw = self._client().chat(
                model=self.settings.llm_model,
                messages=messages,
                max_tokens=self.settings.llm_max_tokens,
                temperature=self.settings.llm_temperature,
            )
        except Exception as e:  # noqa: BLE001
            emit(self.on_event, "llm.failed", {"error": str(e), "error_type": type(e).__name__})
            return LlmSuggestion(raw=f"LLM Call Failed: {e}", candidates=[])

        raw = (raw or "").strip()
        candidates = parse_fix_blocks(raw)
        emit(
            self.on_event,
            "llm.completed",
            {
                "elapsed_s": round(time.monotonic() - t0, 3),
                "reply_chars": len(raw),
                "candidates": [{"filePath": c.file_path, "code_length": len(c.code)} for c in candidates],
            },
        )
        if not candidates and len(raw) > 10:
            # Free-form commentary only: nothing actionable to publish.
            emit(self.on_event, "llm.no_fix_blocks", {"head": raw[:200]})
        return LlmSuggestion(raw=raw, candidates=candidates)
