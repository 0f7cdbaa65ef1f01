from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from playfix.classifier.rules import HeuristicClassifier
from playfix.context.extractor import CodeContextExtractor, read_file_content
from playfix.gitops.publisher import PatchPublisher
from playfix.llm.suggestion import SuggestionService
from playfix.models import (
    AnalyzeResponse,
    Attachment,
    ErrorPayload,
    FailureReport,
    PublishOutcome,
    PublishStatus,
)
from playfix.prompting.builder import build_analysis_prompt
from playfix.settings import Settings
from playfix.telemetry.audit import EventSink, emit


RAW_SUGGESTION_MAX_CHARS = 2000
SKIPPED_NO_GITHUB = "PR creation skipped - GitHub credentials not configured."
SKIPPED_NO_BLOCKS = "PR creation skipped - LLM did not provide valid fix blocks."


def parse_error_payload(raw: str | None) -> ErrorPayload:
    """
    The runner sends the error as a JSON string. A payload that does not parse is kept
    as data so the request can go on with a degraded context.
    """
    try:
        data = json.loads(raw or "{}")
    except json.JSONDecodeError as e:
        return ErrorPayload(parse_error=f"Failed to parse error JSON: {e}", raw_error=raw)
    if not isinstance(data, dict):
        return ErrorPayload(parse_error="Error JSON is not an object", raw_error=raw)
    message = data.get("message")
    stack = data.get("stack")
    return ErrorPayload(
        message=str(message) if message is not None else None,
        stack=str(stack) if stack is not None else None,
    )


def _parse_int(value: str | None) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _parse_float(value: str | None) -> Optional[float]:
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return None


def build_failure_report(
    *,
    test_title: str | None,
    test_file: str,
    line_number: str | None,
    status: str | None,
    duration: str | None,
    retries: str | None,
    error: str | None,
    stdout: str | None,
    stderr: str | None,
    attachments: List[Attachment],
) -> FailureReport:
    return FailureReport(
        test_title=test_title or "",
        test_file=test_file,
        line_number=_parse_int(line_number),
        raw_line_number=line_number,
        status=status or "",
        duration_ms=_parse_float(duration),
        retries=_parse_int(retries) or 0,
        error=parse_error_payload(error),
        stdout=stdout or "",
        stderr=stderr or "",
        attachments=attachments,
    )


def _truncate(text: str, limit: int = RAW_SUGGESTION_MAX_CHARS) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


@dataclass(frozen=True)
class AnalysisPipeline:
    """
    One failure in, one consolidated result out:
    context -> heuristics -> prompt -> oracle -> publish.

    Skipped publishing is a normal outcome; only genuinely unexpected errors escape.
    """

    settings: Settings
    extractor: CodeContextExtractor
    classifier: HeuristicClassifier
    suggester: SuggestionService
    publisher: PatchPublisher
    on_event: EventSink | None = None

    def analyze(self, report: FailureReport) -> AnalyzeResponse:
        emit(
            self.on_event,
            "event.received",
            {
                "test_title": report.test_title,
                "test_file": report.test_file,
                "line_number": report.raw_line_number,
                "status": report.status,
                "retries": report.retries,
                "attachments": [a.model_dump(mode="json") for a in report.attachments],
            },
        )

        content = read_file_content(report.test_file)
        context = self.extractor.extract_context(report.test_file, report.raw_line_number)
        imported = self.extractor.resolve_imported_files(report.test_file, content)
        emit(
            self.on_event,
            "context.extracted",
            {"file_readable": content is not None, "imported_files": sorted(imported.keys())},
        )

        if report.error.parse_error:
            emit(self.on_event, "error.unparsable", {"parse_error": report.error.parse_error})
        analysis = self.classifier.classify(report.error.message)
        emit(self.on_event, "heuristics.applied", {"suggestions": analysis.suggestions, "category": analysis.category})

        prompt = build_analysis_prompt(
            report=report,
            context=context,
            imported=imported,
            analysis=analysis,
            repo_root=self.settings.repo_root,
        )

        t0 = time.monotonic()
        suggestion = self.suggester.get_suggestion(prompt)
        emit(
            self.on_event,
            "llm.finished",
            {"elapsed_s": round(time.monotonic() - t0, 3), "fix_blocks": len(suggestion.candidates)},
        )

        publish: Optional[PublishOutcome]
        if self.publisher.backend is None:
            publish = PublishOutcome(status=PublishStatus.skipped, message=SKIPPED_NO_GITHUB)
        elif not suggestion.candidates:
            publish = PublishOutcome(status=PublishStatus.skipped, message=SKIPPED_NO_BLOCKS)
        else:
            t1 = time.monotonic()
            publish = self.publisher.publish(report.test_title, suggestion.candidates)
            emit(
                self.on_event,
                "publish.finished",
                {"elapsed_s": round(time.monotonic() - t1, 3), "status": publish.status.value, "message": publish.message},
            )

        received: Dict[str, Any] = {
            "testTitle": report.test_title,
            "status": report.status,
            "testFile": report.test_file,
            "lineNumber": report.raw_line_number,
            "error": report.error.as_dict(),
        }
        return AnalyzeResponse(
            message="Analysis processed successfully.",
            received_data=received,
            analysis=analysis,
            llm_suggestion_raw=_truncate(suggestion.raw),
            llm_fix_blocks=suggestion.candidates,
            pr_url=publish.message,
            publish=publish,
            attachments=report.attachments,
        )
