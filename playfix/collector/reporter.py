from __future__ import annotations

import json
import mimetypes
import os
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from playfix.models import AttachmentKind, FailureReport
from playfix.telemetry.audit import EventSink, emit


REPORTABLE_STATUSES = ("failed", "timedOut")

# kind -> (multipart field, fallback content type)
_FIELD_FOR_KIND: Dict[AttachmentKind, Tuple[str, Optional[str]]] = {
    AttachmentKind.trace: ("trace", "application/zip"),
    AttachmentKind.video: ("video", "video/webm"),
    AttachmentKind.screenshot: ("screenshots", None),
    AttachmentKind.source_code: ("sourceCode", "text/plain"),
}


@dataclass(frozen=True)
class AttachmentRef:
    """An artifact the runner left on disk for a failing test."""

    kind: AttachmentKind
    path: str
    content_type: Optional[str] = None


@dataclass(frozen=True)
class CollectorResult:
    ok: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    response: Optional[Dict[str, Any]] = None


def should_report(status: str | None) -> bool:
    return status in REPORTABLE_STATUSES


def form_fields(report: FailureReport) -> Dict[str, str]:
    err = report.error
    if err.message is not None or err.stack is not None:
        error_json = json.dumps(
            {"message": err.message or "No message", "stack": err.stack or "No stack trace"},
            indent=2,
        )
    else:
        error_json = json.dumps({"message": "No error object reported"})
    return {
        "testTitle": report.test_title,
        "testFile": report.test_file,
        "lineNumber": "" if report.line_number is None else str(report.line_number),
        "status": report.status,
        "duration": "" if report.duration_ms is None else str(report.duration_ms),
        "retries": str(report.retries),
        "error": error_json,
        "stdout": report.stdout,
        "stderr": report.stderr,
    }


@dataclass(frozen=True)
class FailureCollector:
    """
    Test-runner side: ships one failing test (fields + artifacts + source file) to the
    analysis server as a multipart upload.

    Never raises into the runner; delivery problems come back as a `CollectorResult`.
    """

    endpoint: str = "http://localhost:3001/analyze"
    timeout_s: float = 300.0
    transport: httpx.BaseTransport | None = None
    on_event: EventSink | None = None

    def _files(self, report: FailureReport, attachments: Sequence[AttachmentRef], stack: ExitStack) -> List[Tuple[str, Tuple[str, Any, str]]]:
        refs = list(attachments)
        if report.test_file and not any(a.kind == AttachmentKind.source_code for a in refs):
            refs.append(AttachmentRef(kind=AttachmentKind.source_code, path=report.test_file))

        files: List[Tuple[str, Tuple[str, Any, str]]] = []
        for ref in refs:
            if not ref.path or not os.path.isfile(ref.path):
                emit(self.on_event, "collector.attachment_missing", {"kind": ref.kind.value, "path": ref.path})
                continue
            field, fallback_ct = _FIELD_FOR_KIND[ref.kind]
            ct = ref.content_type or fallback_ct or mimetypes.guess_type(ref.path)[0] or "application/octet-stream"
            fh = stack.enter_context(open(ref.path, "rb"))
            files.append((field, (os.path.basename(ref.path), fh, ct)))
        return files

    def send(self, report: FailureReport, attachments: Sequence[AttachmentRef] = ()) -> CollectorResult:
        if not should_report(report.status):
            return CollectorResult(ok=False, error=f"status not reportable: {report.status}")

        try:
            with ExitStack() as stack:
                files = self._files(report, attachments, stack)
                emit(self.on_event, "collector.sending", {"test_title": report.test_title, "files": [f[0] for f in files]})
                with httpx.Client(timeout=self.timeout_s, transport=self.transport) as client:
                    r = client.post(self.endpoint, data=form_fields(report), files=files)
        except (httpx.HTTPError, OSError) as e:
            emit(self.on_event, "collector.failed", {"test_title": report.test_title, "error": str(e)})
            return CollectorResult(ok=False, error=str(e))

        try:
            body = r.json()
        except ValueError:
            body = None
        ok = r.status_code // 100 == 2
        emit(self.on_event, "collector.sent", {"test_title": report.test_title, "status_code": r.status_code})
        return CollectorResult(
            ok=ok,
            status_code=r.status_code,
            error=None if ok else (r.text or "")[:1500],
            response=body if isinstance(body, dict) else None,
        )
