from __future__ import annotations

import os
import re
from typing import Any, Dict, List, Optional

import pytest

from playfix.collector.reporter import AttachmentRef, CollectorResult, FailureCollector
from playfix.models import AttachmentKind, ErrorPayload, FailureReport
from playfix.settings import Settings


# pytest-playwright's --output default; artifacts land in one folder per test under it.
DEFAULT_OUTPUT_DIR = "test-results"
PLUGIN_NAME = "playfix-reporter"

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("playfix", "upload failing tests for analysis")
    group.addoption(
        "--playfix-endpoint",
        action="store",
        dest="playfix_endpoint",
        default=None,
        help="POST each failing test to this analysis URL (default: ini playfix_endpoint, env PLAYFIX_COLLECTOR_ENDPOINT).",
    )
    parser.addini("playfix_endpoint", "analysis URL failing tests are uploaded to", default="")


def pytest_configure(config: pytest.Config) -> None:
    endpoint = config.getoption("playfix_endpoint") or config.getini("playfix_endpoint")
    timeout_s = 300.0
    if not endpoint:
        settings = Settings()
        endpoint = settings.collector_endpoint
        timeout_s = settings.collector_timeout_s
    if not endpoint:
        return

    output_dir = config.getoption("output", default=DEFAULT_OUTPUT_DIR) or DEFAULT_OUTPUT_DIR
    plugin = FailureUploader(
        FailureCollector(endpoint=endpoint, timeout_s=timeout_s),
        rootdir=str(config.rootpath),
        output_dir=os.path.join(str(config.invocation_params.dir), output_dir),
    )
    config.pluginmanager.register(plugin, PLUGIN_NAME)


def _slug(text: str) -> str:
    return _SLUG_RE.sub("-", text.lower()).strip("-")


def artifact_dir_for(output_dir: str, nodeid: str) -> Optional[str]:
    """
    Folder pytest-playwright wrote for `nodeid`. Its name is a slug of the node id, so
    both sides are slugged the same way before comparing.
    """
    if not os.path.isdir(output_dir):
        return None
    want = _slug(nodeid)
    for name in sorted(os.listdir(output_dir)):
        path = os.path.join(output_dir, name)
        if os.path.isdir(path) and _slug(name) == want:
            return path
    return None


def find_artifacts(output_dir: str, nodeid: str) -> List[AttachmentRef]:
    folder = artifact_dir_for(output_dir, nodeid)
    if folder is None:
        return []
    refs: List[AttachmentRef] = []
    seen = set()
    for name in sorted(os.listdir(folder)):
        path = os.path.join(folder, name)
        if not os.path.isfile(path):
            continue
        lower = name.lower()
        if lower.endswith(".zip") and "trace" in lower:
            kind, ct = AttachmentKind.trace, "application/zip"
        elif lower.endswith(".webm"):
            kind, ct = AttachmentKind.video, "video/webm"
        elif lower.endswith(".png"):
            kind, ct = AttachmentKind.screenshot, "image/png"
        else:
            continue
        # The server takes one trace and one video per test.
        if kind != AttachmentKind.screenshot and kind in seen:
            continue
        seen.add(kind)
        refs.append(AttachmentRef(kind=kind, path=path, content_type=ct))
    return refs


def _status(message: str) -> str:
    # pytest-timeout fails the test with "Failed: Timeout >Ns".
    return "timedOut" if message.startswith("Failed: Timeout") else "failed"


def failure_report_from(report: Any, rootdir: str) -> FailureReport:
    """Map a failed setup/call `TestReport` onto the upload record."""
    rel_file, def_line, title = report.location
    test_file = os.path.join(rootdir, rel_file)
    text = report.longreprtext or ""

    crash = getattr(report.longrepr, "reprcrash", None)
    message = crash.message if crash is not None else (text.strip().splitlines() or [""])[0]
    line = def_line + 1 if def_line is not None else None
    if crash is not None and os.path.abspath(str(crash.path)) == os.path.abspath(test_file):
        line = crash.lineno

    return FailureReport(
        test_title=title,
        test_file=test_file,
        line_number=line,
        raw_line_number=None if line is None else str(line),
        status=_status(message),
        duration_ms=round(report.duration * 1000, 3),
        retries=int(getattr(report, "rerun", 0) or 0),
        error=ErrorPayload(message=message, stack=text),
        stdout=report.capstdout,
        stderr=report.capstderr,
    )


class FailureUploader:
    """
    Registered by `pytest_configure` when an endpoint is configured. A failing test is
    held until its teardown report, after pytest-playwright has saved the trace, video
    and screenshots, and is then uploaded with them.
    """

    def __init__(self, collector: FailureCollector, *, rootdir: str, output_dir: str):
        self.collector = collector
        self.rootdir = rootdir
        self.output_dir = output_dir
        self.results: Dict[str, CollectorResult] = {}
        self._pending: Dict[str, FailureReport] = {}

    def pytest_runtest_logreport(self, report: pytest.TestReport) -> None:
        if report.when in ("setup", "call") and report.outcome == "failed":
            self._pending.setdefault(report.nodeid, failure_report_from(report, self.rootdir))
        elif report.when == "teardown":
            failure = self._pending.pop(report.nodeid, None)
            if failure is not None:
                refs = find_artifacts(self.output_dir, report.nodeid)
                self.results[report.nodeid] = self.collector.send(failure, refs)

    def pytest_terminal_summary(self, terminalreporter: Any) -> None:
        if not self.results:
            return
        terminalreporter.section("playfix")
        for nodeid, res in self.results.items():
            if res.ok:
                pr = (res.response or {}).get("prUrl") or "no PR"
                terminalreporter.write_line(f"{nodeid}: analyzed ({pr})")
            else:
                terminalreporter.write_line(f"{nodeid}: upload failed: {res.error}")
