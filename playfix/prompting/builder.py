from __future__ import annotations

import json
import os
from typing import Dict, Optional

from playfix.models import CodeContext, ErrorPayload, FailureReport, HeuristicAnalysis
from playfix.prompting.meta import NEGATIVE_RULES

FENCE = "```"
STACK_MAX_CHARS = 700


def relativize_path(abs_path: str, repo_root: str) -> str:
    """
    Repo-relative POSIX path for prompts. Falls back to the path as given when it cannot
    be expressed relative to the root (different drive, or outside the repo).
    """
    try:
        rel = os.path.relpath(abs_path, repo_root)
    except ValueError:
        return abs_path
    if rel.startswith(".."):
        return abs_path
    return rel.replace(os.sep, "/")


def _error_text(err: ErrorPayload) -> str:
    if err.message:
        return err.message
    record = err.as_dict()
    return json.dumps(record) if record else "N/A"


def _imported_files_section(imported: Dict[str, str]) -> str:
    if not imported:
        return "\n\n(No relevant relative imports found or read.)"
    parts = []
    for import_path, content in imported.items():
        parts.append(f"\n\n--- Content of imported file: {import_path} ---\n{FENCE}typescript\n{content}\n{FENCE}")
    return "".join(parts)


def _task_section() -> str:
    rules = "\n".join(f"- {r}" for r in NEGATIVE_RULES)
    return (
        "**Task:**\n"
        "Analyse this Playwright test failure using all the provided context. Explain the likely root cause "
        "and provide corrected code formatted ONLY in markdown blocks as requested in the system prompt "
        f"({FENCE}language path/relative/to/repo/root.ts ... {FENCE}). "
        "**CRITICAL:** Ensure each block contains the COMPLETE, ENTIRE file content with the fix applied. "
        "Ensure file paths in the code block headers are RELATIVE to the project root. "
        "Provide ONLY the code blocks, no extra text.\n"
        f"{rules}"
    )


def build_analysis_prompt(
    *,
    report: FailureReport,
    context: CodeContext,
    imported: Dict[str, str],
    analysis: HeuristicAnalysis,
    repo_root: str,
) -> str:
    rel_file = relativize_path(report.test_file, repo_root)
    line = report.raw_line_number or (str(report.line_number) if report.line_number is not None else "N/A")
    stack = (report.error.stack or "N/A")[:STACK_MAX_CHARS]
    hints = "\n".join(analysis.suggestions) if analysis.suggestions else "None"

    lines = [
        "Playwright Test Failure Analysis:",
        "",
        f"**Test:** {report.test_title or 'N/A'}",
        f"**File:** {rel_file}",
        f"**Failing Line:** {line}",
        f"**Status:** {report.status or 'N/A'}",
        "",
        "**Error Message:**",
        FENCE,
        _error_text(report.error),
        FENCE,
        "",
        "**Stack Trace Snippet:**",
        FENCE,
        f"{stack}...",
        FENCE,
        "",
        "**Server Heuristics:**",
        hints,
        "",
        "**Test File Imports:**",
        f"{FENCE}typescript",
        context.imports or "(Could not extract imports)",
        FENCE,
        "",
        f"**Code Snippet Around Failing Line ({line}) in {rel_file}:**",
        f"{FENCE}typescript",
        context.snippet,
        FENCE,
    ]
    return "\n".join(lines) + _imported_files_section(imported) + "\n\n" + _task_section()


def build_offline_prompt(
    *,
    test_title: str,
    error_message: str,
    rel_file: str,
    file_content: str,
    imported: Optional[Dict[str, str]] = None,
    failing_line: Optional[int] = None,
    snippet: Optional[str] = None,
) -> str:
    """
    Prompt used by the batch remediator: the whole failing file is available locally,
    so it is sent in full. When CI reported a location, the numbered window around it
    is shown first so the oracle knows where to look.
    """
    lines = [
        "The following Playwright test is failing:",
        "",
        f'Test name: "{test_title}"',
        f"File: {rel_file}",
        "Error:",
        FENCE,
        error_message or "N/A",
        FENCE,
        "",
    ]
    if failing_line is not None and snippet:
        lines += [
            f"Failing line {failing_line} in {rel_file}:",
            f"{FENCE}typescript",
            snippet,
            FENCE,
            "",
        ]
    lines += [
        "Here is the full test file content:",
        f"{FENCE}ts {rel_file}",
        file_content,
        FENCE,
    ]
    tail = _imported_files_section(imported) if imported else ""
    return (
        "\n".join(lines)
        + tail
        + "\n\nPlease suggest a corrected version of this file that would likely fix the failure. "
        "Only make minimal and relevant changes.\n\n"
        + _task_section()
    )
