from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from playfix.models import CodeContext
from playfix.telemetry.audit import EventSink, emit


_IMPORT_LINE_RE = re.compile(r"""^\s*import(\s+type)?\s+.*\s+from\s+['"].*['"]""")
_RELATIVE_IMPORT_RE = re.compile(r"""import\s+(type\s+)?.*\s+from\s+['"](\.\.?/[^"']*)['"]""")

CODE_LIKE_EXTENSIONS = (".ts", ".js", ".cjs", ".mjs", ".page", ".component", ".util", ".helper")
RESOLUTION_SUFFIXES = ("", ".ts", ".js", ".cjs", ".mjs")
INDEX_FILES = ("index.ts", "index.js", "index.cjs", "index.mjs")

TRUNCATION_MARKER = "\n... [TRUNCATED]"


def read_file_content(path: str | None) -> Optional[str]:
    """Read a text file; None when the path is empty, missing or unreadable."""
    if not path or not os.path.isfile(path):
        return None
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return f.read()
    except OSError:
        return None


def _seems_like_code(import_path: str) -> bool:
    if import_path.endswith(CODE_LIKE_EXTENSIONS):
        return True
    # Directory / module imports carry no extension.
    return not os.path.splitext(import_path)[1]


def _candidate_paths(import_path: str) -> List[str]:
    out = [import_path + suffix for suffix in RESOLUTION_SUFFIXES]
    out.extend(os.path.join(import_path, name) for name in INDEX_FILES)
    return out


@dataclass(frozen=True)
class CodeContextExtractor:
    """
    Builds the code context of a failing test: imports, a numbered snippet around the
    failing line and the content of project-local files the test imports.

    Never raises on bad input; problems become placeholder strings the prompt can carry.
    """

    context_lines: int = 5
    import_max_chars: int = 10_000
    on_event: EventSink | None = None

    def extract_context(self, file_path: str, line_number: int | str | None, context_lines: int | None = None) -> CodeContext:
        content = read_file_content(file_path)
        if content is None:
            msg = f"Could not read test file: {file_path}"
            emit(self.on_event, "context.unreadable", {"file": file_path})
            return CodeContext(imports=msg, snippet=msg)

        lines = content.split("\n")
        imports = "\n".join(ln for ln in lines if _IMPORT_LINE_RE.match(ln))
        snippet = self._snippet(lines, line_number, self.context_lines if context_lines is None else context_lines)
        return CodeContext(imports=imports, snippet=snippet)

    def _snippet(self, lines: List[str], line_number: int | str | None, context_lines: int) -> str:
        try:
            target = int(str(line_number).strip()) - 1
        except (TypeError, ValueError):
            target = None
        if target is None or target < 0 or target >= len(lines):
            msg = f"Invalid line number ({line_number}) provided for file with {len(lines)} lines."
            emit(self.on_event, "context.invalid_line", {"line_number": str(line_number), "line_count": len(lines)})
            return msg

        start = max(0, target - context_lines)
        end = min(len(lines), target + context_lines + 1)
        out: List[str] = []
        for idx in range(start, end):
            number = str(idx + 1)
            prefix = (">" + number if idx == target else number).rjust(5)
            out.append(f"{prefix}: {lines[idx]}")
        return "\n".join(out)

    def resolve_imported_files(self, file_path: str, file_content: str | None) -> Dict[str, str]:
        """
        Map each relative import of `file_path` to the (possibly truncated) content of the
        file it resolves to. Package imports and unresolvable paths are skipped.
        """
        if not file_path or not file_content:
            return {}

        base_dir = os.path.dirname(file_path)
        out: Dict[str, str] = {}
        for m in _RELATIVE_IMPORT_RE.finditer(file_content):
            rel = m.group(2)
            if rel in out:
                continue
            if not _seems_like_code(rel):
                emit(self.on_event, "context.import_skipped", {"import": rel, "reason": "non_code_extension"})
                continue

            resolved = None
            for candidate in _candidate_paths(rel):
                abs_path = os.path.normpath(os.path.join(base_dir, candidate))
                if os.path.isfile(abs_path):
                    resolved = abs_path
                    break
            if resolved is None:
                emit(self.on_event, "context.import_unresolved", {"import": rel})
                continue

            text = read_file_content(resolved)
            if text is None:
                continue
            if len(text) > self.import_max_chars:
                text = text[: self.import_max_chars] + TRUNCATION_MARKER
            out[rel] = text
            emit(self.on_event, "context.import_resolved", {"import": rel, "path": resolved, "chars": len(text)})
        return out
