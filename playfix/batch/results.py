from __future__ import annotations

import json
import os
from typing import Any, Dict, Iterator, List, Optional

from playfix.models import CiFailure


FAILING_STATUSES = ("failed", "timedOut")


class ResultsFormatError(ValueError):
    pass


def _iter_specs(suites: List[Dict[str, Any]]) -> Iterator[Dict[str, Any]]:
    for suite in suites or []:
        yield from suite.get("specs") or []
        # describe() blocks nest suites inside suites.
        yield from _iter_specs(suite.get("suites") or [])


def _failing_result(test: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    results = [r for r in (test.get("results") or []) if isinstance(r, dict)]
    failing = [r for r in results if r.get("status") in FAILING_STATUSES]
    if not failing:
        return None
    # A retry that finally passed is not a failure to fix.
    if results and results[-1].get("status") == "passed":
        return None
    return failing[-1]


def parse_failures(doc: Dict[str, Any], *, test_dir: str | None = None) -> List[CiFailure]:
    if test_dir is None:
        projects = (doc.get("config") or {}).get("projects") or []
        test_dir = (projects[0] or {}).get("testDir") if projects else None
    if not test_dir:
        raise ResultsFormatError("testDir not found in results config")

    out: List[CiFailure] = []
    seen: set[tuple[str, str]] = set()
    for spec in _iter_specs(doc.get("suites") or []):
        spec_file = spec.get("file")
        title = spec.get("title") or ""
        if not spec_file:
            continue
        for test in spec.get("tests") or []:
            res = _failing_result(test)
            if res is None:
                continue
            path = os.path.join(test_dir, spec_file)
            key = (path, title)
            if key in seen:
                continue
            seen.add(key)
            err = res.get("error") or {}
            location = err.get("location") or {}
            out.append(
                CiFailure(
                    file=path,
                    title=title,
                    error_message=str(err.get("message") or ""),
                    line=location.get("line") or spec.get("line"),
                )
            )
    return out


def load_failures(results_path: str, *, test_dir: str | None = None) -> List[CiFailure]:
    with open(results_path, "r", encoding="utf-8") as f:
        try:
            doc = json.load(f)
        except json.JSONDecodeError as e:
            raise ResultsFormatError(f"results file is not valid JSON: {e}") from e
    if not isinstance(doc, dict):
        raise ResultsFormatError("results document must be a JSON object")
    return parse_failures(doc, test_dir=test_dir)
