from __future__ import annotations

import argparse
import os
import sys
from typing import List, Optional

from playfix.batch.remediator import BatchRemediator, DirtyWorkingTreeError
from playfix.batch.results import ResultsFormatError, load_failures
from playfix.context.extractor import CodeContextExtractor
from playfix.critic.patch_critic import GuardThresholds
from playfix.gitops.local_git import LocalGitBackend
from playfix.llm.suggestion import SuggestionService
from playfix.settings import Settings
from playfix.telemetry.audit import AuditLogger


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Open one fix PR per failing spec in a Playwright JSON results file.")
    ap.add_argument("--results", required=True, help="path to the JSON reporter output")
    ap.add_argument("--repo", default=".", help="local checkout the specs live in")
    ap.add_argument("--test-dir", default=None, help="overrides config.projects[0].testDir")
    ap.add_argument("--remote", default=None)
    ap.add_argument("--dry-run", action="store_true", help="ask the LLM but do not branch, commit or push")
    args = ap.parse_args(argv)

    settings = Settings()
    try:
        failures = load_failures(args.results, test_dir=args.test_dir)
    except (OSError, ResultsFormatError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    if not failures:
        print("no failing tests")
        return 0

    remediator = BatchRemediator(
        backend=LocalGitBackend.from_settings(settings, repo_path=os.path.abspath(args.repo), remote=args.remote),
        suggester=SuggestionService(settings=settings),
        extractor=CodeContextExtractor(context_lines=settings.context_lines, import_max_chars=settings.import_max_chars),
        thresholds=GuardThresholds.from_settings(settings),
        audit=AuditLogger(settings.audit_log_path, actor="playfix-batch"),
        dry_run=bool(args.dry_run),
    )
    try:
        report = remediator.run(failures)
    except DirtyWorkingTreeError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    for item in report.items:
        print(f"{item.outcome.status.value}\t{item.failure.file}\t{item.failure.title}\t{item.outcome.message}")
    print(f"{len(report.created)} PR(s) created, {len(report.failed)} failed, {len(report.items)} total")
    return 1 if report.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
