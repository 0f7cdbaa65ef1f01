from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from playfix.critic.patch_critic import GuardThresholds, review_candidate
from playfix.gitops.backend import SourceControlBackend
from playfix.models import FixCandidate, PublishOutcome, PublishStatus, SkippedCandidate
from playfix.telemetry.audit import EventSink, emit


NOT_CONFIGURED = "GitHub credentials not configured."
NO_CODE_BLOCKS = "No PR created - LLM did not provide code blocks."
NO_CHANGES = "No PR created - LLM suggestions did not change file content."
FAILED_PREFIX = "GitHub PR creation failed: "

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def branch_name_for(test_title: str, *, now: datetime | None = None) -> str:
    """
    `fix/llm-<slug>-<YYYYMMDDHHMM>`. Two attempts for the same title within one minute
    collide on purpose: the second branch creation fails instead of sharing a branch.
    """
    ts = (now or _utc_now()).strftime("%Y%m%d%H%M")
    slug = _SLUG_RE.sub("-", (test_title or "").lower())[:30] or "test"
    return f"fix/llm-{slug}-{ts}"


def commit_message_for(path: str, *, creating: bool) -> str:
    name = posixpath.basename(path)
    if creating:
        return f"Feat: Create {name} with LLM suggestion"
    return f"Fix: Apply LLM patch to {name}"


def pr_title_for(test_title: str) -> str:
    return f'Fix: Apply LLM Suggestions for "{test_title}"'


def render_pr_body(test_title: str, files_changed: Sequence[str]) -> str:
    lines = [
        f"This Pull Request applies automated fixes suggested by an LLM for failures detected in the test: **{test_title}**.",
        "",
        "**Files Modified:**",
    ]
    lines.extend(f"- `{f}`" for f in files_changed)
    lines.append("")
    lines.append(
        "*Please review these changes carefully before merging. Verify that the full file content looks correct "
        "and no functionality was unintentionally removed.*"
    )
    return "\n".join(lines)


@dataclass
class PatchPublisher:
    """
    Delivers full-file fix candidates as a reviewable pull request on a fresh branch.

    - The default branch is never written; every commit lands on the new branch.
    - Candidates are checked against the file as it exists *on the new branch*.
    - A branch that ends up with no commits (or hits an error) is deleted.
    """

    backend: SourceControlBackend | None
    thresholds: GuardThresholds = field(default_factory=GuardThresholds)
    on_event: EventSink | None = None
    clock: Optional[Callable[[], datetime]] = None

    def publish(self, test_title: str, candidates: Sequence[FixCandidate]) -> PublishOutcome:
        if self.backend is None:
            emit(self.on_event, "publish.skipped", {"reason": "source_control_not_configured"})
            return PublishOutcome(status=PublishStatus.skipped, message=NOT_CONFIGURED)
        if not candidates:
            emit(self.on_event, "publish.skipped", {"reason": "no_candidates"})
            return PublishOutcome(status=PublishStatus.skipped, message=NO_CODE_BLOCKS)

        backend = self.backend
        branch: str | None = None
        changed: List[str] = []
        skipped: List[SkippedCandidate] = []
        try:
            base = backend.default_branch()
            base_sha = backend.branch_head_sha(base)
            candidate_branch = branch_name_for(test_title, now=self.clock() if self.clock else _utc_now())
            backend.create_branch(candidate_branch, base_sha)
            branch = candidate_branch
            emit(self.on_event, "publish.branch_created", {"branch": branch, "base": base, "base_sha": base_sha})

            for cand in candidates:
                path = cand.file_path
                current = backend.read_file(path, branch)
                original = current.content if current is not None else ""
                verdict = review_candidate(original=original, new=cand.code, thresholds=self.thresholds)
                if not verdict.ok:
                    skipped.append(SkippedCandidate(file_path=path, reason=verdict.reason or verdict.patch_class))
                    emit(
                        self.on_event,
                        "publish.candidate_rejected",
                        {
                            "file": path,
                            "class": verdict.patch_class,
                            "reason": verdict.reason,
                            "original_lines": verdict.original_lines,
                            "new_lines": verdict.new_lines,
                        },
                    )
                    continue

                creating = current is None
                committed = backend.write_file(
                    path=path,
                    content=cand.code,
                    branch=branch,
                    message=commit_message_for(path, creating=creating),
                    sha=None if creating else current.sha,
                )
                if not committed:
                    skipped.append(SkippedCandidate(file_path=path, reason="no_effective_change"))
                    emit(self.on_event, "publish.candidate_rejected", {"file": path, "class": "noop", "reason": "backend_saw_no_change"})
                    continue
                changed.append(path)
                emit(
                    self.on_event,
                    "publish.committed",
                    {"file": path, "operation": verdict.patch_class, "original_lines": verdict.original_lines, "new_lines": verdict.new_lines},
                )

            if not changed:
                self._cleanup(branch, reason="no_changes")
                return PublishOutcome(status=PublishStatus.no_changes, message=NO_CHANGES, branch=branch, skipped=skipped)

            pr = backend.open_pull_request(
                title=pr_title_for(test_title),
                body=render_pr_body(test_title, changed),
                head=branch,
                base=base,
            )
            emit(self.on_event, "publish.pr_created", {"url": pr.pr_url, "branch": branch, "files": changed})
            return PublishOutcome(
                status=PublishStatus.created,
                message=pr.pr_url,
                branch=branch,
                files_changed=changed,
                skipped=skipped,
                pr=pr,
            )
        except Exception as e:  # noqa: BLE001
            emit(self.on_event, "publish.failed", {"error": str(e), "error_type": type(e).__name__, "branch": branch})
            if branch is not None:
                self._cleanup(branch, reason="error")
            return PublishOutcome(
                status=PublishStatus.failed,
                message=f"{FAILED_PREFIX}{e}",
                branch=branch,
                files_changed=[],
                skipped=skipped,
            )

    def _cleanup(self, branch: str, *, reason: str) -> None:
        try:
            self.backend.delete_branch(branch)  # type: ignore[union-attr]
            emit(self.on_event, "publish.branch_deleted", {"branch": branch, "reason": reason})
        except Exception as e:  # noqa: BLE001
            # Never mask the outcome being reported.
            emit(self.on_event, "publish.cleanup_failed", {"branch": branch, "reason": reason, "error": str(e)})
