from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

from playfix.gitops.backend import RemoteFile
from playfix.gitops.publisher import (
    FAILED_PREFIX,
    NO_CHANGES,
    NO_CODE_BLOCKS,
    NOT_CONFIGURED,
    PatchPublisher,
    branch_name_for,
    render_pr_body,
)
from playfix.models import FixCandidate, PublishStatus, PullRequestResult


NOW = datetime(2024, 5, 1, 12, 34, tzinfo=timezone.utc)
BRANCH = "fix/llm-logs-in-202405011234"


class FakeBackend:
    def __init__(self, files: Optional[Dict[str, str]] = None, *, fail_pr: bool = False, fail_delete: bool = False):
        self.branches: Dict[str, Dict[str, str]] = {"main": dict(files or {})}
        self.commits: List[dict] = []
        self.prs: List[dict] = []
        self.deleted: List[str] = []
        self.fail_pr = fail_pr
        self.fail_delete = fail_delete

    def default_branch(self) -> str:
        return "main"

    def branch_head_sha(self, branch: str) -> str:
        return "BASESHA"

    def create_branch(self, name: str, from_sha: str) -> None:
        if name in self.branches:
            raise RuntimeError("Reference already exists")
        self.branches[name] = dict(self.branches["main"])

    def read_file(self, path: str, ref: str) -> Optional[RemoteFile]:
        content = self.branches[ref].get(path)
        if content is None:
            return None
        return RemoteFile(path=path, content=content, sha=f"sha-{path}")

    def write_file(self, *, path: str, content: str, branch: str, message: str, sha: Optional[str]) -> bool:
        self.branches[branch][path] = content
        self.commits.append({"path": path, "branch": branch, "message": message, "sha": sha})
        return True

    def delete_branch(self, name: str) -> None:
        if self.fail_delete:
            raise RuntimeError("delete refused")
        self.deleted.append(name)
        del self.branches[name]

    def open_pull_request(self, *, title: str, body: str, head: str, base: str) -> PullRequestResult:
        if self.fail_pr:
            raise RuntimeError("pr boom")
        self.prs.append({"title": title, "body": body, "head": head, "base": base})
        return PullRequestResult(
            mode="github",
            pr_number=7,
            pr_title=title,
            pr_url="https://github.test/acme/web/pull/7",
            branch_name=head,
            base_branch=base,
        )


def _spec(n: int, changed_at: int | None = None) -> str:
    return "\n".join(("CHANGED" if i == changed_at else f"line {i}") for i in range(n))


def _publisher(backend, events=None) -> PatchPublisher:
    sink = (lambda name, payload: events.append((name, payload))) if events is not None else None
    return PatchPublisher(backend=backend, on_event=sink, clock=lambda: NOW)


def test_branch_name_is_slugged_and_minute_stamped():
    assert branch_name_for("Logs in", now=NOW) == BRANCH
    long = branch_name_for("A very long title: with punctuation & more words", now=NOW)
    slug = long[len("fix/llm-"): -len("-202405011234")]
    assert len(slug) == 30
    assert slug == "a-very-long-title-with-punctua"


def test_no_backend_is_skipped():
    out = PatchPublisher(backend=None).publish("t", [FixCandidate(language="ts", file_path="a.ts", code="x")])
    assert out.status == PublishStatus.skipped
    assert out.message == NOT_CONFIGURED


def test_zero_candidates_creates_no_branch():
    backend = FakeBackend({"tests/a.spec.ts": _spec(20)})
    out = _publisher(backend).publish("logs in", [])
    assert out.status == PublishStatus.skipped
    assert out.message == NO_CODE_BLOCKS
    assert list(backend.branches) == ["main"]


def test_one_safe_change_opens_one_pr():
    backend = FakeBackend({"tests/a.spec.ts": _spec(20)})
    cand = FixCandidate(language="typescript", file_path="tests/a.spec.ts", code=_spec(20, changed_at=4))

    out = _publisher(backend).publish("logs in", [cand])

    assert out.status == PublishStatus.created
    assert out.message == "https://github.test/acme/web/pull/7"
    assert out.branch == BRANCH
    assert out.files_changed == ["tests/a.spec.ts"]
    assert backend.commits == [
        {"path": "tests/a.spec.ts", "branch": BRANCH, "message": "Fix: Apply LLM patch to a.spec.ts", "sha": "sha-tests/a.spec.ts"}
    ]
    assert len(backend.prs) == 1
    pr = backend.prs[0]
    assert pr["head"] == BRANCH and pr["base"] == "main"
    assert pr["title"] == 'Fix: Apply LLM Suggestions for "logs in"'
    assert pr["body"].count("- `") == 1
    assert "- `tests/a.spec.ts`" in pr["body"]
    # The default branch is never written.
    assert backend.branches["main"]["tests/a.spec.ts"] == _spec(20)
    assert backend.deleted == []


def test_noop_and_destructive_candidates_leave_no_branch():
    original = _spec(100)
    backend = FakeBackend({"tests/a.spec.ts": original, "pages/b.page.ts": original})
    cands = [
        FixCandidate(language="typescript", file_path="tests/a.spec.ts", code=original + "\n"),
        FixCandidate(language="typescript", file_path="pages/b.page.ts", code=_spec(10)),
    ]
    events: list = []

    out = _publisher(backend, events).publish("logs in", cands)

    assert out.status == PublishStatus.no_changes
    assert out.message == NO_CHANGES
    assert backend.commits == []
    assert backend.prs == []
    assert backend.deleted == [BRANCH]
    assert [s.file_path for s in out.skipped] == ["tests/a.spec.ts", "pages/b.page.ts"]
    rejected = [p["class"] for n, p in events if n == "publish.candidate_rejected"]
    assert rejected == ["noop", "destructive_shrink"]


def test_new_file_is_created_without_sha():
    backend = FakeBackend({})
    cand = FixCandidate(language="typescript", file_path="tests/new.spec.ts", code="test('x', () => {});")
    out = _publisher(backend).publish("logs in", [cand])
    assert out.status == PublishStatus.created
    assert backend.commits[0]["sha"] is None
    assert backend.commits[0]["message"] == "Feat: Create new.spec.ts with LLM suggestion"


def test_backend_no_change_counts_as_skipped():
    class NoDiffBackend(FakeBackend):
        def write_file(self, **kwargs) -> bool:
            return False

    backend = NoDiffBackend({"tests/a.spec.ts": _spec(20)})
    cand = FixCandidate(language="typescript", file_path="tests/a.spec.ts", code=_spec(20, changed_at=1))
    out = _publisher(backend).publish("logs in", [cand])
    assert out.status == PublishStatus.no_changes
    assert backend.deleted == [BRANCH]


def test_error_after_branch_creation_cleans_up():
    backend = FakeBackend({"tests/a.spec.ts": _spec(20)}, fail_pr=True)
    cand = FixCandidate(language="typescript", file_path="tests/a.spec.ts", code=_spec(20, changed_at=3))
    out = _publisher(backend).publish("logs in", [cand])
    assert out.status == PublishStatus.failed
    assert out.message == FAILED_PREFIX + "pr boom"
    assert backend.deleted == [BRANCH]


def test_cleanup_failure_does_not_mask_original_error():
    backend = FakeBackend({"tests/a.spec.ts": _spec(20)}, fail_pr=True, fail_delete=True)
    cand = FixCandidate(language="typescript", file_path="tests/a.spec.ts", code=_spec(20, changed_at=3))
    events: list = []
    out = _publisher(backend, events).publish("logs in", [cand])
    assert out.status == PublishStatus.failed
    assert "pr boom" in out.message
    names = [n for n, _ in events]
    assert "publish.cleanup_failed" in names


def test_branch_collision_fails_without_touching_existing_branch():
    backend = FakeBackend({"tests/a.spec.ts": _spec(20)})
    backend.branches[BRANCH] = {"tests/a.spec.ts": "someone else's attempt"}
    cand = FixCandidate(language="typescript", file_path="tests/a.spec.ts", code=_spec(20, changed_at=3))

    out = _publisher(backend).publish("logs in", [cand])

    assert out.status == PublishStatus.failed
    assert out.message.startswith(FAILED_PREFIX)
    assert out.branch is None
    assert backend.deleted == []
    assert backend.branches[BRANCH] == {"tests/a.spec.ts": "someone else's attempt"}


def test_render_pr_body_lists_files():
    body = render_pr_body("t", ["a.ts", "b.ts"])
    assert "**t**" in body
    assert "- `a.ts`\n- `b.ts`" in body
