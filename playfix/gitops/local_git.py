from __future__ import annotations

import os
import re
import subprocess
from dataclasses import dataclass, field
from typing import List, Optional, Set

from playfix.gitops.backend import RemoteFile
from playfix.models import PullRequestResult
from playfix.settings import Settings


_PR_NUMBER_RE = re.compile(r"/pull/(\d+)")


class GitCommandError(RuntimeError):
    def __init__(self, cmd: List[str], returncode: int, output: str):
        super().__init__(f"{' '.join(cmd)} exited {returncode}: {output.strip()[:1500]}")
        self.cmd = cmd
        self.returncode = returncode
        self.output = output


@dataclass
class LocalGitBackend:
    """
    `SourceControlBackend` over a local checkout: git for branches/commits/push and the
    `gh` CLI for the pull request.

    - Branches are pushed only when a PR is opened, and never with --force.
    - After each branch life cycle the checkout returns to the branch it started on.
    """

    repo_path: str
    remote: str = "origin"
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    git_bin: str = "git"
    gh_bin: str = "gh"
    _pushed: Set[str] = field(default_factory=set, init=False, repr=False)
    _return_to: Optional[str] = field(default=None, init=False, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings, *, repo_path: str, remote: str | None = None) -> "LocalGitBackend":
        return cls(
            repo_path=os.path.abspath(repo_path),
            remote=remote or settings.batch_remote,
            user_name=settings.batch_git_user_name,
            user_email=settings.batch_git_user_email,
        )

    def _run(self, cmd: List[str], *, check: bool = True) -> subprocess.CompletedProcess:
        p = subprocess.run(cmd, cwd=self.repo_path, capture_output=True, text=True, check=False)
        if check and p.returncode != 0:
            raise GitCommandError(cmd, p.returncode, (p.stdout or "") + "\n" + (p.stderr or ""))
        return p

    def _git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        ident: List[str] = []
        if self.user_name:
            ident += ["-c", f"user.name={self.user_name}"]
        if self.user_email:
            ident += ["-c", f"user.email={self.user_email}"]
        return self._run([self.git_bin, *ident, *args], check=check)

    def current_branch(self) -> str:
        return (self._git("rev-parse", "--abbrev-ref", "HEAD").stdout or "").strip()

    def is_clean(self) -> bool:
        return not (self._git("status", "--porcelain").stdout or "").strip()

    def default_branch(self) -> str:
        p = self._git("symbolic-ref", "--short", f"refs/remotes/{self.remote}/HEAD", check=False)
        ref = (p.stdout or "").strip()
        if p.returncode == 0 and ref:
            return ref.split("/", 1)[1] if "/" in ref else ref
        return self.current_branch()

    def branch_head_sha(self, branch: str) -> str:
        """
        Tip of `<remote>/<branch>` after a fetch; the local branch of that name may lag
        behind. Without a usable remote ref (offline, no remote) the local branch is used.
        """
        self._git("fetch", self.remote, branch, check=False)
        p = self._git("rev-parse", "--verify", f"{self.remote}/{branch}^{{commit}}", check=False)
        sha = (p.stdout or "").strip()
        if p.returncode == 0 and sha:
            return sha
        return (self._git("rev-parse", "--verify", f"{branch}^{{commit}}").stdout or "").strip()

    def create_branch(self, name: str, from_sha: str) -> None:
        self._return_to = self.current_branch()
        # Fails when the branch exists: a name collision must not reuse another attempt's branch.
        self._git("checkout", "-b", name, from_sha)

    def read_file(self, path: str, ref: str) -> Optional[RemoteFile]:
        spec = f"{ref}:{path.lstrip('/')}"
        p = self._git("show", spec, check=False)
        if p.returncode != 0:
            return None
        sha = (self._git("rev-parse", spec, check=False).stdout or "").strip() or None
        return RemoteFile(path=path, content=p.stdout or "", sha=sha)

    def write_file(self, *, path: str, content: str, branch: str, message: str, sha: Optional[str]) -> bool:
        rel = path.lstrip("/")
        abs_path = os.path.normpath(os.path.join(self.repo_path, rel))
        if not abs_path.startswith(os.path.abspath(self.repo_path) + os.sep):
            raise ValueError(f"path escapes repository: {path}")
        if self.current_branch() != branch:
            raise RuntimeError(f"checkout is not on {branch}")

        os.makedirs(os.path.dirname(abs_path), exist_ok=True)
        with open(abs_path, "w", encoding="utf-8") as f:
            f.write(content)
        self._git("add", "--", rel)
        if not (self._git("status", "--porcelain", "--", rel).stdout or "").strip():
            return False
        self._git("commit", "-m", message, "--", rel)
        return True

    def delete_branch(self, name: str) -> None:
        if self.current_branch() == name:
            # Only files written by this branch can be dirty here.
            self._git("checkout", "-f", self._return_to or self.default_branch())
        self._git("branch", "-D", name)
        if name in self._pushed:
            self._git("push", self.remote, "--delete", name)
            self._pushed.discard(name)

    def open_pull_request(self, *, title: str, body: str, head: str, base: str) -> PullRequestResult:
        self._git("push", "--set-upstream", self.remote, head)
        self._pushed.add(head)
        p = self._run([self.gh_bin, "pr", "create", "--base", base, "--head", head, "--title", title, "--body", body])
        out_lines = [ln.strip() for ln in (p.stdout or "").splitlines() if ln.strip()]
        url = out_lines[-1] if out_lines else ""
        m = _PR_NUMBER_RE.search(url)
        self._git("checkout", self._return_to or base)
        return PullRequestResult(
            mode="local",
            pr_number=int(m.group(1)) if m else None,
            pr_title=title,
            pr_url=url,
            branch_name=head,
            base_branch=base,
        )
