from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from playfix.models import PullRequestResult


@dataclass(frozen=True)
class RemoteFile:
    path: str
    content: str
    # Revision marker required to update the file (blob sha on GitHub, commit sha locally).
    sha: Optional[str] = None


class SourceControlBackend(Protocol):
    """
    Branch/commit/PR primitives the patch publisher needs. Two implementations:
    the hosted GitHub REST API and a local git checkout driven through the CLI.
    """

    def default_branch(self) -> str: ...

    def branch_head_sha(self, branch: str) -> str: ...

    def create_branch(self, name: str, from_sha: str) -> None: ...

    def read_file(self, path: str, ref: str) -> Optional[RemoteFile]: ...

    def write_file(self, *, path: str, content: str, branch: str, message: str, sha: Optional[str]) -> bool:
        """Commit full content. False when the backend saw no effective change and committed nothing."""
        ...

    def delete_branch(self, name: str) -> None: ...

    def open_pull_request(self, *, title: str, body: str, head: str, base: str) -> PullRequestResult: ...
