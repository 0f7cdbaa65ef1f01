from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from playfix.context.extractor import CodeContextExtractor, read_file_content
from playfix.critic.patch_critic import GuardThresholds
from playfix.gitops.local_git import LocalGitBackend
from playfix.gitops.publisher import PatchPublisher
from playfix.llm.suggestion import SuggestionService, extract_first_code_block
from playfix.models import CiFailure, FixCandidate, PublishOutcome, PublishStatus
from playfix.prompting.builder import build_offline_prompt, relativize_path
from playfix.telemetry.audit import AuditLogger, EventSink, emit


class DirtyWorkingTreeError(RuntimeError):
    pass


@dataclass(frozen=True)
class BatchItem:
    failure: CiFailure
    outcome: PublishOutcome
    fix_blocks: int = 0


@dataclass
class BatchReport:
    items: List[BatchItem] = field(default_factory=list)

    @property
    def failed(self) -> List[BatchItem]:
        return [i for i in self.items if i.outcome.status == PublishStatus.failed]

    @property
    def created(self) -> List[BatchItem]:
        return [i for i in self.items if i.outcome.status == PublishStatus.created]


def _language_for(path: str) -> str:
    ext = os.path.splitext(path)[1].lower()
    if ext in (".js", ".cjs", ".mjs"):
        return "javascript"
    return "typescript"


@dataclass
class BatchRemediator:
    """
    Offline loop over a CI results document: one oracle call and one branch/PR life cycle
    per failing spec, strictly one after another on a local checkout.
    """

    backend: LocalGitBackend
    suggester: SuggestionService
    extractor: CodeContextExtractor = field(default_factory=CodeContextExtractor)
    thresholds: GuardThresholds = field(default_factory=GuardThresholds)
    audit: Optional[AuditLogger] = None
    dry_run: bool = False

    def _sink(self) -> EventSink | None:
        if self.audit is None:
            return None
        return self.audit.bind(self.audit.new_correlation_id())

    def run(self, failures: Sequence[CiFailure]) -> BatchReport:
        report = BatchReport()
        if not failures:
            return report
        if not self.dry_run and not self.backend.is_clean():
            raise DirtyWorkingTreeError(f"working tree at {self.backend.repo_path} has uncommitted changes")
        for failure in failures:
            report.items.append(self.remediate_one(failure))
        return report

    def candidates_for(self, failure: CiFailure, reply: str, parsed: Sequence[FixCandidate]) -> List[FixCandidate]:
        """
        Path-tagged blocks win. A reply with a single untagged block is taken as the new
        content of the failing file itself.
        """
        if parsed:
            return list(parsed)
        rel = relativize_path(os.path.abspath(failure.file), self.backend.repo_path)
        if os.path.isabs(rel):
            return []
        body = extract_first_code_block(reply)
        if body is None:
            return []
        return [FixCandidate(language=_language_for(rel), file_path=rel, code=body)]

    def remediate_one(self, failure: CiFailure) -> BatchItem:
        sink = self._sink()
        emit(sink, "batch.item_started", {"file": failure.file, "title": failure.title})

        content = read_file_content(failure.file)
        if content is None:
            outcome = PublishOutcome(status=PublishStatus.skipped, message=f"Could not read test file: {failure.file}")
            emit(sink, "batch.item_finished", {"status": outcome.status.value, "message": outcome.message})
            return BatchItem(failure=failure, outcome=outcome)

        rel = relativize_path(os.path.abspath(failure.file), self.backend.repo_path)
        extractor = CodeContextExtractor(
            context_lines=self.extractor.context_lines,
            import_max_chars=self.extractor.import_max_chars,
            on_event=sink,
        )
        imported = extractor.resolve_imported_files(failure.file, content)
        snippet = extractor.extract_context(failure.file, failure.line).snippet if failure.line is not None else None
        prompt = build_offline_prompt(
            test_title=failure.title,
            error_message=failure.error_message,
            rel_file=rel,
            file_content=content,
            imported=imported,
            failing_line=failure.line,
            snippet=snippet,
        )
        suggester = SuggestionService(settings=self.suggester.settings, client=self.suggester.client, on_event=sink)
        suggestion = suggester.get_suggestion(prompt)
        candidates = self.candidates_for(failure, suggestion.raw, suggestion.candidates)

        if self.dry_run:
            outcome = PublishOutcome(
                status=PublishStatus.skipped,
                message=f"Dry run - {len(candidates)} candidate(s) not published.",
            )
        else:
            publisher = PatchPublisher(backend=self.backend, thresholds=self.thresholds, on_event=sink)
            outcome = publisher.publish(failure.title, candidates)
        emit(sink, "batch.item_finished", {"status": outcome.status.value, "message": outcome.message})
        return BatchItem(failure=failure, outcome=outcome, fix_blocks=len(candidates))
