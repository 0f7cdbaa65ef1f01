from __future__ import annotations

from dataclasses import dataclass

from playfix.settings import Settings


@dataclass(frozen=True)
class GuardThresholds:
    """
    Destructive-change guard limits. These mirror values observed in production use;
    they are configuration, not derived constants.
    """

    min_original_lines: int = 10
    shrink_ratio: float = 0.5
    collapse_max_lines: int = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> "GuardThresholds":
        return cls(
            min_original_lines=settings.guard_min_original_lines,
            shrink_ratio=settings.guard_shrink_ratio,
            collapse_max_lines=settings.guard_collapse_max_lines,
        )


@dataclass(frozen=True)
class PatchCriticResult:
    ok: bool
    patch_class: str  # create|update|noop|destructive_shrink|destructive_collapse
    reason: str | None = None
    original_lines: int = 0
    new_lines: int = 0


def normalize_content(text: str | None) -> str:
    return (text or "").replace("\r\n", "\n").strip()


def _line_count(normalized: str) -> int:
    return len(normalized.split("\n"))


def review_candidate(*, original: str | None, new: str, thresholds: GuardThresholds = GuardThresholds()) -> PatchCriticResult:
    """
    Decide whether a full-file replacement is worth committing.

    `original` is the current content on the remediation branch (None or "" when the
    file does not exist yet).
    """
    norm_old = normalize_content(original)
    norm_new = normalize_content(new)
    old_n = _line_count(norm_old)
    new_n = _line_count(norm_new)

    if norm_old == norm_new:
        return PatchCriticResult(ok=False, patch_class="noop", reason="no_effective_change", original_lines=old_n, new_lines=new_n)

    if not original:
        return PatchCriticResult(ok=True, patch_class="create", original_lines=0, new_lines=new_n)

    if old_n > thresholds.min_original_lines and new_n < old_n * thresholds.shrink_ratio:
        return PatchCriticResult(
            ok=False,
            patch_class="destructive_shrink",
            reason=f"new content ({new_n} lines) is significantly shorter than original ({old_n} lines)",
            original_lines=old_n,
            new_lines=new_n,
        )
    if new_n < thresholds.collapse_max_lines and old_n > thresholds.collapse_max_lines:
        return PatchCriticResult(
            ok=False,
            patch_class="destructive_collapse",
            reason=f"new content collapsed to {new_n} lines from {old_n}",
            original_lines=old_n,
            new_lines=new_n,
        )
    return PatchCriticResult(ok=True, patch_class="update", original_lines=old_n, new_lines=new_n)
