from __future__ import annotations

import os
import re
import secrets
import time
from dataclasses import dataclass
from typing import BinaryIO, Dict, List, Optional, Sequence

from playfix.models import Attachment, AttachmentKind


_UNSAFE_NAME_RE = re.compile(r"[^a-zA-Z0-9._-]")
_CHUNK = 1024 * 1024

# Multipart field -> (attachment kind, max files)
UPLOAD_FIELDS: Dict[str, tuple[AttachmentKind, int]] = {
    "trace": (AttachmentKind.trace, 1),
    "video": (AttachmentKind.video, 1),
    "sourceCode": (AttachmentKind.source_code, 1),
    "screenshots": (AttachmentKind.screenshot, 10),
}


class UploadLimitError(ValueError):
    status_code = 413


@dataclass(frozen=True)
class IncomingFile:
    field: str
    filename: str
    content_type: Optional[str]
    stream: BinaryIO


def safe_stored_name(original: str) -> str:
    prefix = f"{int(time.time() * 1000)}-{secrets.randbelow(1_000_000)}"
    return f"{prefix}-{_UNSAFE_NAME_RE.sub('_', os.path.basename(original or 'upload'))}"


@dataclass(frozen=True)
class UploadStore:
    """
    Persists multipart artifacts under `upload_dir`. Files are never cleaned up; that is the
    caller's retention problem.
    """

    upload_dir: str
    max_file_bytes: int = 500 * 1024 * 1024
    max_screenshots: int = 10

    def _limit(self, field: str) -> int:
        kind_limit = UPLOAD_FIELDS[field][1]
        return self.max_screenshots if field == "screenshots" else kind_limit

    def check_counts(self, files: Sequence[IncomingFile]) -> None:
        counts: Dict[str, int] = {}
        for f in files:
            if f.field not in UPLOAD_FIELDS:
                raise UploadLimitError(f"Unexpected file field: {f.field}")
            counts[f.field] = counts.get(f.field, 0) + 1
        for field, n in counts.items():
            if n > self._limit(field):
                raise UploadLimitError(f"Too many files for field {field}: {n} > {self._limit(field)}")

    def save_all(self, files: Sequence[IncomingFile]) -> List[Attachment]:
        self.check_counts(files)
        os.makedirs(self.upload_dir, exist_ok=True)
        out: List[Attachment] = []
        for f in files:
            out.append(self._save_one(f))
        return out

    def _save_one(self, f: IncomingFile) -> Attachment:
        stored = os.path.join(self.upload_dir, safe_stored_name(f.filename))
        written = 0
        try:
            with open(stored, "wb") as dst:
                while True:
                    chunk = f.stream.read(_CHUNK)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > self.max_file_bytes:
                        raise UploadLimitError(f"File too large for field {f.field}: limit is {self.max_file_bytes} bytes")
                    dst.write(chunk)
        except UploadLimitError:
            os.remove(stored)
            raise
        return Attachment(
            kind=UPLOAD_FIELDS[f.field][0],
            filename=f.filename,
            stored_path=stored,
            content_type=f.content_type,
            size_bytes=written,
        )
