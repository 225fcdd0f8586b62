"""File-backed staged-change queue.

Directory layout under the changes root:
- `<root>/*.json`: pending proposals
- `<root>/applied/`, `<root>/rejected/`, `<root>/failed/`: terminal records

The directory is the disposition. Moving a record out of the root is the
only state transition, and it never loses the record: on a name collision
or a vanished source the record lands under a timestamp-prefixed name.

Callers depend on the ChangeQueue protocol so the storage can be swapped
for a table or a queue service.
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Optional, Protocol, Union, runtime_checkable

from src.changes.schemas import Disposition, ReviewerAnnotation, StagedChange

logger = logging.getLogger(__name__)

IGNORED_FILES = {".DS_Store"}


@runtime_checkable
class ChangeQueue(Protocol):
    """Storage contract for staged changes."""

    def ensure_queues(self) -> None: ...

    def list_pending(self, limit: int) -> list[StagedChange]: ...

    def list_stranded(self) -> list[StagedChange]: ...

    def archive(self, change: StagedChange, disposition: Disposition) -> Path: ...

    def annotate(self, change: StagedChange, annotation: ReviewerAnnotation) -> None: ...


def _is_terminal_review(review: Optional[dict]) -> bool:
    if not review:
        return False
    return review.get("disposition") in {d.value for d in Disposition}


class FileChangeQueue:
    """ChangeQueue over a directory of JSON files."""

    def __init__(self, changes_dir: Union[str, Path]):
        self.root = Path(changes_dir)

    def ensure_queues(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        for disposition in Disposition:
            (self.root / disposition.value).mkdir(parents=True, exist_ok=True)

    def _read_all(self) -> list[StagedChange]:
        self.root.mkdir(parents=True, exist_ok=True)
        changes = []
        for path in sorted(self.root.glob("*.json")):
            if not path.is_file() or path.name in IGNORED_FILES:
                continue
            try:
                payload = json.loads(path.read_text(encoding="utf-8"))
                changes.append(StagedChange.from_record(path, payload))
            except (OSError, ValueError) as e:
                # json.JSONDecodeError and pydantic ValidationError are ValueErrors
                logger.error(f"[queue] Skipping unreadable staged change {path.name}: {e}")
        return changes

    def list_pending(self, limit: int) -> list[StagedChange]:
        """Pending changes, newest first, at most `limit`."""
        pending = [c for c in self._read_all() if not _is_terminal_review(c.review)]
        pending.sort(key=lambda c: c.created_at_dt, reverse=True)
        return pending[:limit]

    def list_stranded(self) -> list[StagedChange]:
        """Records that were annotated with a terminal outcome but never moved."""
        return [c for c in self._read_all() if _is_terminal_review(c.review)]

    def archive(self, change: StagedChange, disposition: Disposition) -> Path:
        """Move a change into its disposition directory.

        Returns:
            Final path of the archived record
        """
        disposition = Disposition(disposition)
        target_dir = self.root / disposition.value
        target_dir.mkdir(parents=True, exist_ok=True)
        destination = target_dir / change.file_name

        if not destination.exists():
            try:
                change.file_path.rename(destination)
                logger.info(f"[queue] Archived {change.file_name} as {disposition.value}")
                return destination
            except FileNotFoundError:
                logger.warning(f"[queue] Source of {change.file_name} is gone, writing fallback copy")
                return self._write_fallback(change, target_dir)
        else:
            logger.warning(
                f"[queue] {disposition.value}/{change.file_name} already exists, using fallback name"
            )

        fallback = self._fallback_path(target_dir, change.file_name)
        try:
            change.file_path.rename(fallback)
        except FileNotFoundError:
            return self._write_fallback(change, target_dir)
        logger.info(f"[queue] Archived {change.file_name} as {disposition.value}/{fallback.name}")
        return fallback

    def _fallback_path(self, target_dir: Path, file_name: str) -> Path:
        stamp = int(time.time() * 1000)
        candidate = target_dir / f"{stamp}-{file_name}"
        counter = 1
        while candidate.exists():
            candidate = target_dir / f"{stamp}-{counter}-{file_name}"
            counter += 1
        return candidate

    def _write_fallback(self, change: StagedChange, target_dir: Path) -> Path:
        """Persist the in-memory record when the pending file has vanished."""
        fallback = self._fallback_path(target_dir, change.file_name)
        with open(fallback, "x", encoding="utf-8") as f:
            json.dump(change.raw, f, indent=2, ensure_ascii=False)
        logger.info(f"[queue] Wrote {change.file_name} to {fallback}")
        return fallback

    def annotate(self, change: StagedChange, annotation: ReviewerAnnotation) -> None:
        """Add the `reviewer` block to the record in place.

        Failures are logged and swallowed; archival proceeds regardless.
        """
        block = annotation.to_record()
        change.raw = {**change.raw, "reviewer": block}
        change.review = block

        try:
            payload = json.loads(change.file_path.read_text(encoding="utf-8"))
            data = dict(payload) if isinstance(payload, dict) else {}
            data["reviewer"] = block
            tmp_path = change.file_path.with_name(f".{change.file_name}.tmp")
            tmp_path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, change.file_path)
            change.raw = data
        except (OSError, ValueError) as e:
            logger.error(f"[queue] Failed to annotate {change.file_name} with reviewer outcome: {e}")
