"""File-backed document store for prompt documents.

Each document lives at ``<root>/<tier>/<id>.md`` with its update log in a
``<id>.log.json`` sidecar. Bodies are never destroyed: replacing a body moves
the superseded text into the update log.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, TypeVar

from .errors import DocumentStoreError
from .models import DOCUMENT_TIERS, PromptDocument, UpdateLogEntry, is_document_id, utc_timestamp
from .phasekit_logging import log_document_updated

logger = logging.getLogger("phasekit.documents")

T = TypeVar("T")

_BODY_SUFFIX = ".md"
_LOG_SUFFIX = ".log.json"


def atomic_write_text(path: Path, content: str) -> None:
    """Write to a temp file in the same directory, then rename into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


@dataclass(slots=True)
class DocumentSnapshot:
    """Raw on-disk content of one document, for restoring after a failed write."""

    tier: str
    doc_id: str
    body: Optional[str]
    log: Optional[str]


class DocumentStore:
    """Addressable read/write access to prompt documents keyed by tier and id."""

    def __init__(self, root: Path | str, *, retries: int = 3, backoff_seconds: float = 0.05):
        self.root = Path(root).resolve()
        self.retries = max(1, retries)
        self.backoff_seconds = backoff_seconds
        for tier in DOCUMENT_TIERS:
            (self.root / tier).mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _check_key(self, tier: str, doc_id: str) -> None:
        if tier not in DOCUMENT_TIERS:
            raise ValueError(f"Unknown document tier: {tier}")
        if not is_document_id(doc_id):
            raise ValueError(f"Invalid document id: {doc_id!r}")

    def body_path(self, tier: str, doc_id: str) -> Path:
        self._check_key(tier, doc_id)
        return self.root / tier / f"{doc_id}{_BODY_SUFFIX}"

    def log_path(self, tier: str, doc_id: str) -> Path:
        self._check_key(tier, doc_id)
        return self.root / tier / f"{doc_id}{_LOG_SUFFIX}"

    def resolve(self, path: str) -> Optional[Path]:
        """Resolve a knowledge-index path to a file inside the store, if it exists."""
        candidate = (self.root / path).resolve()
        if not candidate.is_relative_to(self.root):
            logger.warning(f"Index path escapes document store: {path}")
            return None
        return candidate if candidate.is_file() else None

    # ------------------------------------------------------------------
    # I/O with bounded retries
    # ------------------------------------------------------------------

    def _with_retries(self, description: str, operation: Callable[[], T]) -> T:
        delay = self.backoff_seconds
        for attempt in range(1, self.retries + 1):
            try:
                return operation()
            except OSError as e:
                if attempt == self.retries:
                    raise DocumentStoreError(
                        f"{description} failed after {self.retries} attempts: {e}"
                    ) from e
                logger.warning(f"{description} failed (attempt {attempt}/{self.retries}): {e}")
                time.sleep(delay)
                delay *= 2
        raise AssertionError("unreachable")

    def _read_optional(self, path: Path) -> Optional[str]:
        def read() -> Optional[str]:
            try:
                return path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return None
        return self._with_retries(f"Reading {path}", read)

    def _write(self, path: Path, content: str) -> None:
        self._with_retries(f"Writing {path}", lambda: atomic_write_text(path, content))

    def _read_log(self, tier: str, doc_id: str) -> List[UpdateLogEntry]:
        raw = self._read_optional(self.log_path(tier, doc_id))
        if raw is None:
            return []
        try:
            return [UpdateLogEntry.from_dict(entry) for entry in json.loads(raw)]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise DocumentStoreError(f"Update log for {tier}/{doc_id} is unreadable: {e}") from e

    def _write_log(self, tier: str, doc_id: str, entries: List[UpdateLogEntry]) -> None:
        self._write(self.log_path(tier, doc_id), json.dumps([e.to_dict() for e in entries], indent=2) + "\n")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, tier: str, doc_id: str) -> Optional[str]:
        """Return the document body, or None when it does not exist."""
        return self._read_optional(self.body_path(tier, doc_id))

    def exists(self, tier: str, doc_id: str) -> bool:
        return self.body_path(tier, doc_id).is_file()

    def load(self, tier: str, doc_id: str) -> Optional[PromptDocument]:
        """Return the full document including its update log."""
        body = self.get(tier, doc_id)
        if body is None:
            return None
        return PromptDocument(tier=tier, doc_id=doc_id, body=body, update_log=self._read_log(tier, doc_id))

    def put(
        self,
        tier: str,
        doc_id: str,
        text: str,
        *,
        change_description: Optional[str] = None,
        timestamp: Optional[str] = None,
    ) -> PromptDocument:
        """Write a document body, keeping any superseded body in the update log."""
        previous = self.get(tier, doc_id)
        entries = self._read_log(tier, doc_id)
        stamp = timestamp or utc_timestamp()

        if previous is None:
            entries.append(UpdateLogEntry(stamp, change_description or "Document created"))
        elif previous != text:
            entries.append(UpdateLogEntry(stamp, change_description or "Document body replaced", previous_body=previous))
        else:
            return PromptDocument(tier=tier, doc_id=doc_id, body=text, update_log=entries)

        self._write(self.body_path(tier, doc_id), text)
        self._write_log(tier, doc_id, entries)
        log_document_updated(tier, doc_id, entries[-1].change_description)
        return PromptDocument(tier=tier, doc_id=doc_id, body=text, update_log=entries)

    def append_update(
        self,
        tier: str,
        doc_id: str,
        change_description: str,
        *,
        timestamp: Optional[str] = None,
    ) -> PromptDocument:
        """Append an update-log entry, creating an empty document on first reference."""
        stamp = timestamp or utc_timestamp()
        body = self.get(tier, doc_id)
        entries = self._read_log(tier, doc_id)
        if body is None:
            body = ""
            self._write(self.body_path(tier, doc_id), body)
            entries.append(UpdateLogEntry(stamp, "Document created"))
        entries.append(UpdateLogEntry(stamp, change_description))
        self._write_log(tier, doc_id, entries)
        log_document_updated(tier, doc_id, change_description)
        return PromptDocument(tier=tier, doc_id=doc_id, body=body, update_log=entries)

    def list_documents(self, tier: Optional[str] = None) -> List[str]:
        """List ``tier/id`` keys, sorted."""
        tiers = [tier] if tier else list(DOCUMENT_TIERS)
        keys = []
        for name in tiers:
            for path in sorted((self.root / name).glob(f"*{_BODY_SUFFIX}")):
                keys.append(f"{name}/{path.name[:-len(_BODY_SUFFIX)]}")
        return keys

    # ------------------------------------------------------------------
    # Staging support
    # ------------------------------------------------------------------

    def snapshot(self, tier: str, doc_id: str) -> DocumentSnapshot:
        """Capture the raw files of a document before changing it."""
        return DocumentSnapshot(
            tier=tier,
            doc_id=doc_id,
            body=self._read_optional(self.body_path(tier, doc_id)),
            log=self._read_optional(self.log_path(tier, doc_id)),
        )

    def restore(self, snapshot: DocumentSnapshot) -> None:
        """Put a document back exactly as captured by :meth:`snapshot`."""
        for path, content in (
            (self.body_path(snapshot.tier, snapshot.doc_id), snapshot.body),
            (self.log_path(snapshot.tier, snapshot.doc_id), snapshot.log),
        ):
            if content is None:
                self._with_retries(f"Removing {path}", lambda p=path: p.unlink(missing_ok=True))
            else:
                self._write(path, content)
        logger.info(f"Restored {snapshot.tier}/{snapshot.doc_id} from snapshot")
