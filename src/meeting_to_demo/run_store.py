from __future__ import annotations

import fcntl
import logging
import os
import re
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from pydantic import ValidationError

from .canonical import fingerprint
from .errors import PersistenceError, RunNotFoundError, RunValidationError
from .models import RunRecord

logger = logging.getLogger(__name__)

_RECORD_FILENAME = "run_record.json"
_LOCK_SUFFIX = ".lock"
_LOCKS_DIRNAME = ".locks"
_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
_SAFE_NAME_RE = re.compile(r"[^A-Za-z0-9_.-]+")


# ---------------------------------------------------------------------------
# File helpers
# ---------------------------------------------------------------------------

@contextmanager
def _locked_file(lock_path: Path) -> Iterator[None]:
    """Hold an exclusive ``fcntl`` lock on *lock_path*.

    The lock file is separate from the data file so the data file can still
    be replaced atomically while the lock is held.
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+", encoding="utf-8") as lock_handle:
        fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)


def _atomic_write_text(path: Path, content: str) -> None:
    """Write *content* to *path* via temp file, fsync and ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
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


def _check_run_id(run_id: str) -> str:
    if not isinstance(run_id, str) or not _SAFE_ID_RE.match(run_id):
        raise RunValidationError(f"run_id must be filesystem-safe, got: {run_id!r}")
    return run_id


# ---------------------------------------------------------------------------
# RunStore
# ---------------------------------------------------------------------------

class RunStore:
    """Filesystem store holding one JSON run record per ``run_id``.

    Layout::

        <root>/<run_id>/run_record.json
        <root>/<run_id>/artifacts/<name>-<fingerprint>.<suffix>
        <root>/.locks/<run_id>.lock

    The store is the only source of truth for run records: nothing is cached
    in memory, every ``get`` reads and validates the file on disk. ``save`` is
    last-writer-wins; callers that need read-modify-write isolation hold
    :meth:`run_lock` around the sequence.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"run store root {self.root} is not writable: {exc}") from exc

    def run_dir(self, run_id: str) -> Path:
        return self.root / _check_run_id(run_id)

    def record_path(self, run_id: str) -> Path:
        return self.run_dir(run_id) / _RECORD_FILENAME

    def artifacts_dir(self, run_id: str) -> Path:
        return self.run_dir(run_id) / "artifacts"

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def save(self, record: RunRecord) -> Path:
        """Persist the full record, creating the run directory if needed.

        Raises:
            PersistenceError: If the record cannot be written.
        """
        path = self.record_path(record.run_id)
        try:
            _atomic_write_text(path, record.model_dump_json(indent=2))
        except OSError as exc:
            raise PersistenceError(f"failed to write run {record.run_id} to {path}: {exc}") from exc
        logger.debug("Saved run %s (status=%s, stage=%s)", record.run_id, record.status.value, record.stage.value)
        return path

    def get(self, run_id: str) -> RunRecord | None:
        """Load and validate one record.

        Returns ``None`` when the record does not exist or is unreadable; an
        unreadable record is logged and never raised to the caller so a corrupt
        file only affects its own run.
        """
        path = self.record_path(run_id)
        if not path.is_file():
            return None
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.error("Run %s at %s is unreadable: %s", run_id, path, exc)
            return None
        try:
            return RunRecord.model_validate_json(text)
        except ValidationError as exc:
            logger.error("Run %s at %s failed validation: %s", run_id, path, exc)
            return None

    def require(self, run_id: str) -> RunRecord:
        record = self.get(run_id)
        if record is None:
            raise RunNotFoundError(run_id)
        return record

    def list(self) -> list[RunRecord]:
        """Return every readable record (full directory scan, unordered).

        Directories whose name is not a valid run id are logged and skipped.
        """
        records: list[RunRecord] = []
        for path in self.root.glob(f"*/{_RECORD_FILENAME}"):
            run_id = path.parent.name
            if not _SAFE_ID_RE.match(run_id):
                logger.error("Skipping %s: directory name is not a valid run id", path)
                continue
            record = self.get(run_id)
            if record is not None:
                records.append(record)
        return records

    @contextmanager
    def run_lock(self, run_id: str) -> Iterator[None]:
        """Exclusive cross-process lock for one run's load/mutate/save sequence.

        Raises:
            RunNotFoundError: No record exists for ``run_id``; nothing is created.
        """
        if not self.record_path(run_id).is_file():
            raise RunNotFoundError(run_id)
        lock_path = self.root / _LOCKS_DIRNAME / f"{_check_run_id(run_id)}{_LOCK_SUFFIX}"
        with _locked_file(lock_path):
            yield

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def write_artifact(self, run_id: str, name: str, content: str, *, suffix: str = ".txt") -> str:
        """Write a generated artifact addressed by its content fingerprint.

        Writing the same content twice resolves to the same file, so steps that
        write artifacts can be retried from the same input.

        Returns:
            The artifact path relative to the store root.

        Raises:
            PersistenceError: If the artifact cannot be written.
        """
        safe_name = _SAFE_NAME_RE.sub("-", name.strip()).strip("-")
        if not safe_name:
            raise RunValidationError("artifact name must contain filesystem-safe characters")
        filename = f"{safe_name}-{fingerprint(content)[:12]}{suffix}"
        path = self.artifacts_dir(run_id) / filename
        if not path.is_file():
            try:
                _atomic_write_text(path, content)
            except OSError as exc:
                raise PersistenceError(f"failed to write artifact {filename} for run {run_id}: {exc}") from exc
            logger.info("Wrote artifact %s for run %s", filename, run_id)
        return path.relative_to(self.root).as_posix()

    def read_artifact(self, relative_path: str) -> str:
        """Read an artifact by its store-relative path.

        Raises:
            RunValidationError: The path resolves outside the store root.
            FileNotFoundError: No artifact exists at the path.
        """
        root = self.root.resolve()
        path = (root / relative_path).resolve()
        if not path.is_relative_to(root):
            raise RunValidationError(f"artifact path escapes the run store: {relative_path!r}")
        if not path.is_file():
            raise FileNotFoundError(f"artifact not found: {path}")
        return path.read_text(encoding="utf-8")
