"""
Analysis persistence with JSON Lines storage.

This module provides the AnalysisStore class, the single owner of Analysis
rows. Every write happens under the store's thread lock plus an exclusive
OS lock on ``<store>.lock`` and replaces the whole file through a temporary
sibling, so the API workers, the background sweeper and CLI invocations can
share one store file and readers never see a half-written row.

Concurrent status writers are reconciled with a per-row ``version`` column:
``compare_and_swap`` only succeeds when the caller's expected version is the
stored one.
"""

import json
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List, Optional

from flowgate.core.exceptions import (
    AnalysisNotFoundError,
    AnalysisStoreError,
    StaleWriteError,
)
from flowgate.core.schemas.analysis import Analysis, AnalysisStatus
from flowgate.utils.logger import get_logger

if os.name == "nt":  # pragma: no cover
    import msvcrt

    def _lock_fd(fd: int) -> None:
        msvcrt.locking(fd, msvcrt.LK_LOCK, 1)

    def _unlock_fd(fd: int) -> None:
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)

else:
    import fcntl

    def _lock_fd(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_EX)

    def _unlock_fd(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_UN)


logger = get_logger(__name__)

class AnalysisStore:
    """
    Thread- and process-safe Analysis rows with JSON Lines persistence.

    Features:
        - JSON Lines (.jsonl) format, one Analysis per line
        - Schema validation on read/write
        - Atomic writes (temp file + rename)
        - Monotonic integer ids starting at 1
        - Optimistic concurrency through the ``version`` column

    Attributes:
        store_file: Path to the JSON Lines file
    """

    def __init__(self, store_file: Path):
        """
        Initialize the store.

        Args:
            store_file: Path to the store file (created if it doesn't exist)
        """
        self.store_file = Path(store_file)
        self._lock = threading.Lock()
        self.lock_file = self.store_file.with_suffix(".lock")

        self.store_file.parent.mkdir(parents=True, exist_ok=True)
        if not self.store_file.exists():
            self.store_file.touch()

        logger.debug(f"Initialized AnalysisStore at {self.store_file}")

    @contextmanager
    def _locked(self):
        """Exclusive access for read-modify-write cycles, across threads and processes."""
        with self._lock, open(self.lock_file, "a+") as handle:
            _lock_fd(handle.fileno())
            try:
                yield
            finally:
                _unlock_fd(handle.fileno())

    def add(self, analysis: Analysis) -> Analysis:
        """
        Persist a new Analysis and assign its id.

        Args:
            analysis: Analysis to insert; its ``id`` is ignored

        Returns:
            Analysis: The stored copy, with ``id`` set and ``version`` bumped
        """
        with self._locked():
            entries = self._load_entries()
            next_id = max((e.id or 0 for e in entries), default=0) + 1
            stored = analysis.model_copy(
                update={"id": next_id, "version": analysis.version + 1}
            )
            entries.append(stored)
            self._rewrite(entries)
            logger.debug(
                f"Added analysis {next_id} (job {stored.job_number}, "
                f"status {stored.analysis_status.name})"
            )
            return stored

    def get(self, analysis_id: int) -> Analysis:
        """
        Retrieve an Analysis by id.

        Raises:
            AnalysisNotFoundError: If no row has this id
        """
        with self._lock:
            for entry in self._load_entries():
                if entry.id == analysis_id:
                    return entry
        raise AnalysisNotFoundError(
            f"Analysis '{analysis_id}' not found", {"analysis_id": analysis_id}
        )

    def find_by_job_number(self, job_number: str) -> Optional[Analysis]:
        """Return the first Analysis bound to ``job_number``, if any."""
        job_number = str(job_number).strip()
        with self._lock:
            for entry in self._load_entries():
                if entry.job_number == job_number:
                    return entry
        return None

    def list(
        self,
        experiment_id: Optional[int] = None,
        user: Optional[str] = None,
        include_hidden: bool = True,
    ) -> List[Analysis]:
        """
        List analyses, optionally filtered.

        Args:
            experiment_id: Only rows of this experiment
            user: Only rows submitted by this user
            include_hidden: Whether soft-deleted rows are included

        Returns:
            List[Analysis]: Matching rows in id order
        """
        with self._lock:
            entries = self._load_entries()

        if experiment_id is not None:
            entries = [e for e in entries if e.experiment_id == experiment_id]
        if user is not None:
            entries = [e for e in entries if e.user == user]
        if not include_hidden:
            entries = [
                e for e in entries if e.analysis_status != AnalysisStatus.HIDDEN
            ]
        return sorted(entries, key=lambda e: e.id or 0)

    def compare_and_swap(self, analysis: Analysis, expected_version: int) -> Analysis:
        """
        Replace a row if its stored version still equals ``expected_version``.

        Args:
            analysis: New row contents (matched by ``id``)
            expected_version: Version the caller read before mutating

        Returns:
            Analysis: The stored copy with ``version = expected_version + 1``

        Raises:
            AnalysisNotFoundError: If the row no longer exists
            StaleWriteError: If another writer got there first
        """
        with self._locked():
            entries = self._load_entries()
            for index, entry in enumerate(entries):
                if entry.id != analysis.id:
                    continue
                if entry.version != expected_version:
                    raise StaleWriteError(
                        f"Analysis '{analysis.id}' changed concurrently",
                        {
                            "analysis_id": analysis.id,
                            "expected_version": expected_version,
                            "stored_version": entry.version,
                        },
                    )
                stored = analysis.model_copy(update={"version": expected_version + 1})
                entries[index] = stored
                self._rewrite(entries)
                logger.debug(
                    f"Updated analysis {analysis.id} to version {stored.version} "
                    f"(status {stored.analysis_status.name})"
                )
                return stored

        raise AnalysisNotFoundError(
            f"Analysis '{analysis.id}' not found", {"analysis_id": analysis.id}
        )

    def save(self, analysis: Analysis) -> Analysis:
        """Write back an Analysis previously read from this store."""
        return self.compare_and_swap(analysis, analysis.version)

    def hide(self, analysis_id: int) -> Analysis:
        """
        Soft delete: mark the row HIDDEN so it drops out of user listings.

        Raises:
            AnalysisNotFoundError: If no row has this id
        """
        with self._locked():
            entries = self._load_entries()
            for index, entry in enumerate(entries):
                if entry.id == analysis_id:
                    stored = entry.model_copy(
                        update={
                            "analysis_status": AnalysisStatus.HIDDEN,
                            "version": entry.version + 1,
                        }
                    )
                    entries[index] = stored
                    self._rewrite(entries)
                    logger.info(f"Analysis {analysis_id} hidden")
                    return stored

        raise AnalysisNotFoundError(
            f"Analysis '{analysis_id}' not found", {"analysis_id": analysis_id}
        )

    def erase(self, analysis_id: int) -> None:
        """
        Hard delete: remove the row.

        Raises:
            AnalysisNotFoundError: If no row has this id
        """
        with self._locked():
            entries = self._load_entries()
            remaining = [e for e in entries if e.id != analysis_id]
            if len(remaining) == len(entries):
                raise AnalysisNotFoundError(
                    f"Analysis '{analysis_id}' not found", {"analysis_id": analysis_id}
                )
            self._rewrite(remaining)
            logger.info(f"Analysis {analysis_id} erased")

    def get_statistics(self) -> Dict[str, object]:
        """Count rows, overall and by status name."""
        with self._lock:
            entries = self._load_entries()

        stats = {
            "total_analyses": len(entries),
            "by_status": {status.name: 0 for status in AnalysisStatus},
        }
        for entry in entries:
            stats["by_status"][entry.analysis_status.name] += 1
        return stats

    def _load_entries(self) -> List[Analysis]:
        """
        Load all rows from the store file.

        Raises:
            AnalysisStoreError: If the file cannot be read
        """
        entries = []

        if not self.store_file.exists():
            return entries

        try:
            with open(self.store_file, "r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue

                    try:
                        entries.append(Analysis.from_dict(json.loads(line)))
                    except Exception as e:
                        logger.warning(
                            f"Skipping invalid analysis at line {line_num}: {e}"
                        )
                        continue

            return entries

        except OSError as e:
            logger.error(f"Failed to load analysis store: {e}")
            raise AnalysisStoreError(f"Failed to load analysis store: {e}") from e

    def _rewrite(self, entries: List[Analysis]) -> None:
        """
        Replace the store file with ``entries``, one JSON row per line.

        Rows go to a temporary file in the same directory, which is synced
        and then renamed over the store.

        Raises:
            AnalysisStoreError: If the file cannot be written
        """
        fd, temp_name = tempfile.mkstemp(
            prefix=f".{self.store_file.name}.", suffix=".tmp", dir=self.store_file.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as out:
                for entry in entries:
                    out.write(json.dumps(entry.to_dict()) + "\n")
                out.flush()
                os.fsync(out.fileno())
            os.replace(temp_name, self.store_file)
        except OSError as e:
            if os.path.exists(temp_name):
                os.unlink(temp_name)
            logger.error(f"Failed to rewrite analysis store {self.store_file}: {e}")
            raise AnalysisStoreError(f"Failed to write analysis store: {e}") from e
