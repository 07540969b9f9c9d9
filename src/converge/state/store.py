"""State stores: persisted mapping from resource address to last applied record."""

import json
import os
import socket
import tempfile
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional
from pydantic import ValidationError as PydanticValidationError
from ..ingest.models import ResourceAddress
from ..utils.errors import LockContentionError, StateError
from ..utils.logging import get_logger
from .models import StateRecord

logger = get_logger("state.store")

LOCK_FILE_NAME = ".converge.lock"


class StateStore(ABC):
    """
    Persisted record of previously applied resources.

    Each commit is atomic for one resource. A run holds an advisory lock for its
    whole duration; a second run against the same store fails fast.
    """

    @abstractmethod
    def load(self) -> Dict[ResourceAddress, StateRecord]:
        """Return a snapshot of all records."""

    @abstractmethod
    def commit(self, address: ResourceAddress, record: Optional[StateRecord]) -> None:
        """Atomically write one record, or remove it when ``record`` is None."""

    @abstractmethod
    def lock(self, run_id: str) -> None:
        """Acquire the advisory run lock or raise LockContentionError."""

    @abstractmethod
    def unlock(self, run_id: str) -> None:
        """Release the run lock held by ``run_id``."""

    def get(self, address: ResourceAddress) -> Optional[StateRecord]:
        return self.load().get(address)

    @contextmanager
    def locked(self, run_id: Optional[str] = None) -> Iterator[str]:
        """Hold the run lock for the duration of a ``with`` block."""
        run_id = run_id or uuid.uuid4().hex
        self.lock(run_id)
        try:
            yield run_id
        finally:
            self.unlock(run_id)


def _lock_info(run_id: str) -> Dict[str, Any]:
    return {
        "run_id": run_id,
        "pid": os.getpid(),
        "host": socket.gethostname(),
        "created_at": datetime.now(timezone.utc).isoformat(),
    }


class InMemoryStateStore(StateStore):
    """State store held in process memory (tests, dry runs)."""

    def __init__(self, records: Optional[Dict[ResourceAddress, StateRecord]] = None):
        self._records: Dict[ResourceAddress, StateRecord] = dict(records or {})
        self._mutex = threading.Lock()
        self._holder: Optional[Dict[str, Any]] = None
        self.commit_log = []

    def load(self) -> Dict[ResourceAddress, StateRecord]:
        with self._mutex:
            return {address: record.model_copy(deep=True) for address, record in self._records.items()}

    def commit(self, address: ResourceAddress, record: Optional[StateRecord]) -> None:
        with self._mutex:
            if record is None:
                self._records.pop(address, None)
            else:
                self._records[address] = record.model_copy(deep=True)
            self.commit_log.append((address, record is not None))

    def lock(self, run_id: str) -> None:
        with self._mutex:
            if self._holder is not None:
                raise LockContentionError(
                    f"State is locked by run {self._holder['run_id']}", holder=dict(self._holder)
                )
            self._holder = _lock_info(run_id)

    def unlock(self, run_id: str) -> None:
        with self._mutex:
            if self._holder is not None and self._holder["run_id"] == run_id:
                self._holder = None

    @property
    def is_locked(self) -> bool:
        return self._holder is not None


class FileStateStore(StateStore):
    """
    Directory-backed state store.

    Layout::

        <state_dir>/resources/<type>.<name>.json   one file per record
        <state_dir>/.converge.lock                 advisory run lock
    """

    def __init__(self, state_dir: str):
        self.state_dir = Path(state_dir)
        self.resources_dir = self.state_dir / "resources"
        self.lock_path = self.state_dir / LOCK_FILE_NAME
        self._mutex = threading.Lock()

    def load(self) -> Dict[ResourceAddress, StateRecord]:
        records: Dict[ResourceAddress, StateRecord] = {}
        if not self.resources_dir.exists():
            return records

        for path in sorted(self.resources_dir.glob("*.json")):
            if path.name.startswith("."):
                continue
            record = self._read_record(path)
            if path.name != self._file_name(record.address):
                raise StateError(f"State file {path} holds record for {record.address}")
            records[record.address] = record

        logger.debug(f"Loaded {len(records)} state records from {self.resources_dir}")
        return records

    def commit(self, address: ResourceAddress, record: Optional[StateRecord]) -> None:
        path = self.resources_dir / self._file_name(address)
        with self._mutex:
            if record is None:
                try:
                    path.unlink()
                except FileNotFoundError:
                    pass
                except OSError as e:
                    raise StateError(f"Failed to remove state record {path}: {e}")
                logger.debug(f"Removed state record {address}")
                return

            if record.address != address:
                raise StateError(f"Record for {record.address} committed under {address}")
            try:
                self.resources_dir.mkdir(parents=True, exist_ok=True)
                fd, tmp_path = tempfile.mkstemp(dir=self.resources_dir, prefix=".tmp-", suffix=".json")
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(record.model_dump(mode="json"), f, indent=2, sort_keys=True)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, path)
            except OSError as e:
                raise StateError(f"Failed to write state record {path}: {e}")
            logger.debug(f"Committed state record {address}")

    def lock(self, run_id: str) -> None:
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            holder = self.lock_holder() or {}
            raise LockContentionError(
                f"State at {self.state_dir} is locked by run {holder.get('run_id', 'unknown')} "
                f"(pid {holder.get('pid', '?')} on {holder.get('host', '?')}, since {holder.get('created_at', '?')}). "
                "If no other run is active, remove the lock with: converge force-unlock",
                holder=holder,
            )
        except OSError as e:
            raise StateError(f"Failed to create lock file {self.lock_path}: {e}")

        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(_lock_info(run_id), f)
        logger.debug(f"Acquired state lock for run {run_id}")

    def unlock(self, run_id: str) -> None:
        holder = self.lock_holder()
        if holder is None:
            return
        if holder.get("run_id") != run_id:
            logger.warning(f"Not releasing lock held by run {holder.get('run_id')} (this run: {run_id})")
            return
        self._remove_lock()
        logger.debug(f"Released state lock for run {run_id}")

    def lock_holder(self) -> Optional[Dict[str, Any]]:
        """Return the lock file contents, or None when unlocked."""
        try:
            with open(self.lock_path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError):
            return {"run_id": "unknown"}

    def force_unlock(self) -> Optional[Dict[str, Any]]:
        """Remove a stale lock regardless of holder; return the removed holder info."""
        holder = self.lock_holder()
        if holder is not None:
            self._remove_lock()
            logger.warning(f"Force-released state lock held by run {holder.get('run_id')}")
        return holder

    def _remove_lock(self) -> None:
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            pass

    def _read_record(self, path: Path) -> StateRecord:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return StateRecord.model_validate(data)
        except json.JSONDecodeError as e:
            raise StateError(f"Corrupt state record {path}: {e}")
        except PydanticValidationError as e:
            raise StateError(f"Invalid state record {path}: {e}")
        except OSError as e:
            raise StateError(f"Failed to read state record {path}: {e}")

    @staticmethod
    def _file_name(address: ResourceAddress) -> str:
        return f"{address.type}.{address.name}.json"
