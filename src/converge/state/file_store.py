"""JSON-file state store with atomic writes and an exclusive lock file."""

import json
import os
import socket
import tempfile
import time
import uuid
from pathlib import Path
from pydantic import ValidationError as PydanticValidationError
from .models import StateSnapshot, STATE_FORMAT_VERSION
from .store import StateStore
from ..utils.errors import StateLockError, StateStoreError
from ..utils.logging import get_logger

logger = get_logger("state.file_store")


class FileStateStore(StateStore):
    """
    Stores the snapshot as JSON at ``path``; the lock lives at ``path.lock``.

    Saves write a temporary file in the same directory and rename it over the
    target, so a crash mid-write never leaves a truncated state file.
    """

    def __init__(self, path):
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")

    def load(self) -> StateSnapshot:
        if not self.path.exists():
            logger.debug(f"No state file at {self.path}, starting from empty state")
            return StateSnapshot()

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StateStoreError(f"Invalid JSON in state file {self.path}: {e}")
        except OSError as e:
            raise StateStoreError(f"Error reading state file {self.path}: {e}")

        if data.get("format_version", STATE_FORMAT_VERSION) > STATE_FORMAT_VERSION:
            raise StateStoreError(
                f"State file {self.path} has format version {data['format_version']}, "
                f"newer than supported version {STATE_FORMAT_VERSION}"
            )

        try:
            return StateSnapshot.model_validate(data)
        except PydanticValidationError as e:
            raise StateStoreError(f"Invalid state file {self.path}: {e}")

    def save(self, snapshot: StateSnapshot) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(snapshot.model_dump(mode="json"), indent=2, sort_keys=True) + "\n"

        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StateStoreError(f"Failed to write state file {self.path}: {e}")

        logger.debug(f"Saved state serial {snapshot.serial} to {self.path}")

    def lock(self, ttl: float) -> str:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        lock_id = str(uuid.uuid4())
        info = {
            "id": lock_id,
            "owner": f"{socket.gethostname()}:{os.getpid()}",
            "expires_at": time.time() + ttl,
        }

        for _ in range(2):
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                if not self._break_expired_lock():
                    holder = self._read_lock()
                    raise StateLockError(
                        f"State {self.path} is locked by {holder.get('owner', 'unknown')} "
                        f"(lock {holder.get('id', '?')})"
                    )
                continue
            except OSError as e:
                raise StateLockError(f"Could not create lock file {self.lock_path}: {e}")

            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(info, f)
            return lock_id

        raise StateLockError(f"Could not acquire state lock {self.lock_path}")

    def renew(self, lock_id: str, ttl: float) -> None:
        holder = self._read_lock()
        if holder.get("id") != lock_id:
            raise StateLockError(f"Lock {lock_id} is no longer held (current holder: {holder.get('id')})")
        holder["expires_at"] = time.time() + ttl

        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.lock_path.name}.", suffix=".tmp", dir=self.lock_path.parent)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(holder, f)
            os.replace(tmp_name, self.lock_path)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StateLockError(f"Could not renew lock file {self.lock_path}: {e}")

    def unlock(self, lock_id: str) -> None:
        holder = self._read_lock()
        if holder.get("id") != lock_id:
            raise StateLockError(f"Lock {lock_id} is not held (current holder: {holder.get('id')})")
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            pass

    def _read_lock(self) -> dict:
        try:
            with open(self.lock_path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError):
            return {}

    def _break_expired_lock(self) -> bool:
        holder = self._read_lock()
        expires_at = holder.get("expires_at")
        if expires_at is None or expires_at > time.time():
            return False
        logger.warning(f"Breaking expired state lock held by {holder.get('owner', 'unknown')}")
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            pass
        return True
