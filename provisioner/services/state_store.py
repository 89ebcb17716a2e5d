"""Persist the state document as a local JSON file guarded by a lock file."""

import json
import os
import socket
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

from pydantic import ValidationError

from provisioner.core.exceptions import ProvisionerError, StateLockedError
from provisioner.core.logging import get_state_logger
from provisioner.models.state import StateDocument

logger = get_state_logger()


class StateStore:
    """Load and save ``StateDocument``s.

    Writes go to a temporary file that is renamed over the target, so a
    crash mid-write never leaves a truncated document behind. The file can
    hold a generated password, so it is readable by the owner only.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> StateDocument:
        if not self.path.exists():
            logger.debug("No state file, starting empty", path=str(self.path))
            return StateDocument()
        try:
            return StateDocument.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (ValidationError, ValueError) as e:
            raise ProvisionerError(
                f"State file {self.path} is corrupt: {e}",
                "STATE_CORRUPT",
                {"path": str(self.path)},
            )

    def save(self, state: StateDocument) -> None:
        state.touch()
        self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")

        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(state.model_dump_json(indent=2))
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.path)
        logger.debug("State saved", path=str(self.path), serial=state.serial)

    @contextmanager
    def lock(self) -> Iterator[None]:
        """Hold an exclusive lock on the state for the duration of a run.

        Raises:
            StateLockedError: if another run already holds the lock.
        """
        self.lock_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        try:
            fd = os.open(self.lock_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except FileExistsError:
            holder = None
            try:
                holder = self.lock_path.read_text(encoding="utf-8").strip() or None
            except OSError:
                pass
            raise StateLockedError(str(self.lock_path), holder)

        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(json.dumps({"pid": os.getpid(), "host": socket.gethostname()}))
        logger.debug("State lock acquired", lock_path=str(self.lock_path))
        try:
            yield
        finally:
            try:
                self.lock_path.unlink()
            except FileNotFoundError:
                logger.warning("State lock vanished before release", lock_path=str(self.lock_path))
