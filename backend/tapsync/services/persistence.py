import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from tapsync.protocol import PersistenceFailure, StartupLoadFailure
from tapsync.store import empty_document


def _read_document(path: Path) -> Dict[str, Any]:
    try:
        with path.open('r', encoding='utf-8') as fp:
            data = json.load(fp)
    except (OSError, ValueError) as exc:
        raise StartupLoadFailure(f"cannot read {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise StartupLoadFailure(f"{path} does not hold a JSON object")
    return data


def load_state(path: Path, logger: Optional[logging.Logger] = None) -> Dict[str, Any]:
    """Load the persisted document, falling back to the empty default.

    Never raises: a missing file is expected on first start, a corrupt one is
    reported and replaced by the default on the next flush.
    """
    logger = logger or logging.getLogger(__name__)
    path = Path(path)
    if not path.exists():
        logger.info(f"[load] no state file at {path}, starting empty")
        return empty_document()
    try:
        data = _read_document(path)
    except StartupLoadFailure as exc:
        logger.error(f"[load] {exc}; starting empty")
        return empty_document()
    logger.info(f"[load] loaded state from {path}")
    return data


def write_state(path: Path, data: Dict[str, Any]) -> None:
    """Overwrite ``path`` with ``data`` as JSON, atomically."""
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        text = json.dumps(data, ensure_ascii=False, indent=2, allow_nan=False)
        tmp_fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix='.tmp')
        try:
            with os.fdopen(tmp_fd, 'w', encoding='utf-8') as fp:
                fp.write(text)
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
    except (OSError, TypeError, ValueError) as exc:
        raise PersistenceFailure(f"cannot write {path}: {exc}") from exc


class PersistenceScheduler:
    """Debounced snapshot writer.

    The first ``notify_dirty()`` after a flush starts one background task that
    sleeps ``delay`` seconds and then writes whatever the state holds at that
    moment. Further notifications inside the window are absorbed by it; they do
    not push the write further out.
    """

    def __init__(self, path: Path, snapshot: Callable[[], Dict[str, Any]], delay: float = 2.0,
                 spawn: Optional[Callable[..., Any]] = None,
                 sleep: Callable[[float], Any] = time.sleep,
                 logger: Optional[logging.Logger] = None):
        self.path = Path(path)
        self.snapshot = snapshot
        self.delay = delay
        self.spawn = spawn or _spawn_thread
        self.sleep = sleep
        self.logger = logger or logging.getLogger(__name__)
        self.writes = 0
        self._lock = threading.Lock()
        self._pending = False
        self._generation = 0

    @property
    def pending(self) -> bool:
        return self._pending

    def notify_dirty(self) -> None:
        with self._lock:
            if self._pending:
                return
            self._pending = True
            self._generation += 1
            generation = self._generation
        self.spawn(self._run, generation)

    def cancel(self) -> None:
        """Forget the pending flush, if any. Its task wakes up and does nothing."""
        with self._lock:
            self._pending = False
            self._generation += 1

    def _run(self, generation: int) -> None:
        if self.delay:
            self.sleep(self.delay)
        with self._lock:
            if generation != self._generation:
                self.logger.debug(f"[flush-skip] generation={generation} cancelled")
                return
        self.flush_now()

    def flush_now(self) -> bool:
        """Write the current snapshot. Returns False if the write failed."""
        try:
            write_state(self.path, self.snapshot())
        except PersistenceFailure as exc:
            self.logger.exception(f"[flush] {exc}")
            return False
        finally:
            # a manual flush also supersedes a timer that is still sleeping
            with self._lock:
                self._pending = False
                self._generation += 1
        self.writes += 1
        self.logger.debug(f"[flush] wrote {self.path}")
        return True


def _spawn_thread(target, *args):
    thread = threading.Thread(target=target, args=args, daemon=True)
    thread.start()
    return thread
