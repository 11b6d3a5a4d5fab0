"""
Advisory file locking for the YAML document backend.

Readers take a shared lock and writers an exclusive lock on a sidecar
``<document>.lock`` file. Locks are best effort: they only coordinate
processes that use them, and may not work on network filesystems.
"""

import fcntl
import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from reqgraph.config import config
from reqgraph.errors import BackendUnavailable

logger = logging.getLogger("reqgraph.locking")


def lock_path_for(path: Path) -> Path:
    """Sidecar lock file, e.g. ``requirements.yaml.lock``."""
    return path.with_name(path.name + ".lock")


@contextmanager
def file_lock(
    path: Path,
    exclusive: bool,
    timeout: Optional[float] = None,
    poll_interval: Optional[float] = None,
) -> Iterator[Path]:
    """
    Hold a shared or exclusive lock on ``path``'s sidecar lock file.

    Args:
        path: The document being protected
        exclusive: Exclusive (write) lock if True, shared (read) lock otherwise
        timeout: Seconds to wait, defaults to ``config.lock_timeout``
        poll_interval: Seconds between attempts, defaults to ``config.lock_poll_interval``

    Yields:
        The lock file path

    Raises:
        BackendUnavailable: If the lock cannot be acquired in time
    """
    timeout = config.lock_timeout if timeout is None else timeout
    poll_interval = config.lock_poll_interval if poll_interval is None else poll_interval
    lock_path = lock_path_for(path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    operation = (fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH) | fcntl.LOCK_NB
    deadline = time.monotonic() + timeout
    with open(lock_path, "a+") as handle:
        waited = False
        while True:
            try:
                fcntl.flock(handle.fileno(), operation)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise BackendUnavailable(
                        path, f"timed out after {timeout:.1f}s waiting for lock (another process may be editing)"
                    ) from None
                if not waited:
                    logger.warning("Waiting for %s lock on %s", "write" if exclusive else "read", path)
                    waited = True
                time.sleep(poll_interval)
        try:
            yield lock_path
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
