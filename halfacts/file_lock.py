"""
Cache File Lock — cross-process exclusive lock scoped to one cache path.

The lock is a ``<path>.lock`` sibling holding ``<hostname> <pid>`` of the
owner.  It is written in full to a private file first and hard-linked into
place, so a lock that exists is never empty.  A dead owner's lock is
renamed aside before it is deleted, so only the lock that was inspected can
be reclaimed.  Callers get three primitives: ``try_acquire``, ``release``
and ``wait_for_unlock``; the policy of what to do when a lock cannot be
taken lives with the caller.
"""

import os
import time
import errno
import socket
import logging
import threading
from enum import Enum
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

INITIAL_BACKOFF = 0.01
MAX_BACKOFF = 0.5
DEFAULT_TIMEOUT = 90.0


class LockState(Enum):
    OWNED = "owned"         # we hold the lock
    SHARED = "shared"       # another live process holds it
    ERROR = "error"         # the lock file could not be created or inspected


class WaitResult(Enum):
    UNLOCKED = "unlocked"
    OWNER_DIED = "owner-died"
    TIMEOUT = "timeout"


class CacheFileLock:

    def __init__(self, path: str):
        self.path = path
        self.lock_path = path + ".lock"
        self.owned = False
        self.error: Optional[OSError] = None
        self._inode: Optional[int] = None

    def try_acquire(self) -> LockState:
        """One non-blocking acquisition attempt.  Dead owners are cleared first."""
        unique = self._unique_path("tmp")
        try:
            with open(unique, "w", encoding="utf-8") as f:
                f.write(f"{socket.gethostname()} {os.getpid()}")
            inode = os.stat(unique).st_ino
        except OSError as e:
            self.error = e
            try:
                os.remove(unique)
            except OSError:
                pass
            return LockState.ERROR

        try:
            for _ in range(2):
                try:
                    os.link(unique, self.lock_path)
                except FileExistsError:
                    stale_owner = self.owner()
                    if self._owner_alive():
                        return LockState.SHARED
                    if stale_owner is not None:
                        self._reclaim(stale_owner)
                    continue
                except OSError as e:
                    self.error = e
                    return LockState.ERROR
                self._inode = inode
                self.owned = True
                return LockState.OWNED
            return LockState.SHARED
        finally:
            _unlink(unique)

    def release(self):
        """Remove the lock file, unless it is no longer the one we created."""
        if not self.owned:
            return
        self.owned = False
        try:
            current = os.stat(self.lock_path).st_ino
        except FileNotFoundError:
            return
        except OSError as e:
            logger.warning("Cannot inspect lock %s: %s", self.lock_path, e)
            return
        if current == self._inode:
            self._remove()
        else:
            logger.warning("Lock %s was replaced by another process; leaving it", self.lock_path)

    def force_remove(self):
        """Clear the lock artifact regardless of who owns it."""
        self.owned = False
        self._remove()

    def wait_for_unlock(self, timeout: float = DEFAULT_TIMEOUT) -> WaitResult:
        """Block until the lock file disappears, its owner dies, or ``timeout`` passes."""
        deadline = time.monotonic() + timeout
        delay = INITIAL_BACKOFF
        while True:
            if not os.path.exists(self.lock_path):
                return WaitResult.UNLOCKED
            if not self._owner_alive():
                return WaitResult.OWNER_DIED
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return WaitResult.TIMEOUT
            time.sleep(min(delay, remaining))
            delay = min(delay * 2, MAX_BACKOFF)

    # ────────────────────────────────────────────────────────────────
    #  Owner bookkeeping
    # ────────────────────────────────────────────────────────────────

    def owner(self) -> Optional[Tuple[str, int]]:
        """(hostname, pid) recorded in the lock file, or None if unreadable."""
        return _read_owner(self.lock_path)

    def _owner_alive(self) -> bool:
        if not os.path.exists(self.lock_path):
            return False
        owner = self.owner()
        if owner is None:
            # foreign format
            return True
        host, pid = owner
        if host != socket.gethostname():
            return True
        return _pid_alive(pid)

    def _reclaim(self, stale_owner: Tuple[str, int]):
        """Move the lock aside and delete it if it still belongs to ``stale_owner``."""
        aside = self._unique_path("stale")
        try:
            os.rename(self.lock_path, aside)
        except FileNotFoundError:
            return
        except OSError as e:
            logger.warning("Cannot move stale lock %s aside: %s", self.lock_path, e)
            return
        try:
            if _read_owner(aside) == stale_owner:
                logger.info("Removing stale lock %s of pid %d", self.lock_path, stale_owner[1])
                return
            # a live owner took the lock after it was inspected
            try:
                os.link(aside, self.lock_path)
            except FileExistsError:
                logger.warning("Lock %s was retaken while restoring it", self.lock_path)
            except OSError as e:
                logger.warning("Cannot restore lock %s: %s", self.lock_path, e)
        finally:
            _unlink(aside)

    def _unique_path(self, suffix: str) -> str:
        return (f"{self.lock_path}.{socket.gethostname()}.{os.getpid()}"
                f".{threading.get_ident()}.{suffix}")

    def _remove(self):
        _unlink(self.lock_path)


def _read_owner(path: str) -> Optional[Tuple[str, int]]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            host, _, pid = f.read().strip().partition(" ")
        return host, int(pid)
    except (OSError, ValueError):
        return None


def _unlink(path: str):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except OSError as e:
        # EPERM: exists but owned by someone else
        return e.errno == errno.EPERM
    return True
