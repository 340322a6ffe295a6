"""Coordination between the `serve` daemon and one-shot CLI commands.

The daemon holds an fcntl lock whose file carries its PID, publishes its
crawler status to a JSON file, and accepts SIGUSR1 as a request to run a
crawl cycle through its own re-entrancy guard.
"""

from __future__ import annotations

import errno
import fcntl
import json
import logging
import os
import signal
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)

CRAWL_REQUEST_SIGNAL = "SIGUSR1"


class ProcessLock:
    """Process lock to prevent multiple instances from running simultaneously"""

    def __init__(self, lock_file):
        self.lock_file = lock_file
        self.lock_file_handle = None

    def _open(self):
        lock_dir = os.path.dirname(self.lock_file)
        if lock_dir:
            os.makedirs(lock_dir, exist_ok=True)
        # Append mode: a failed attempt must not truncate the holder's PID.
        return open(self.lock_file, "a+")

    def acquire(self, quiet=False):
        """Acquire a lock, return True if successful, False otherwise"""
        handle = self._open()
        try:
            fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            handle.close()
            if e.errno in (errno.EAGAIN, errno.EACCES):
                if not quiet:
                    logger.warning(f"Another newswire process is already running (lock: {self.lock_file})")
            else:
                logger.error(f"Failed to acquire process lock: {e}")
            return False

        handle.seek(0)
        handle.truncate()
        handle.write(str(os.getpid()))
        handle.flush()
        self.lock_file_handle = handle
        logger.info(f"Process lock acquired (PID: {os.getpid()})")
        return True

    def release(self):
        """Release the lock"""
        if self.lock_file_handle:
            try:
                fcntl.flock(self.lock_file_handle, fcntl.LOCK_UN)
                self.lock_file_handle.close()
                self.lock_file_handle = None
                logger.info("Process lock released")
            except OSError as e:
                logger.error(f"Error releasing process lock: {e}")

    def is_held(self) -> bool:
        """True if some process (this one included, through another handle) holds the lock."""
        if not os.path.exists(self.lock_file):
            return False
        with self._open() as handle:
            try:
                fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except OSError as e:
                if e.errno in (errno.EAGAIN, errno.EACCES):
                    return True
                raise
            fcntl.flock(handle, fcntl.LOCK_UN)
            return False

    def holder_pid(self) -> Optional[int]:
        try:
            with open(self.lock_file) as f:
                text = f.read().strip()
        except OSError:
            return None
        return int(text) if text.isdigit() else None


def request_crawl(pid: Optional[int]) -> bool:
    """Ask the daemon with `pid` to run a crawl cycle. Returns True if signalled."""
    if pid is None:
        logger.warning("Lock holder PID unknown, cannot request a crawl cycle")
        return False
    if pid == os.getpid():
        logger.info("This process already owns the crawler, not signalling itself")
        return False
    try:
        os.kill(pid, getattr(signal, CRAWL_REQUEST_SIGNAL))
    except OSError as e:
        logger.error(f"Failed to signal newswire daemon (PID {pid}): {e}")
        return False
    logger.info(f"📨 Crawl cycle requested from running daemon (PID {pid})")
    return True


def write_status_file(path: str, status: Dict[str, Any]) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(status, f, indent=2, ensure_ascii=False)
    os.replace(tmp, path)


def read_status_file(path: str) -> Optional[Dict[str, Any]]:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.warning(f"Unreadable status file {path}: {e}")
        return None
    return data if isinstance(data, dict) else None
