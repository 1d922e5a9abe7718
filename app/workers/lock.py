# app/workers/lock.py
"""
Single-host worker lock.

An O_CREAT|O_EXCL lock file. Best effort only: it does not coordinate
workers on different hosts, and the stale-reclaim check is itself racy
between two workers that both observe a stale file.
"""
from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

logger = logging.getLogger("marketplace.payouts.lock")


@dataclass
class HostLock:
    path: str

    def release(self) -> None:
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass


def acquire_lock(
    path: str,
    *,
    stale_seconds: int = 600,
    now: Callable[[], float] = time.time,
) -> Optional[HostLock]:
    """Returns None when another live run holds the lock."""
    try:
        age = now() - os.stat(path).st_mtime
        if age > stale_seconds:
            logger.warning("payout_worker_lock_stale path=%s age_s=%d", path, int(age))
            os.unlink(path)
    except FileNotFoundError:
        pass

    try:
        fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError:
        return None

    with os.fdopen(fd, "w") as fh:
        json.dump(
            {"started_at": datetime.now(timezone.utc).isoformat(), "pid": os.getpid()},
            fh,
        )
    return HostLock(path=path)
