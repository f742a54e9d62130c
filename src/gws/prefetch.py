# ABOUTME: Background fetch cache that overlaps network fetches with local work.
# ABOUTME: Runs at most one fetch per repo identity and lets callers wait on it.
"""Deduplicating prefetcher for repo stores."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

from gws import repospec, repostore
from gws.errors import OperationCancelled

logger = logging.getLogger(__name__)

FetchFunc = Callable[..., None]

# How often wait() re-checks the caller's cancellation signal.
_WAIT_POLL_INTERVAL = 0.05


@dataclass
class PrefetchTask:
    """One in-flight background fetch."""

    key: str
    done: threading.Event = field(default_factory=threading.Event)
    error: BaseException | None = None


class Prefetcher:
    """
    Fetches repo stores in background threads, one task per identity.

    Tasks live as long as the Prefetcher: a second start() for an identity
    observes the first task instead of fetching again.
    """

    def __init__(self, timeout: float | None = None, fetch: FetchFunc | None = None) -> None:
        self.timeout = timeout if timeout and timeout > 0 else None
        self._fetch = fetch or repostore.prefetch
        self._lock = threading.Lock()
        self._tasks: dict[str, PrefetchTask] = {}

    @staticmethod
    def _key(location: str) -> str:
        # start() rejects malformed locations, so the raw-text key only serves wait().
        identity = repospec.try_normalize(location)
        if identity is None:
            return location.strip()
        return identity.key

    def start(
        self, root_dir: Path, location: str, *, cancel: threading.Event | None = None
    ) -> bool:
        """
        Start fetching a store unless a fetch for its identity already exists.

        Stores that do not exist yet are skipped; they are cloned when first added.

        Returns:
            True if a fetch is running (new or existing) for the identity.

        Raises:
            ValidationError: If the location cannot be normalized.
        """
        location = location.strip()
        if not location:
            return False
        key = self._key(location)
        _, present = repostore.exists(root_dir, location)
        if not present:
            logger.debug("prefetch skipped for %s: store does not exist", key)
            return False

        with self._lock:
            if key in self._tasks:
                return True
            task = PrefetchTask(key=key)
            self._tasks[key] = task

        thread = threading.Thread(
            target=self._run,
            args=(task, root_dir, location, cancel),
            name=f"gws-prefetch-{key}",
            daemon=True,
        )
        thread.start()
        return True

    def _run(
        self,
        task: PrefetchTask,
        root_dir: Path,
        location: str,
        cancel: threading.Event | None,
    ) -> None:
        try:
            self._fetch(root_dir, location, cancel=cancel, timeout=self.timeout)
        except Exception as e:
            logger.debug("prefetch failed for %s: %s", task.key, e)
            task.error = e
        finally:
            task.done.set()

    def start_all(
        self,
        root_dir: Path,
        locations: Iterable[str],
        *,
        cancel: threading.Event | None = None,
    ) -> bool:
        """Start fetches for several locations; True if any fetch is running."""
        started = False
        for location in locations:
            if self.start(root_dir, location, cancel=cancel):
                started = True
        return started

    def wait(self, location: str, *, cancel: threading.Event | None = None) -> None:
        """
        Block until the fetch for a location finishes.

        Waiting for a location that was never started returns at once.

        Raises:
            The captured fetch error, or OperationCancelled if cancel is set first.
        """
        location = location.strip()
        if not location:
            return
        key = self._key(location)
        with self._lock:
            task = self._tasks.get(key)
        if task is None:
            return

        if cancel is None:
            task.done.wait()
        else:
            while not task.done.wait(_WAIT_POLL_INTERVAL):
                if cancel.is_set():
                    raise OperationCancelled(f"cancelled while waiting for prefetch of {key}")
        if task.error is not None:
            raise task.error

    def wait_all(
        self, locations: Iterable[str], *, cancel: threading.Event | None = None
    ) -> None:
        for location in locations:
            self.wait(location, cancel=cancel)
