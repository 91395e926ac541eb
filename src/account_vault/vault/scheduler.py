"""Save scheduler — coalesce bursty save requests into one serialized write.

Typing into a text field can trigger a save request per keystroke. Writing
the whole encrypted vault each time is wasteful, so requests are debounced:

    1. ``request_save(0)`` with nothing pending writes immediately.
    2. ``request_save(ms)`` with nothing pending opens a debounce window:
       a background thread waits ``ms`` and then writes.
    3. Any request while a window is pending only bumps an extension
       counter (capped at MAX_EXTENSIONS). Each extension adds one more
       wait cycle, and a window never runs more than 1 + MAX_EXTENSIONS
       cycles, so it always flushes eventually.

Key design:
    - One write lock serializes every write; ``exclusive()`` hands the same
      lock to load/rekey so they never interleave with a flush.
    - The pending flag is cleared before the write starts, so changes made
      during a write schedule a fresh save rather than being lost.
    - A failing write is logged and kept in ``last_error``; it never kills
      the worker. The next request retries.
    - ``close()`` flushes whatever is pending and joins the worker.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from ..errors import IOFailure, KeyNotSet

logger = logging.getLogger(__name__)

MAX_EXTENSIONS = 2


class SaveScheduler:
    """Debounced, single-writer save coordinator.

    Args:
        write: Callable performing one full serialize + write. May raise
            ``IOFailure`` (logged) or ``KeyNotSet`` (propagated when the
            write runs on the caller's thread).
        name: Worker thread name.
    """

    def __init__(self, write: Callable[[], None], name: str = "vault-save"):
        self._write_fn = write
        self._name = name

        self._lock = threading.Lock()            # guards scheduling state
        self._write_lock = threading.RLock()     # single writer
        self._wake = threading.Event()           # cut the current wait short

        self._pending = False
        self._extensions = 0
        self._thread: Optional[threading.Thread] = None

        self.write_count = 0
        self.last_error: Optional[BaseException] = None

    # ── Introspection ────────────────────────────────────────────

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._pending

    # ── Requests ─────────────────────────────────────────────────

    def request_save(self, timeout_ms: int = 0) -> None:
        """Ask for the vault to be written, now or after ``timeout_ms``."""
        if timeout_ms < 0:
            raise ValueError("timeout_ms must not be negative")

        with self._lock:
            if self._pending:
                if self._extensions < MAX_EXTENSIONS:
                    self._extensions += 1
                return

            if timeout_ms > 0:
                self._pending = True
                self._extensions = 0
                self._wake.clear()
                self._thread = threading.Thread(
                    target=self._run_window,
                    args=(timeout_ms / 1000.0,),
                    name=self._name,
                    daemon=True,
                )
                self._thread.start()
                return

        self._write(raise_errors=True)

    def flush(self) -> None:
        """Write a pending window now and wait for it to finish."""
        with self._lock:
            thread = self._thread if self._pending else None
        if thread is not None:
            self._wake.set()
            thread.join()

    def close(self) -> None:
        """Final flush on teardown."""
        self.flush()
        with self._lock:
            thread = self._thread
        if thread is not None and thread.is_alive():
            thread.join()

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        """Hold the write lock (no flush can run while inside)."""
        with self._write_lock:
            yield

    # ── Worker ───────────────────────────────────────────────────

    def _run_window(self, delay: float) -> None:
        cycles = 0
        while True:
            if self._wake.wait(timeout=delay):
                # Flush requested: stop waiting
                with self._lock:
                    self._pending = False
                    self._extensions = 0
                break
            with self._lock:
                if self._extensions > 0 and cycles < MAX_EXTENSIONS:
                    self._extensions -= 1
                    cycles += 1
                    continue
                self._pending = False
                self._extensions = 0
                break

        self._write(raise_errors=False)

    def _write(self, raise_errors: bool) -> None:
        with self._write_lock:
            try:
                self._write_fn()
            except KeyNotSet as exc:
                self.last_error = exc
                logger.error("Vault save attempted before a key was set")
                if raise_errors:
                    raise
                return
            except IOFailure as exc:
                self.last_error = exc
                logger.warning("Vault save failed: %s", exc)
                if raise_errors:
                    raise
                return
            except Exception as exc:
                self.last_error = exc
                logger.exception("Unexpected error while saving vault")
                if raise_errors:
                    raise
                return

            self.write_count += 1
            self.last_error = None
