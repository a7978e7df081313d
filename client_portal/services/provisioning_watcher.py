"""Provisioning Watcher: bounded, cancellable polling for the business record.

After verification the identity is confirmed but the business record is created
out of band. The watcher polls for it on a fixed schedule (optionally backed off,
never past max_attempts * interval_ms in total) and always stops: `ready` when the record shows up, `needs-repair`
when the attempts run out, `failed` when cancelled.
"""
import enum
import logging
import threading
from typing import Callable

from client_portal.config import get_settings

logger = logging.getLogger(__name__)


class ProvisioningState(str, enum.Enum):
    verifying = "verifying"
    awaiting_record = "awaiting-record"
    ready = "ready"
    needs_repair = "needs-repair"
    failed = "failed"


def backoff_schedule(max_attempts: int, interval_ms: int, backoff_after: int, max_interval_ms: int) -> list[int]:
    """Delay (ms) before each attempt after the first: fixed, then doubling up to the cap.

    The total never exceeds max_attempts * interval_ms; once backoff has used that up,
    the remaining attempts run back to back.
    """
    bound = max_attempts * interval_ms
    delays = []
    delay = interval_ms
    total = 0
    for gap in range(1, max_attempts):
        if gap > backoff_after:
            delay = min(delay * 2, max_interval_ms)
        step = min(delay, bound - total)
        delays.append(step)
        total += step
    return delays


class ProvisioningWatcher:
    def __init__(
        self,
        identity_id: int,
        check: Callable[[int], bool],
        *,
        max_attempts: int | None = None,
        interval_ms: int | None = None,
        backoff_after: int | None = None,
        max_interval_ms: int | None = None,
        sleep: Callable[[float], object] | None = None,
        cancel_event: threading.Event | None = None,
    ):
        settings = get_settings()
        self.identity_id = identity_id
        self.check = check
        self.max_attempts = max_attempts if max_attempts is not None else settings.watcher_max_attempts
        self.interval_ms = interval_ms if interval_ms is not None else settings.watcher_interval_ms
        self.backoff_after = backoff_after if backoff_after is not None else settings.watcher_backoff_after
        self.max_interval_ms = max_interval_ms if max_interval_ms is not None else settings.watcher_max_interval_ms
        self.cancel_event = cancel_event or threading.Event()
        # Event.wait returns early on cancel, so teardown never waits out a full interval
        self._sleep = sleep or self.cancel_event.wait
        self.state = ProvisioningState.verifying
        self.attempts = 0

    def schedule(self) -> list[int]:
        return backoff_schedule(self.max_attempts, self.interval_ms, self.backoff_after, self.max_interval_ms)

    @property
    def budget_ms(self) -> int:
        return sum(self.schedule())

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def _tick(self) -> bool:
        self.attempts += 1
        try:
            return bool(self.check(self.identity_id))
        except Exception:
            # A failed check counts as "not yet"; the attempt budget still bounds the loop
            logger.exception("[Watcher] Readiness check failed for identity_id=%s (attempt %s)", self.identity_id, self.attempts)
            return False

    def run(self) -> ProvisioningState:
        self.state = ProvisioningState.awaiting_record
        delays = self.schedule()
        for attempt in range(self.max_attempts):
            if self.cancelled:
                break
            if self._tick():
                self.state = ProvisioningState.ready
                logger.info("[Watcher] identity_id=%s ready after %s attempt(s)", self.identity_id, self.attempts)
                return self.state
            if attempt < len(delays):
                self._sleep(delays[attempt] / 1000.0)
        if self.cancelled:
            self.state = ProvisioningState.failed
            logger.info("[Watcher] identity_id=%s cancelled after %s attempt(s)", self.identity_id, self.attempts)
            return self.state
        self.state = ProvisioningState.needs_repair
        logger.warning(
            "[Watcher] identity_id=%s: business record not found after %s attempts (%sms budget)",
            self.identity_id,
            self.attempts,
            self.budget_ms,
        )
        return self.state


_active: dict[int, ProvisioningWatcher] = {}
_active_lock = threading.Lock()


def watch(watcher: ProvisioningWatcher) -> ProvisioningState:
    """Run a watcher, cancelling any earlier one still polling for the same identity."""
    with _active_lock:
        previous = _active.get(watcher.identity_id)
        if previous is not None:
            previous.cancel()
        _active[watcher.identity_id] = watcher
    try:
        return watcher.run()
    finally:
        with _active_lock:
            if _active.get(watcher.identity_id) is watcher:
                del _active[watcher.identity_id]


def cancel_watch(identity_id: int) -> bool:
    with _active_lock:
        watcher = _active.get(identity_id)
    if watcher is None:
        return False
    watcher.cancel()
    return True


def cancel_all() -> int:
    with _active_lock:
        watchers = list(_active.values())
    for watcher in watchers:
        watcher.cancel()
    return len(watchers)
