"""
Payment countdown for pending reservations.

A pending reservation is held by the server for a fixed window. The monitor
shows the remaining time and, when it runs out, cancels the reservation once.
The server remains the authority on expiry; this countdown is advisory and
its window must match the server's.

Per reservation id:

    Inactive --(first seen Pending)--> Running --(remaining hits 0)--> Expired
                                          |
                                          +--(left Pending / resolved)--> Resolved

The hold start is persisted in a CountdownStore, so a restarted client
rebuilds Running state from the stored start and the freshly fetched status,
never from memory.
"""

import asyncio
import logging
import math
import time
from collections import deque
from enum import Enum
from typing import Callable, Deque, Dict, Iterable, List, Optional, Protocol, Set, Union

from .models import Notice, ReservationHold
from .store import CountdownStore
from ..errors import ActionInProgressError, RyderXError

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 600


class CountdownState(str, Enum):
    INACTIVE = "Inactive"
    RUNNING = "Running"
    EXPIRED = "Expired"
    RESOLVED = "Resolved"


TERMINAL_STATES = (CountdownState.EXPIRED, CountdownState.RESOLVED)


class HoldCanceller(Protocol):
    async def cancel_hold(self, reservation_id: Union[int, str]) -> bool: ...


def format_remaining(seconds: int) -> str:
    """600 -> '10:00', 65 -> '1:05'."""
    seconds = max(int(seconds), 0)
    return f"{seconds // 60}:{seconds % 60:02d}"


class _Countdown:
    __slots__ = ("reservation_id", "start", "label", "state")

    def __init__(self, reservation_id: str, start: Optional[float], label: str,
                 state: CountdownState = CountdownState.RUNNING):
        self.reservation_id = reservation_id
        self.start = start
        self.label = label
        self.state = state


class PaymentCountdownMonitor:
    def __init__(
        self,
        holds: HoldCanceller,
        store: CountdownStore,
        clock: Callable[[], float] = time.time,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        on_notice: Optional[Callable[[Notice], None]] = None,
    ):
        self.holds = holds
        self.store = store
        self.clock = clock
        self.window_seconds = window_seconds
        self.on_notice = on_notice
        self.notices: Deque[Notice] = deque(maxlen=50)
        self._countdowns: Dict[str, _Countdown] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._running = False

    # ------------------------------------------------------------------
    # Reconciliation with fetched reservations
    # ------------------------------------------------------------------

    def observe(self, hold: ReservationHold) -> CountdownState:
        """Reconcile one freshly fetched reservation with its countdown."""
        key = hold.key
        entry = self._countdowns.get(key)

        if hold.is_pending:
            if entry is not None:
                return entry.state

            start = self.store.get(key)
            if start is None:
                start = self.clock()
                self.store.set(key, start)
                logger.info("Payment countdown started", extra={"reservation_id": key})
            else:
                logger.info("Payment countdown resumed from stored start", extra={"reservation_id": key})

            self._countdowns[key] = _Countdown(key, start, hold.label)
            return CountdownState.RUNNING

        if entry is not None and entry.state == CountdownState.RUNNING:
            entry.state = CountdownState.RESOLVED
            logger.info(f"Reservation is {hold.status.value}; countdown stopped",
                        extra={"reservation_id": key})
        self.store.delete(key)
        return entry.state if entry is not None else CountdownState.INACTIVE

    def observe_all(self, holds: Iterable[ReservationHold]):
        for hold in holds:
            self.observe(hold)

    def resolve(self, reservation_id: Union[int, str]) -> bool:
        """
        Mark a reservation as settled by payment or manual cancel.

        Returns False if the countdown had already expired or been resolved.
        """
        key = str(reservation_id)
        self.store.delete(key)
        entry = self._countdowns.get(key)
        if entry is None:
            self._countdowns[key] = _Countdown(key, None, f"Reservation {key}", CountdownState.RESOLVED)
            return True
        if entry.state in TERMINAL_STATES:
            return False
        entry.state = CountdownState.RESOLVED
        logger.info("Countdown resolved", extra={"reservation_id": key})
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def state(self, reservation_id: Union[int, str]) -> CountdownState:
        entry = self._countdowns.get(str(reservation_id))
        return entry.state if entry is not None else CountdownState.INACTIVE

    def is_settled(self, reservation_id: Union[int, str]) -> bool:
        return self.state(reservation_id) in TERMINAL_STATES

    def _remaining_for(self, entry: _Countdown) -> int:
        elapsed = math.floor(self.clock() - entry.start)
        return max(min(self.window_seconds - elapsed, self.window_seconds), 0)

    def remaining(self, reservation_id: Union[int, str]) -> Optional[int]:
        """Seconds left for a running countdown, 0 once expired, None otherwise."""
        entry = self._countdowns.get(str(reservation_id))
        if entry is None or entry.state == CountdownState.RESOLVED:
            return None
        if entry.state == CountdownState.EXPIRED:
            return 0
        return self._remaining_for(entry)

    def display(self, reservation_id: Union[int, str]) -> Optional[str]:
        state = self.state(reservation_id)
        if state == CountdownState.RUNNING:
            return f"Payment expires in {format_remaining(self.remaining(reservation_id))}"
        if state == CountdownState.EXPIRED:
            return "Payment time expired"
        return None

    def running(self) -> List[str]:
        return [k for k, e in self._countdowns.items() if e.state == CountdownState.RUNNING]

    # ------------------------------------------------------------------
    # Ticking
    # ------------------------------------------------------------------

    async def tick(self) -> List[str]:
        """
        Advance every running countdown once.

        Returns the ids that expired on this tick. Their cancel calls run as
        background tasks; see wait_idle().
        """
        expired_now = []
        for entry in list(self._countdowns.values()):
            if entry.state != CountdownState.RUNNING:
                continue
            if self._remaining_for(entry) > 0:
                continue

            # state flips before the call is scheduled: later ticks skip this entry
            entry.state = CountdownState.EXPIRED
            expired_now.append(entry.reservation_id)
            logger.info("Payment window elapsed; cancelling", extra={"reservation_id": entry.reservation_id})

            task = asyncio.create_task(self._auto_cancel(entry))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return expired_now

    async def _auto_cancel(self, entry: _Countdown):
        key = entry.reservation_id
        try:
            cancelled = await self.holds.cancel_hold(key)
        except ActionInProgressError:
            logger.info("Manual cancel already in flight; auto-cancel skipped", extra={"reservation_id": key})
            return
        except RyderXError as e:
            # Single attempt. The stored start is kept so a restart does not
            # grant a fresh window; the server's own expiry releases the hold.
            logger.warning(f"Auto-cancel failed: {e.message}", extra={"reservation_id": key})
            self._notify(Notice(
                level="warning",
                message=f"Payment time expired for {entry.label}, but the automatic cancellation failed: {e.message}",
                reservation_id=key,
            ))
            return

        self.store.delete(key)
        if cancelled:
            message = f"Payment time expired. {entry.label} was auto-cancelled."
        else:
            message = f"Payment time expired. {entry.label} had already been released."
        self._notify(Notice(level="info", message=message, reservation_id=key))

    async def wait_idle(self):
        """Wait for in-flight auto-cancel calls to finish."""
        tasks = list(self._tasks)
        if tasks:
            await asyncio.gather(*tasks)
        self._tasks.difference_update(tasks)

    async def run(self, tick_seconds: float = 1.0):
        """Tick until stop() is called."""
        self._running = True
        try:
            while self._running:
                await self.tick()
                await asyncio.sleep(tick_seconds)
        finally:
            self._running = False

    def stop(self):
        self._running = False

    def _notify(self, notice: Notice):
        self.notices.append(notice)
        if self.on_notice:
            self.on_notice(notice)

    def drain_notices(self) -> List[Notice]:
        notices = list(self.notices)
        self.notices.clear()
        return notices
