"""Per-device recurring timers.

Each device gets its own timer thread; timers are not synchronized with
each other. The scheduler keeps a ``device id -> timer`` map so the whole
fleet can be cancelled in one call.
"""

import logging
import threading
from typing import Callable, Dict, Optional, Protocol

from .devices import DeviceDescriptor

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None], str], TimerHandle]


class RecurringTimer(threading.Thread):
    """Call ``function`` every ``interval_s`` seconds until cancelled.

    ``cancel()`` waits for an in-flight call to finish, so once it returns
    the function will not run again.
    """

    def __init__(self, interval_s: float, function: Callable[[], None], name: Optional[str] = None):
        super().__init__(name=name, daemon=True)
        self.interval_s = interval_s
        self.function = function
        self._finished = threading.Event()

    def run(self) -> None:
        while not self._finished.wait(self.interval_s):
            try:
                self.function()
            except Exception as e:
                logger.error(f"Error in timer {self.name}: {e}")

    def cancel(self) -> None:
        self._finished.set()
        if self.is_alive() and threading.current_thread() is not self:
            self.join()

    @property
    def cancelled(self) -> bool:
        return self._finished.is_set()


class DeviceScheduler:
    """Owns one recurring timer per scheduled device."""

    def __init__(
        self,
        tick: Callable[[DeviceDescriptor], None],
        timer_factory: TimerFactory = RecurringTimer,
    ):
        self._tick = tick
        self._timer_factory = timer_factory
        self._timers: Dict[str, TimerHandle] = {}
        self._lock = threading.Lock()

    @property
    def active_count(self) -> int:
        return len(self._timers)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._timers

    def schedule(self, device: DeviceDescriptor) -> bool:
        """Fire one immediate tick for ``device``, then install its timer.

        Returns False if the device already has a timer.
        """
        with self._lock:
            if device.id in self._timers:
                logger.warning(f"Device {device.id} is already scheduled")
                return False

            self._tick(device)
            timer = self._timer_factory(
                device.publish_interval_s,
                lambda: self._tick(device),
                f"device-{device.id}",
            )
            self._timers[device.id] = timer
            timer.start()

        logger.debug(f"Scheduled {device.id} every {device.publish_interval_ms}ms")
        return True

    def cancel_all(self) -> int:
        """Cancel every timer and clear the map. Returns the number cancelled."""
        with self._lock:
            timers = list(self._timers.values())
            for timer in timers:
                timer.cancel()
            self._timers.clear()
        return len(timers)
