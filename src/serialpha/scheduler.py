import logging
import threading
import time

log = logging.getLogger(__name__)


class SamplingScheduler:
    """Snapshot the latest measurement into the real-time series at a fixed period.

    The period is independent of how fast records arrive: every tick samples
    whatever the mailbox holds at that moment. Ticks never overlap; a tick
    that would start while another is in flight is dropped, and deadlines
    missed because of latency are skipped rather than queued.
    """

    def __init__(self, session, mailbox, period_s, on_row=None, clock=time.monotonic):
        if period_s <= 0:
            raise ValueError("period_s must be positive")
        self.session = session
        self.mailbox = mailbox
        self.period_s = float(period_s)
        self.on_row = on_row
        self.clock = clock
        self.dropped_ticks = 0
        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread = None

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def tick(self):
        if not self._tick_lock.acquire(blocking=False):
            self.dropped_ticks += 1
            return None
        try:
            measurement = self.mailbox.peek()
            if measurement is None:
                return None
            row = self.session.append_real_time(measurement)
            if self.on_row:
                try:
                    self.on_row(row)
                except Exception as exc:
                    log.warning("Real-time row consumer failed: %s", exc)
            return row
        finally:
            self._tick_lock.release()

    def _run(self):
        next_due = self.clock()
        while not self._stop_event.is_set():
            self.tick()
            next_due += self.period_s
            now = self.clock()
            if next_due <= now:
                missed = int((now - next_due) // self.period_s) + 1
                self.dropped_ticks += missed
                next_due += missed * self.period_s
                log.debug("Sampler overran; skipped %d tick(s)", missed)
            if self._stop_event.wait(next_due - now):
                break

    def start(self):
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="sampler", daemon=True)
        self._thread.start()
        log.info("Sampler started: every %.3f s", self.period_s)

    def stop(self, timeout=1.0):
        self._stop_event.set()
        t = self._thread
        if t and t.is_alive() and t is not threading.current_thread():
            t.join(timeout=timeout)
        self._thread = None
