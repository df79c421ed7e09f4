import threading


class LatestMeasurement:
    """Single-slot mailbox: each new measurement replaces the previous one.

    The sampler reads whatever sits in the slot at tick time, so records that
    arrive faster than the sampling interval are decimated, never merged.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._value = None
        self.received = 0

    def put(self, measurement):
        with self._lock:
            self._value = dict(measurement)
            self.received += 1

    def peek(self):
        with self._lock:
            return None if self._value is None else dict(self._value)

    @property
    def has_value(self):
        with self._lock:
            return self._value is not None

    def clear(self):
        with self._lock:
            self._value = None
