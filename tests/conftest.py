import queue
import time

import pytest

from serialpha.config import AppConfig
from serialpha.profiles import FieldRange, Profile, SerialSettings
from serialpha.transport import ReadResult

END_OF_STREAM = object()


class FakeTransport:
    """In-memory stand-in for the serial port: push bytes, errors or END_OF_STREAM."""

    def __init__(self):
        self.items = queue.Queue()
        self.closed = False
        self.reads = 0

    def push(self, item):
        self.items.put(item)

    def read(self):
        self.reads += 1
        try:
            item = self.items.get(timeout=0.01)
        except queue.Empty:
            return ReadResult(b"", False)
        if item is END_OF_STREAM:
            return ReadResult(b"", True)
        if isinstance(item, BaseException):
            raise item
        return ReadResult(item, False)

    def close(self):
        self.closed = True


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def ph_profile():
    return Profile(
        name="Test pH",
        serial=SerialSettings(baud_rate=9600),
        delimiter=",",
        line_terminator="\r\n",
        fields=("pH", "temperature"),
        field_map={"pH": 0, "temperature": 1},
        validation={"pH": FieldRange(min=0, max=14)},
        units={"temperature": "°C"},
        min_interval_ms=2000,
    )


@pytest.fixture
def semicolon_profile():
    return Profile(
        name="Semicolon",
        serial=SerialSettings(baud_rate=115200),
        delimiter=";",
        line_terminator="\r\n",
        fields=("pH", "temperature"),
        field_map={"pH": 0, "temperature": 1},
    )


@pytest.fixture
def config(tmp_path):
    return AppConfig(str(tmp_path))
