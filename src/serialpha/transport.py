import errno
import logging
from typing import NamedTuple

import serial
from serial.tools import list_ports

from .errors import TransportLostError, TransportReadError

log = logging.getLogger(__name__)

PARITY_MAP = {
    "none": serial.PARITY_NONE,
    "even": serial.PARITY_EVEN,
    "odd": serial.PARITY_ODD,
    "mark": serial.PARITY_MARK,
    "space": serial.PARITY_SPACE,
}
BYTESIZE_MAP = {5: serial.FIVEBITS, 6: serial.SIXBITS, 7: serial.SEVENBITS, 8: serial.EIGHTBITS}
STOPBITS_MAP = {1: serial.STOPBITS_ONE, 1.5: serial.STOPBITS_ONE_POINT_FIVE, 2: serial.STOPBITS_TWO}

DEVICE_GONE_ERRNOS = {errno.ENXIO, errno.ENODEV, errno.EIO, errno.EBADF}
DEVICE_GONE_MARKERS = ("device disconnected", "device reports readiness", "clearcommerror", "no such device")
READ_CHUNK = 256


class ReadResult(NamedTuple):
    chunk: bytes
    end_of_stream: bool = False


def list_serial_ports():
    return sorted({p.device for p in list_ports.comports()})


def classify_serial_error(exc):
    """Map a pyserial/OS error to a soft (retry) or hard (device lost) transport error."""
    err_no = getattr(exc, "errno", None)
    text = str(exc).lower()
    if err_no in DEVICE_GONE_ERRNOS or any(m in text for m in DEVICE_GONE_MARKERS):
        return TransportLostError(str(exc))
    return TransportReadError(str(exc))


class SerialTransport:
    def __init__(self, port, settings, timeout=0.1):
        self.port = port
        self.settings = settings
        self.timeout = timeout
        self.ser = None

    def open(self):
        ser = serial.Serial()
        ser.port = self.port
        ser.baudrate = self.settings.baud_rate
        ser.bytesize = BYTESIZE_MAP[self.settings.data_bits]
        ser.stopbits = STOPBITS_MAP[self.settings.stop_bits]
        ser.parity = PARITY_MAP[self.settings.parity]
        ser.timeout = self.timeout
        ser.xonxoff = False
        ser.rtscts = False
        ser.dsrdtr = False
        ser.open()
        self.ser = ser
        log.info("Opened %s @ %d %d%s%s", self.port, self.settings.baud_rate, ser.bytesize, ser.parity, ser.stopbits)
        return self

    @property
    def is_open(self):
        ser = self.ser
        return ser is not None and ser.is_open

    def read(self):
        # close() may run on another thread; work on one reference.
        ser = self.ser
        if ser is None or not ser.is_open:
            return ReadResult(b"", True)
        try:
            chunk = ser.read(max(READ_CHUNK, ser.in_waiting))
        except (serial.SerialException, OSError) as exc:
            raise classify_serial_error(exc) from exc
        return ReadResult(bytes(chunk), False)

    def close(self):
        ser, self.ser = self.ser, None
        if ser is None:
            return
        try:
            ser.close()
        except (serial.SerialException, OSError) as exc:
            log.debug("Close %s: %s", self.port, exc)
