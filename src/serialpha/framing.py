import codecs
import logging

from .errors import FramerOverflowError

log = logging.getLogger(__name__)

DEFAULT_MAX_BUFFER = 65536


class StreamFramer:
    """Cut an arbitrary chunked text stream into terminator-delimited records.

    The framer only knows about the terminator; it never looks inside a
    record. Splitting the same stream into different chunks always yields the
    same records in the same order.
    """

    def __init__(self, terminator="\n", max_buffer=DEFAULT_MAX_BUFFER):
        if not terminator:
            raise ValueError("terminator must be a non-empty string")
        self.terminator = terminator
        self.max_buffer = int(max_buffer)
        self._buf = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="ignore")

    @property
    def pending(self):
        return self._buf

    def reset(self):
        self._buf = ""
        self._decoder.reset()

    def feed(self, chunk):
        if isinstance(chunk, (bytes, bytearray)):
            chunk = self._decoder.decode(bytes(chunk))
        self._buf += chunk

        records = []
        term = self.terminator
        while True:
            idx = self._buf.find(term)
            if idx < 0:
                break
            line = self._buf[:idx].strip()
            self._buf = self._buf[idx + len(term):]
            if line:
                records.append(line)

        if self.max_buffer > 0 and len(self._buf) > self.max_buffer:
            discarded = len(self._buf)
            self._buf = ""
            raise FramerOverflowError(discarded, self.max_buffer, records)
        return records
