import datetime as dt
import logging
import threading
import time

from .errors import ConfigurationError

log = logging.getLogger(__name__)

DEFAULT_RETENTION_ROWS = 5000
DEFAULT_FIELDS = ["pH", "temperature"]
ROW_META_KEYS = ("date", "time", "read", "volume")


def now_parts(now=None):
    now = now or dt.datetime.now()
    return {"date": now.strftime("%Y-%m-%d"), "time": now.strftime("%H:%M:%S")}


def prune(rows, limit):
    if limit and len(rows) > limit:
        return rows[-limit:]
    return list(rows)


def _number_or_none(v):
    if v is None or isinstance(v, bool):
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


class Session:
    """All mutable acquisition state for one operator session.

    Only the sampler, the titration engine and the operator actions of the
    controller mutate it, always under ``lock``.
    """

    def __init__(self, fields=None, selected_field=None, retention=DEFAULT_RETENTION_ROWS):
        self.lock = threading.RLock()
        self.fields = list(fields or DEFAULT_FIELDS)
        self.retention = int(retention)
        self.real_time = []
        self.titration = []
        self.derivative = []
        self.read_count = 0
        self.titration_count = 0
        self.volume_sum = 0
        self.y_min = None
        self.y_max = None
        self.selected_field = self._default_field(selected_field)

    def _default_field(self, preferred):
        if preferred in self.fields:
            return preferred
        if "pH" in self.fields:
            return "pH"
        return self.fields[0] if self.fields else None

    @property
    def is_empty(self):
        return not (self.real_time or self.titration or self.derivative)

    def _row_values(self, measurement):
        values = {f: measurement.get(f) for f in self.fields}
        for key, value in measurement.items():
            if key not in values and key not in ROW_META_KEYS:
                values[key] = value
        return values

    def append_real_time(self, measurement, now=None):
        with self.lock:
            self.read_count += 1
            row = {**now_parts(now), "read": self.read_count}
            row.update(self._row_values(measurement))
            self.real_time.append(row)
            return row

    def append_titration(self, measurement, volume, now=None):
        with self.lock:
            self.titration_count += 1
            self.volume_sum = volume
            row = self._row_values(measurement)
            row.update(now_parts(now))
            row["read"] = self.titration_count
            row["volume"] = volume
            self.titration.append(row)
            return row

    def replace_derivative(self, points):
        with self.lock:
            self.derivative = list(points)

    def set_fields(self, fields):
        with self.lock:
            self.fields = list(fields or DEFAULT_FIELDS)
            self.selected_field = self._default_field(self.selected_field)

    def select_field(self, name):
        with self.lock:
            if name not in self.fields:
                raise ConfigurationError(f"Unknown field '{name}'. Available: {', '.join(self.fields)}")
            self.selected_field = name

    def set_y_limits(self, y_min=None, y_max=None):
        lo = None if y_min in (None, "") else _number_or_none(y_min)
        hi = None if y_max in (None, "") else _number_or_none(y_max)
        if (y_min not in (None, "") and lo is None) or (y_max not in (None, "") and hi is None):
            raise ConfigurationError("Y limits must be numbers.")
        if lo is not None and hi is not None and not lo < hi:
            raise ConfigurationError("Y min must be lower than Y max.")
        with self.lock:
            self.y_min, self.y_max = lo, hi

    def clear(self):
        with self.lock:
            self.real_time = []
            self.titration = []
            self.derivative = []
            self.read_count = 0
            self.titration_count = 0
            self.volume_sum = 0
        log.info("Session data cleared")

    def snapshot(self, reason=""):
        with self.lock:
            return {
                "ts": int(time.time() * 1000),
                "reason": reason,
                "rt": [dict(r) for r in prune(self.real_time, self.retention)],
                "tit": [dict(r) for r in prune(self.titration, self.retention)],
                "der": [dict(r) for r in prune(self.derivative, self.retention)],
                "meta": {
                    "volumeSum": self.volume_sum,
                    "readCount": self.read_count,
                    "titCount": self.titration_count,
                    "rtYMin": self.y_min,
                    "rtYMax": self.y_max,
                    "rtField": self.selected_field,
                    "rtFields": list(self.fields),
                },
            }

    @classmethod
    def restore(cls, snapshot, fields=None, retention=DEFAULT_RETENTION_ROWS):
        snap = snapshot if isinstance(snapshot, dict) else {}
        meta = snap.get("meta") if isinstance(snap.get("meta"), dict) else {}
        rt = snap.get("rt") if isinstance(snap.get("rt"), list) else []
        tit = snap.get("tit") if isinstance(snap.get("tit"), list) else []
        der = snap.get("der") if isinstance(snap.get("der"), list) else []

        if not fields:
            fields = meta.get("rtFields") if isinstance(meta.get("rtFields"), list) else None
        if not fields and rt:
            fields = [k for k in rt[0].keys() if k not in ROW_META_KEYS]

        session = cls(fields=fields, selected_field=meta.get("rtField"), retention=retention)
        session.real_time = [dict(r) for r in rt]
        session.titration = [dict(r) for r in tit]
        session.derivative = [dict(r) for r in der]
        session.read_count = int(_number_or_none(meta.get("readCount")) or len(rt))
        session.titration_count = int(_number_or_none(meta.get("titCount")) or len(tit))
        volume_sum = _number_or_none(meta.get("volumeSum"))
        if not volume_sum and tit:
            volume_sum = _number_or_none(tit[-1].get("volume"))
        session.volume_sum = _intish(volume_sum or 0)
        session.y_min = _number_or_none(meta.get("rtYMin"))
        session.y_max = _number_or_none(meta.get("rtYMax"))
        return session


def _intish(v):
    return int(v) if float(v).is_integer() else v
