import logging
import re
from decimal import ROUND_HALF_UP, Decimal

import numpy as np

log = logging.getLogger(__name__)

DERIVATIVE_SCALE = 1000.0
AVG_VOLUME_PLACES = 1
DERIVATIVE_PLACES = 2
LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


def coerce_increment(value):
    """Volume step from operator input: integer part, non-numeric as 0, never negative."""
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, (int, np.integer)):
        return max(0, int(value))
    if isinstance(value, (float, np.floating)):
        if not np.isfinite(value):
            return 0
        return max(0, int(value))
    m = LEADING_INT_RE.match(str(value))
    if not m:
        return 0
    return max(0, int(m.group(1)))


def round_fixed(x, places):
    """Round half away from zero on the exact binary value (fixed-point display rounding)."""
    x = float(x)
    if not np.isfinite(x) or abs(x) >= 1e15:
        return x
    q = Decimal(1).scaleb(-places)
    return float(Decimal(x).quantize(q, rounding=ROUND_HALF_UP))


def _as_float(v):
    if v is None or isinstance(v, bool):
        return np.nan
    try:
        return float(v)
    except (TypeError, ValueError):
        return np.nan


def compute_derivative(rows, field):
    """First derivative of ``field`` against cumulative volume, scaled by 10^3.

    One point per adjacent pair of rows with distinct volumes and both values
    present; other pairs are skipped rather than left as gaps.
    """
    if len(rows) < 2 or not field:
        return []
    vol = np.array([_as_float(r.get("volume")) for r in rows], dtype=float)
    y = np.array([_as_float(r.get(field)) for r in rows], dtype=float)

    dv = np.diff(vol)
    dy = np.diff(y)
    avg = (vol[:-1] + vol[1:]) / 2
    keep = np.isfinite(dv) & (dv != 0) & np.isfinite(dy)

    points = []
    with np.errstate(divide="ignore", invalid="ignore"):
        slope = (dy / dv) * DERIVATIVE_SCALE
    for i in np.flatnonzero(keep):
        points.append(
            {
                "averageVolume": round_fixed(avg[i], AVG_VOLUME_PLACES),
                "derivativeValue": round_fixed(slope[i], DERIVATIVE_PLACES),
            }
        )
    return points


class TitrationEngine:
    def __init__(self, session, mailbox):
        self.session = session
        self.mailbox = mailbox

    def add_point(self, increment=0, now=None):
        measurement = self.mailbox.peek()
        if measurement is None:
            log.info("No measurement received yet; titration point not added")
            return None
        with self.session.lock:
            if not self.session.titration:
                volume = 0
            else:
                volume = self.session.volume_sum + coerce_increment(increment)
            row = self.session.append_titration(measurement, volume, now=now)
            self.recompute_derivative()
        log.info("Titration point #%d: volume=%s %s=%s", row["read"], volume,
                 self.session.selected_field, row.get(self.session.selected_field))
        return row

    def recompute_derivative(self):
        with self.session.lock:
            points = compute_derivative(self.session.titration, self.session.selected_field)
            self.session.replace_derivative(points)
        return points
