import csv
import datetime as dt
import io
import logging
import os
from pathlib import Path

from .errors import ExportError

log = logging.getLogger(__name__)

# Column order is relied on by downstream analysis sheets.
DERIVATIVE_HEADERS = ["averageVolume", "derivativeValue"]
SERIES_KINDS = ("real_time", "titration", "derivative")


def real_time_headers(fields):
    return ["time", "read", *fields]


def titration_headers(fields):
    return ["time", "read", "volume", *fields]


def headers_for(kind, fields):
    if kind == "real_time":
        return real_time_headers(fields)
    if kind == "titration":
        return titration_headers(fields)
    if kind == "derivative":
        return list(DERIVATIVE_HEADERS)
    raise ValueError(f"Unknown series kind: {kind}")


def timestamp_stamp(now=None):
    return (now or dt.datetime.now()).strftime("%Y-%m-%d_%H-%M-%S")


def _fmt_cell(v):
    if v is None:
        return ""
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return v


def _write_rows(f, rows, headers):
    writer = csv.DictWriter(f, fieldnames=headers, extrasaction="ignore", restval="", lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow({h: _fmt_cell(row.get(h)) for h in headers})


def rows_to_csv(rows, headers):
    if not rows:
        return ""
    buf = io.StringIO()
    _write_rows(buf, rows, headers)
    return buf.getvalue()


class CsvExportSink:
    def __init__(self, folder):
        self.folder = Path(folder)

    def export_series(self, kind, rows, fields, path):
        headers = headers_for(kind, fields)
        try:
            with open(path, "w", newline="", encoding="utf-8") as f:
                _write_rows(f, rows, headers)
        except OSError as exc:
            raise ExportError(f"Could not write {path}: {exc}") from exc
        return Path(path)

    def export_all(self, prefix, session, now=None):
        """Write one CSV per non-empty series; return the written paths."""
        with session.lock:
            fields = list(session.fields)
            series = {
                "real_time": [dict(r) for r in session.real_time],
                "titration": [dict(r) for r in session.titration],
                "derivative": [dict(r) for r in session.derivative],
            }
        try:
            os.makedirs(self.folder, exist_ok=True)
        except OSError as exc:
            raise ExportError(f"Export folder unavailable {self.folder}: {exc}") from exc

        stamp = timestamp_stamp(now)
        written = []
        for kind in SERIES_KINDS:
            rows = series[kind]
            if not rows:
                continue
            path = self.folder / f"{prefix}_{kind}_{stamp}.csv"
            written.append(self.export_series(kind, rows, fields, path))
        log.info("Exported %d file(s) to %s (%s)", len(written), self.folder, prefix)
        return written


def emergency_export(session, folder, fallback_dir, prefix="disconnect"):
    """Try the configured folder, then the fallback directory. Never raises."""
    for target in (folder, fallback_dir):
        if not target:
            continue
        try:
            return CsvExportSink(target).export_all(prefix, session)
        except ExportError as exc:
            log.warning("Emergency export to %s failed: %s", target, exc)
    log.error("Emergency export failed; data kept in memory and in the autosave file only")
    return []
