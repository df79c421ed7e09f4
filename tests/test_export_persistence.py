import datetime as dt

import pytest

from serialpha.errors import ExportError
from serialpha.export import (
    DERIVATIVE_HEADERS,
    CsvExportSink,
    emergency_export,
    headers_for,
    rows_to_csv,
    timestamp_stamp,
)
from serialpha.persistence import JsonFileStore
from serialpha.session import Session

NOW = dt.datetime(2025, 9, 2, 14, 30, 5)


@pytest.fixture
def session():
    s = Session(fields=["pH", "temperature"])
    s.append_real_time({"pH": 7.0, "temperature": 25.5}, now=NOW)
    s.append_real_time({"pH": 7.12, "temperature": None}, now=NOW)
    s.append_titration({"pH": 4.0, "temperature": 25.0}, 0, now=NOW)
    s.append_titration({"pH": 4.5, "temperature": 25.0}, 10, now=NOW)
    s.replace_derivative([{"averageVolume": 5.0, "derivativeValue": 50.0}])
    return s


def test_headers():
    fields = ["pH", "temperature"]
    assert headers_for("real_time", fields) == ["time", "read", "pH", "temperature"]
    assert headers_for("titration", fields) == ["time", "read", "volume", "pH", "temperature"]
    assert headers_for("derivative", fields) == DERIVATIVE_HEADERS == ["averageVolume", "derivativeValue"]
    with pytest.raises(ValueError):
        headers_for("raw", fields)


def test_rows_to_csv_formats_cells(session):
    text = rows_to_csv(session.real_time, headers_for("real_time", session.fields))
    assert text == "time,read,pH,temperature\n14:30:05,1,7,25.5\n14:30:05,2,7.12,\n"
    assert rows_to_csv([], ["time"]) == ""


def test_export_all_writes_one_file_per_series(tmp_path, session):
    paths = CsvExportSink(tmp_path / "out").export_all("manual", session, now=NOW)
    names = sorted(p.name for p in paths)
    assert names == [
        "manual_derivative_2025-09-02_14-30-05.csv",
        "manual_real_time_2025-09-02_14-30-05.csv",
        "manual_titration_2025-09-02_14-30-05.csv",
    ]
    tit = (tmp_path / "out" / "manual_titration_2025-09-02_14-30-05.csv").read_text(encoding="utf-8")
    assert tit.splitlines() == [
        "time,read,volume,pH,temperature",
        "14:30:05,1,0,4,25",
        "14:30:05,2,10,4.5,25",
    ]


def test_export_all_skips_empty_series(tmp_path):
    s = Session()
    s.append_real_time({"pH": 7.0}, now=NOW)
    paths = CsvExportSink(tmp_path).export_all("manual", s, now=NOW)
    assert [p.name for p in paths] == ["manual_real_time_2025-09-02_14-30-05.csv"]


def test_export_to_unusable_folder_raises(tmp_path, session):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x")
    with pytest.raises(ExportError):
        CsvExportSink(blocker).export_all("manual", session)


def test_emergency_export_falls_back(tmp_path, session):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x")
    fallback = tmp_path / "fallback"
    paths = emergency_export(session, blocker, fallback, prefix="disconnect")
    assert len(paths) == 3
    assert all(p.parent == fallback and p.name.startswith("disconnect_") for p in paths)


def test_emergency_export_never_raises(tmp_path, session):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x")
    assert emergency_export(session, blocker, blocker) == []


def test_timestamp_stamp():
    assert timestamp_stamp(NOW) == "2025-09-02_14-30-05"


def test_store_roundtrip(tmp_path, session):
    store = JsonFileStore(tmp_path)
    assert store.load_snapshot() is None
    assert store.save_snapshot(session.snapshot("titAdd"))
    snap = store.load_snapshot()
    assert snap["reason"] == "titAdd"
    assert snap["meta"]["titCount"] == 2
    assert not [p for p in tmp_path.iterdir() if p.name.startswith(".tmp_")]


def test_store_failure_is_reported_not_raised(tmp_path, session):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    store = JsonFileStore(blocker)
    assert store.save_snapshot(session.snapshot("rtTick")) is False
    assert store.save_export_folder("/tmp/x") is False


def test_corrupt_snapshot_loads_as_none(tmp_path):
    store = JsonFileStore(tmp_path)
    (tmp_path / "session_autosave.json").write_text("{not json", encoding="utf-8")
    assert store.load_snapshot() is None
    (tmp_path / "session_autosave.json").write_text("[1, 2]", encoding="utf-8")
    assert store.load_snapshot() is None


def test_export_folder_roundtrip(tmp_path):
    store = JsonFileStore(tmp_path)
    assert store.load_export_folder() is None
    assert store.save_export_folder(tmp_path / "exports")
    assert store.load_export_folder() == str(tmp_path / "exports")
    store.save_export_folder(None)
    assert store.load_export_folder() is None
