from serialpha.cli import main
from serialpha.persistence import JsonFileStore
from serialpha.session import Session


def test_profiles_list(tmp_path, capsys):
    assert main(["--data-dir", str(tmp_path), "profiles", "list"]) == 0
    out = capsys.readouterr().out
    assert "LUCA210" in out
    assert out.splitlines()[0].startswith("*")


def test_profiles_export_then_import(tmp_path, capsys):
    doc = tmp_path / "library.json"
    assert main(["--data-dir", str(tmp_path), "profiles", "export", str(doc)]) == 0
    assert main(["--data-dir", str(tmp_path), "profiles", "import", str(doc)]) == 0
    assert "6 profile(s) imported" in capsys.readouterr().out


def test_profiles_import_bad_file(tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text('{"instruments": [{"name": 1}]}', encoding="utf-8")
    assert main(["--data-dir", str(tmp_path), "profiles", "import", str(bad)]) == 2


def test_export_without_session(tmp_path, capsys):
    assert main(["--data-dir", str(tmp_path), "export"]) == 1
    assert "No autosaved session" in capsys.readouterr().out


def test_export_autosaved_session(tmp_path, capsys):
    s = Session()
    s.append_real_time({"pH": 7.0, "temperature": 25.0})
    JsonFileStore(tmp_path).save_snapshot(s.snapshot("shutdown"))
    out_dir = tmp_path / "out"
    assert main(["--data-dir", str(tmp_path), "export", "--folder", str(out_dir), "--prefix", "lab"]) == 0
    files = [p.name for p in out_dir.iterdir()]
    assert len(files) == 1 and files[0].startswith("lab_real_time_")
