import json
import logging
import os
import tempfile

log = logging.getLogger(__name__)

SESSION_FILE = "session_autosave.json"
EXPORT_FOLDER_FILE = "export_folder.json"


class JsonFileStore:
    """Best-effort durable storage for the session snapshot and the export folder.

    Nothing here raises: failures are logged and reported through the return
    value, and the in-memory session stays the source of truth.
    """

    def __init__(self, root_dir):
        self.root_dir = str(root_dir)
        self.session_path = os.path.join(self.root_dir, SESSION_FILE)
        self.export_folder_path = os.path.join(self.root_dir, EXPORT_FOLDER_FILE)

    def _write_json(self, path, payload):
        os.makedirs(self.root_dir, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=self.root_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False)
            os.replace(tmp, path)
        except BaseException:
            try:
                os.remove(tmp)
            except OSError:
                pass
            raise

    def _read_json(self, path):
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def save_snapshot(self, snapshot):
        try:
            self._write_json(self.session_path, snapshot)
        except (OSError, TypeError, ValueError) as exc:
            log.warning("Session persist failed (%s): %s", snapshot.get("reason", ""), exc)
            return False
        log.debug("Session persisted: %s", snapshot.get("reason", ""))
        return True

    def load_snapshot(self):
        try:
            data = self._read_json(self.session_path)
        except (OSError, ValueError) as exc:
            log.warning("Session restore failed: %s", exc)
            return None
        if data is not None and not isinstance(data, dict):
            log.warning("Session restore failed: unexpected payload in %s", self.session_path)
            return None
        return data

    def save_export_folder(self, folder):
        try:
            self._write_json(self.export_folder_path, {"folder": None if folder is None else str(folder)})
        except (OSError, TypeError, ValueError) as exc:
            log.warning("Export folder save failed: %s", exc)
            return False
        return True

    def load_export_folder(self):
        try:
            data = self._read_json(self.export_folder_path)
        except (OSError, ValueError) as exc:
            log.warning("Export folder restore failed: %s", exc)
            return None
        folder = data.get("folder") if isinstance(data, dict) else None
        return folder or None
