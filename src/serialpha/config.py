import json
import logging
import os

log = logging.getLogger(__name__)

CONFIG_FILE_NAME = "serialpha_config.json"
PROFILE_LIBRARY_NAME = "profiles.json"
EXPORTS_SUBDIR = "exports"
DATA_DIR_ENV = "SERIALPHA_HOME"
LOCAL_FALLBACK_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "sessions_local")

DEFAULTS = {
    "interval_value": 2,
    "interval_unit": "s",
    "retention_rows": 5000,
    "max_buffer_chars": 65536,
    "read_timeout_s": 0.1,
    "export_folder": None,
    "selected_profile": 0,
    "log_level": "INFO",
}


def resolve_data_dir(explicit=None):
    path = explicit or os.environ.get(DATA_DIR_ENV) or os.path.join(os.path.expanduser("~"), ".serialpha")
    try:
        os.makedirs(path, exist_ok=True)
        return path
    except OSError as exc:
        log.warning("Data directory %s unavailable (%s); using %s", path, exc, LOCAL_FALLBACK_DIR)
        os.makedirs(LOCAL_FALLBACK_DIR, exist_ok=True)
        return LOCAL_FALLBACK_DIR


class AppConfig:
    def __init__(self, data_dir, values=None):
        self.data_dir = str(data_dir)
        self.values = dict(DEFAULTS)
        for key, value in (values or {}).items():
            if key in DEFAULTS:
                self.values[key] = value

    def __getattr__(self, name):
        values = self.__dict__.get("values", {})
        if name in values:
            return values[name]
        raise AttributeError(name)

    def set(self, key, value):
        if key not in DEFAULTS:
            raise KeyError(key)
        self.values[key] = value

    @property
    def path(self):
        return os.path.join(self.data_dir, CONFIG_FILE_NAME)

    @property
    def profile_library_path(self):
        return os.path.join(self.data_dir, PROFILE_LIBRARY_NAME)

    @property
    def fallback_export_dir(self):
        return os.path.join(self.data_dir, EXPORTS_SUBDIR)

    @classmethod
    def load(cls, data_dir=None):
        data_dir = resolve_data_dir(data_dir)
        path = os.path.join(data_dir, CONFIG_FILE_NAME)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            values = data if isinstance(data, dict) else {}
        except FileNotFoundError:
            values = {}
        except (OSError, ValueError) as exc:
            log.warning("Config %s unreadable (%s); using defaults", path, exc)
            values = {}
        return cls(data_dir, values)

    def save(self):
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(self.values, f, indent=2)
        except OSError as exc:
            log.warning("Config save failed: %s", exc)
            return False
        return True
