"""
Instrument profiles and the profile registry.

A profile describes how one instrument talks: serial line settings, how a
line is split into tokens, which token holds which field, per-field
validation ranges, display units and the fastest sampling interval the
instrument tolerates. Profiles are immutable once built.

The on-disk interchange format is the one operators already share between
stations: either a single profile object or ``{"instruments": [...]}``.
Export always writes ``{"version": 1, "instruments": [...]}``.
"""

import json
import logging
import math
import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from .errors import ConfigurationError, ProfileImportError

log = logging.getLogger(__name__)

PROFILE_DOC_VERSION = 1
PARITY_OPTIONS = ("none", "even", "odd", "mark", "space")
DATA_BITS_OPTIONS = (5, 6, 7, 8)
STOP_BITS_OPTIONS = (1, 1.5, 2)

DEFAULT_DATA_BITS = 8
DEFAULT_STOP_BITS = 1
DEFAULT_PARITY = "none"
DEFAULT_DELIMITER = ","
DEFAULT_LINE_TERMINATOR = "\n"
DEFAULT_FIELDS = ("pH", "temperature")
DEFAULT_MAP = {"pH": 0, "temperature": 1}
DEFAULT_VALIDATION = {"pH": {"min": 0, "max": 14}}
DEFAULT_MIN_INTERVAL_MS = 100


@dataclass(frozen=True)
class SerialSettings:
    baud_rate: int
    data_bits: int = DEFAULT_DATA_BITS
    stop_bits: float = DEFAULT_STOP_BITS
    parity: str = DEFAULT_PARITY

    def __post_init__(self):
        baud = _to_float_or_none(self.baud_rate)
        if baud is None or not math.isfinite(baud) or baud < 1:
            raise ValueError(f"unsupported baud rate: {self.baud_rate!r}")
        object.__setattr__(self, "baud_rate", int(baud))
        object.__setattr__(self, "data_bits", _line_option(self.data_bits, DATA_BITS_OPTIONS, "data bits"))
        object.__setattr__(self, "stop_bits", _line_option(self.stop_bits, STOP_BITS_OPTIONS, "stop bits"))
        if self.parity not in PARITY_OPTIONS:
            raise ValueError(f"unsupported parity: {self.parity!r}")

    def to_dict(self):
        return {
            "baudRate": self.baud_rate,
            "dataBits": self.data_bits,
            "stopBits": self.stop_bits,
            "parity": self.parity,
        }


@dataclass(frozen=True)
class FieldRange:
    min: Optional[float] = None
    max: Optional[float] = None

    def contains(self, value):
        if value != value:
            return False
        if self.min is not None and value < self.min:
            return False
        if self.max is not None and value > self.max:
            return False
        return True

    def to_dict(self):
        out = {}
        if self.min is not None:
            out["min"] = self.min
        if self.max is not None:
            out["max"] = self.max
        return out


@dataclass(frozen=True)
class Profile:
    name: str
    serial: SerialSettings
    delimiter: str = DEFAULT_DELIMITER
    line_terminator: str = DEFAULT_LINE_TERMINATOR
    fields: Tuple[str, ...] = DEFAULT_FIELDS
    field_map: Mapping[str, Optional[int]] = field(default_factory=lambda: MappingProxyType(dict(DEFAULT_MAP)))
    validation: Mapping[str, FieldRange] = field(default_factory=lambda: MappingProxyType({}))
    units: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    min_interval_ms: float = DEFAULT_MIN_INTERVAL_MS

    def __post_init__(self):
        # Copy and freeze caller-supplied containers.
        object.__setattr__(self, "fields", tuple(str(f) for f in self.fields))
        object.__setattr__(self, "field_map", MappingProxyType(_clean_map(self.field_map)))
        object.__setattr__(self, "validation", MappingProxyType(_parse_validation(dict(self.validation))))
        object.__setattr__(self, "units", MappingProxyType({str(k): str(v) for k, v in dict(self.units).items()}))

    def unit_for(self, key):
        return self.units.get(key, "")

    def label_for(self, key):
        unit = self.unit_for(key).strip()
        return f"{key} ({unit})" if unit else key

    @classmethod
    def from_dict(cls, obj, default_validation=None):
        serial = obj.get("serial") or {}
        parser = obj.get("parser") or {}
        timing = obj.get("timing") or {}

        fields = parser.get("fields")
        if not isinstance(fields, (list, tuple)) or not fields:
            fields = list(DEFAULT_FIELDS)
        field_map = parser.get("map")
        if not isinstance(field_map, dict):
            field_map = dict(DEFAULT_MAP)
        validation = parser.get("validation")
        if validation is None:
            validation = default_validation or {}
        units = obj.get("units")
        if not isinstance(units, dict):
            units = {}

        min_interval = timing.get("minInterval", timing.get("minIntervalMs"))
        min_interval = _to_float_or_none(min_interval)
        if not min_interval or min_interval <= 0:
            min_interval = DEFAULT_MIN_INTERVAL_MS

        parity = str(serial.get("parity", DEFAULT_PARITY) or DEFAULT_PARITY).lower()
        if parity not in PARITY_OPTIONS:
            log.warning("Profile '%s': unknown parity '%s', using '%s'", obj.get("name"), parity, DEFAULT_PARITY)
            parity = DEFAULT_PARITY

        return cls(
            name=str(obj["name"]),
            serial=SerialSettings(
                baud_rate=serial["baudRate"],
                data_bits=_or_default(serial.get("dataBits"), DEFAULT_DATA_BITS),
                stop_bits=_or_default(serial.get("stopBits"), DEFAULT_STOP_BITS),
                parity=parity,
            ),
            delimiter=str(parser.get("delimiter", DEFAULT_DELIMITER) or DEFAULT_DELIMITER),
            line_terminator=str(parser.get("lineTerminator", DEFAULT_LINE_TERMINATOR) or DEFAULT_LINE_TERMINATOR),
            fields=fields,
            field_map=field_map,
            validation=_parse_validation(validation),
            units=units,
            min_interval_ms=min_interval,
        )

    def to_dict(self):
        return {
            "name": self.name,
            "serial": self.serial.to_dict(),
            "parser": {
                "delimiter": self.delimiter,
                "lineTerminator": self.line_terminator,
                "fields": list(self.fields),
                "map": dict(self.field_map),
                "validation": {k: r.to_dict() for k, r in self.validation.items()},
            },
            "units": dict(self.units),
            "timing": {"minInterval": self.min_interval_ms},
        }


def _to_float_or_none(v):
    if v is None or isinstance(v, bool):
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def _or_default(v, default):
    return default if v is None else v


def _line_option(value, options, what):
    num = _to_float_or_none(value)
    if num is None or num not in options:
        raise ValueError(f"unsupported {what}: {value!r} (expected one of {', '.join(map(str, options))})")
    return int(num) if num.is_integer() else num


def _clean_map(raw):
    # Keys without a usable index stay, mapped to None, so the parser can still
    # resolve them by position or by loose name match.
    out = {}
    for key, idx in dict(raw).items():
        if isinstance(idx, float) and idx.is_integer():
            idx = int(idx)
        if isinstance(idx, bool) or not isinstance(idx, int) or idx < 0:
            log.debug("Map entry %r -> %r is not a token index", key, idx)
            idx = None
        out[str(key)] = idx
    return out


def _parse_validation(raw):
    out = {}
    if not isinstance(raw, dict):
        return out
    for key, spec in raw.items():
        if isinstance(spec, FieldRange):
            out[str(key)] = spec
            continue
        if not isinstance(spec, dict):
            continue
        lo = _to_float_or_none(spec.get("min"))
        hi = _to_float_or_none(spec.get("max"))
        if lo is None and hi is None:
            continue
        out[str(key)] = FieldRange(min=lo, max=hi)
    return out


DEFAULT_PROFILES = tuple(
    Profile.from_dict(p)
    for p in (
        {
            "name": "LUCA210 – pH scale",
            "serial": {"baudRate": 9600, "dataBits": 8, "stopBits": 1, "parity": "none"},
            "parser": {
                "delimiter": ",",
                "lineTerminator": "\r",
                "fields": ["pH", "temperature"],
                "map": {"pH": 0, "temperature": 1},
                "validation": {"pH": {"min": 0, "max": 14}},
            },
            "units": {"pH": "", "temperature": "°C"},
            "timing": {"minInterval": 2000},
        },
        {
            "name": "LUCA210 – Electric potential scale",
            "serial": {"baudRate": 9600, "dataBits": 8, "stopBits": 1, "parity": "none"},
            "parser": {
                "delimiter": ",",
                "lineTerminator": "\r",
                "fields": ["potential", "temperature"],
                "map": {"potential": 0, "temperature": 1},
            },
            "units": {"potential": "mV", "temperature": "°C"},
            "timing": {"minInterval": 2000},
        },
        {
            "name": "pH Meter 2 (19200),8,1,none",
            "serial": {"baudRate": 19200, "dataBits": 8, "stopBits": 1, "parity": "none"},
            "parser": {
                "delimiter": ",",
                "lineTerminator": "\r\n",
                "fields": ["pH", "temperature"],
                "map": {"pH": 0, "temperature": 1},
            },
            "units": {"pH": "", "temperature": "°C"},
            "timing": {"minInterval": 500},
        },
        {
            "name": "pH 450C",
            "serial": {"baudRate": 115200, "dataBits": 8, "stopBits": 1, "parity": "none"},
            "parser": {
                "delimiter": ";",
                "lineTerminator": "\r\n",
                "fields": ["pH", "temperature"],
                "map": {"pH": 0, "temperature": 1},
            },
            "units": {"pH": "", "temperature": "°C"},
            "timing": {"minInterval": 200},
        },
        {
            "name": "ADS_continuous – Arduino",
            "serial": {"baudRate": 9600, "dataBits": 8, "stopBits": 1, "parity": "none"},
            "parser": {"delimiter": ";", "lineTerminator": "\n", "fields": ["pH"], "map": {"pH": 0}},
            "units": {"pH": ""},
            "timing": {"minInterval": 100},
        },
        {
            "name": "AS7341 – FIA",
            "serial": {"baudRate": 115200, "dataBits": 8, "stopBits": 1, "parity": "none"},
            "parser": {
                "delimiter": ";",
                "lineTerminator": "\n",
                "fields": ["pH", "ch1", "ch2", "ch3", "ch4", "ch5", "ch6", "ch7", "clear", "nir"],
                "map": {
                    "pH": 0, "ch1": 1, "ch2": 2, "ch3": 3, "ch4": 4,
                    "ch5": 5, "ch6": 6, "ch7": 7, "clear": 8, "nir": 9,
                },
            },
            "units": {"pH": "a.u."},
            "timing": {"minInterval": 50},
        },
    )
)


def validate_profile_candidates(obj):
    """Return the acceptable profiles found in an interchange document.

    Each candidate needs a text ``name`` and a numeric ``serial.baudRate``;
    every other setting falls back to its documented default. Candidates
    without the two mandatory settings are skipped.
    """
    if isinstance(obj, dict) and isinstance(obj.get("instruments"), list):
        candidates = obj["instruments"]
    elif isinstance(obj, list):
        candidates = obj
    else:
        candidates = [obj]

    accepted = []
    for idx, cand in enumerate(candidates):
        if not isinstance(cand, dict) or not isinstance(cand.get("name"), str):
            log.warning("Profile candidate #%d rejected: missing name", idx + 1)
            continue
        serial = cand.get("serial")
        baud = serial.get("baudRate") if isinstance(serial, dict) else None
        if isinstance(baud, bool) or not isinstance(baud, (int, float)):
            log.warning("Profile candidate '%s' rejected: missing serial.baudRate", cand["name"])
            continue
        try:
            accepted.append(Profile.from_dict(cand, default_validation=DEFAULT_VALIDATION))
        except (TypeError, ValueError, OverflowError) as exc:
            log.warning("Profile candidate '%s' rejected: %s", cand["name"], exc)
    return accepted


class ProfileRegistry:
    def __init__(self, profiles=None, selected_index=0):
        self.profiles = list(DEFAULT_PROFILES if profiles is None else profiles)
        if not self.profiles:
            raise ConfigurationError("Profile registry needs at least one profile.")
        self.selected_index = 0
        self.select(selected_index if 0 <= selected_index < len(self.profiles) else 0)

    def __len__(self):
        return len(self.profiles)

    def __iter__(self):
        return iter(self.profiles)

    @property
    def selected(self) -> Profile:
        return self.profiles[self.selected_index]

    def select(self, index):
        try:
            index = int(index)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid instrument selection: {index!r}")
        if not 0 <= index < len(self.profiles):
            raise ConfigurationError(f"Invalid instrument selection: {index}")
        self.selected_index = index
        return self.profiles[index]

    def import_profiles(self, obj):
        accepted = validate_profile_candidates(obj)
        if not accepted:
            raise ProfileImportError("Document did not contain any valid instrument profile.")
        self.profiles.extend(accepted)
        log.info("Imported %d profile(s)", len(accepted))
        return accepted

    def export_document(self):
        return {"version": PROFILE_DOC_VERSION, "instruments": [p.to_dict() for p in self.profiles]}

    def import_file(self, path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except (OSError, ValueError) as exc:
            raise ProfileImportError(f"Could not read profile file {path}: {exc}") from exc
        return self.import_profiles(payload)

    def export_file(self, path):
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.export_document(), f, indent=2, ensure_ascii=False)
        log.info("Exported %d profile(s): %s", len(self.profiles), path)

    @classmethod
    def load_json(cls, path, selected_index=0):
        """Load the saved profile library, or the built-ins when there is none."""
        if not os.path.exists(path):
            return cls(selected_index=selected_index)
        try:
            with open(path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except (OSError, ValueError) as exc:
            log.warning("Profile library %s unreadable (%s); using built-in profiles", path, exc)
            return cls(selected_index=selected_index)
        profiles = validate_profile_candidates(payload)
        if not profiles:
            log.warning("Profile library %s has no valid profiles; using built-in profiles", path)
            return cls(selected_index=selected_index)
        return cls(profiles, selected_index=selected_index)

    def save_json(self, path):
        try:
            self.export_file(path)
            return True
        except OSError as exc:
            log.warning("Profile library save failed: %s", exc)
            return False
