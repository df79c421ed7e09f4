"""
Record parser: one framed line in, one named measurement out.

Field lookup runs through three resolution strategies in priority order:

    ByMap         explicit token index from the profile's ``map``
    ByPosition    position of the key in the profile's ``fields`` list
    ByFuzzyMatch  first field whose name contains the key (case-insensitive)

The fuzzy match is a heuristic of last resort for loosely named profiles. It
can silently pick the wrong column when several field names contain the
key; in that case the first match wins and a warning is logged when the
parser is built.
"""

import logging
import re

log = logging.getLogger(__name__)

CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]+")
WHITESPACE_RE = re.compile(r"\s+")
NUMBER_RE = re.compile(r"[+-]?[0-9]+(?:\.[0-9]+)?(?:[eE][+-]?[0-9]+)?")
BOM = "\ufeff"


def sanitize(text):
    cleaned = CONTROL_CHARS_RE.sub("", str(text))
    cleaned = cleaned.replace(BOM, "")
    return WHITESPACE_RE.sub(" ", cleaned).strip()


def tokenize(text, delimiter):
    return [tok.strip() for tok in text.split(delimiter or ",")]


def extract_number(token):
    m = NUMBER_RE.search(str(token))
    if not m:
        return None
    return float(m.group(0))


class ByMap:
    name = "map"

    @staticmethod
    def resolve(key, profile):
        return profile.field_map.get(key)


class ByPosition:
    name = "position"

    @staticmethod
    def resolve(key, profile):
        try:
            return profile.fields.index(key)
        except ValueError:
            return None


class ByFuzzyMatch:
    name = "fuzzy"

    @staticmethod
    def candidates(key, profile):
        needle = str(key).lower()
        return [i for i, f in enumerate(profile.fields) if needle in f.lower()]

    @classmethod
    def resolve(cls, key, profile):
        hits = cls.candidates(key, profile)
        return hits[0] if hits else None


RESOLUTION_ORDER = (ByMap, ByPosition, ByFuzzyMatch)


def resolve_with(key, profile):
    """Return (index, strategy) for the first strategy that resolves ``key``."""
    for strategy in RESOLUTION_ORDER:
        idx = strategy.resolve(key, profile)
        if idx is not None:
            return idx, strategy
    return None, None


def resolve_index(key, profile):
    return resolve_with(key, profile)[0]


def canonical_keys(profile):
    if profile.field_map:
        return list(profile.field_map.keys())
    return list(profile.fields)


class RecordParser:
    def __init__(self, profile):
        self.profile = profile
        self.keys = canonical_keys(profile)
        self.indices = {}
        self.ambiguous = {}
        for key in self.keys:
            idx, strategy = resolve_with(key, profile)
            self.indices[key] = idx
            if strategy is ByFuzzyMatch:
                hits = ByFuzzyMatch.candidates(key, profile)
                if len(hits) > 1:
                    self.ambiguous[key] = [profile.fields[i] for i in hits]
        for key, names in self.ambiguous.items():
            log.warning("Profile '%s': key '%s' loosely matches several fields (%s); using '%s'",
                        profile.name, key, ", ".join(names), names[0])

    def parse(self, record):
        """Return {field: float | None} for the record, or None when it fails validation."""
        cleaned = sanitize(record)
        parts = tokenize(cleaned, self.profile.delimiter)

        data = {}
        for key in self.keys:
            idx = self.indices[key]
            if idx is None or idx >= len(parts):
                continue
            data[key] = extract_number(parts[idx])

        for key, rng in self.profile.validation.items():
            value = data.get(key)
            if value is None:
                continue
            if not rng.contains(value):
                log.debug("Validation failed for %s=%r (limits %s): %r", key, value, rng.to_dict(), cleaned)
                return None
        return data


def parse_record(record, profile):
    return RecordParser(profile).parse(record)
