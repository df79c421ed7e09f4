class SerialphaError(Exception):
    pass


class ConfigurationError(SerialphaError):
    """Rejected before it can affect session state; shown to the operator."""


class IntervalError(ConfigurationError):
    pass


class ProfileImportError(ConfigurationError):
    pass


class FramerOverflowError(SerialphaError):
    def __init__(self, discarded, limit, records=None):
        super().__init__(f"Line buffer exceeded {limit} chars without a terminator; discarded {discarded} chars.")
        self.discarded = discarded
        self.limit = limit
        self.records = list(records or [])


class TransportError(SerialphaError):
    pass


class TransportReadError(TransportError):
    """Transient read failure; the read loop keeps going."""


class TransportLostError(TransportError):
    """Device is gone; the session ends."""


class ExportError(SerialphaError):
    pass
