"""
Acquisition controller: owns one operator session end to end.

bytes -> StreamFramer -> RecordParser -> LatestMeasurement
      -> SamplingScheduler -> real-time series
      -> TitrationEngine (operator action) -> titration + derivative series

The transport read loop and the sampler run on their own daemon threads and
only meet at the mailbox and at the session lock. Disconnecting never clears
data; losing the device ends the session and triggers an emergency export.
"""

import logging
import threading
import time

from . import intervals
from .errors import (
    ConfigurationError,
    FramerOverflowError,
    TransportError,
    TransportLostError,
    TransportReadError,
)
from .export import CsvExportSink, emergency_export
from .framing import StreamFramer
from .mailbox import LatestMeasurement
from .parsing import RecordParser
from .persistence import JsonFileStore
from .profiles import ProfileRegistry
from .scheduler import SamplingScheduler
from .session import Session
from .titration import TitrationEngine
from .transport import SerialTransport

log = logging.getLogger(__name__)

SOFT_ERROR_BACKOFF_S = 0.05
TICK_AUTOSAVE_MIN_INTERVAL_S = 1.0


class AcquisitionController:
    def __init__(self, config, registry=None, store=None, transport_factory=None, notify=None, on_row=None):
        self.config = config
        self.registry = registry or ProfileRegistry.load_json(config.profile_library_path, config.selected_profile)
        self.store = store or JsonFileStore(config.data_dir)
        self.transport_factory = transport_factory or self._open_serial
        self.notify = notify or (lambda msg: log.warning("%s", msg))
        self.on_row = on_row
        self.export_folder = config.export_folder

        self.mailbox = LatestMeasurement()
        self.session = Session(fields=self.profile.fields, retention=config.retention_rows)
        self.engine = TitrationEngine(self.session, self.mailbox)

        self.state_lock = threading.RLock()
        self.connected = False
        self.port = None
        self.interval_ms = None
        self.transport = None
        self.scheduler = None
        self.reader_thread = None
        self.stop_event = threading.Event()
        self.last_tick_persist = 0.0

    @property
    def profile(self):
        return self.registry.selected

    def _open_serial(self, port, profile):
        return SerialTransport(port, profile.serial, timeout=self.config.read_timeout_s).open()

    # ----------------------------- Persistence -----------------------------

    def persist(self, reason=""):
        return self.store.save_snapshot(self.session.snapshot(reason))

    def restore(self):
        """Reload the last autosaved session and export folder (startup only)."""
        with self.state_lock:
            if self.connected:
                raise ConfigurationError("Cannot restore a session while connected.")
            snap = self.store.load_snapshot()
            if snap:
                self.session = Session.restore(snap, fields=self.profile.fields, retention=self.config.retention_rows)
                self.engine = TitrationEngine(self.session, self.mailbox)
                log.info(
                    "Session restored (%s): %d real-time, %d titration, %d derivative rows",
                    snap.get("reason") or "unknown",
                    len(self.session.real_time),
                    len(self.session.titration),
                    len(self.session.derivative),
                )
            folder = self.store.load_export_folder()
            if folder:
                self.export_folder = folder
                log.info("Auto-export folder restored: %s", folder)
        return self.session

    # ----------------------------- Connection -----------------------------

    def validate_interval(self, value, unit):
        return intervals.validate_interval(value, unit, self.profile)

    def connect(self, port, interval_value=None, interval_unit=None):
        with self.state_lock:
            if self.connected:
                raise ConfigurationError(f"Already connected to {self.port}.")
            profile = self.profile
            value = self.config.interval_value if interval_value is None else interval_value
            unit = self.config.interval_unit if interval_unit is None else interval_unit
            interval_ms = intervals.validate_interval(value, unit, profile)

            try:
                transport = self.transport_factory(port, profile)
            except OSError as exc:
                raise TransportError(f"Could not open {port}: {exc}") from exc
            except ValueError as exc:
                raise ConfigurationError(f"Profile '{profile.name}' has unusable line settings: {exc}") from exc

            self.session.set_fields(profile.fields)
            self.transport = transport
            self.port = port
            self.interval_ms = interval_ms
            self.stop_event = threading.Event()
            framer = StreamFramer(profile.line_terminator, max_buffer=self.config.max_buffer_chars)
            parser = RecordParser(profile)
            self.scheduler = SamplingScheduler(
                self.session, self.mailbox, intervals.effective_period_s(interval_ms, profile), on_row=self._on_row
            )
            self.reader_thread = threading.Thread(
                target=self._read_loop,
                args=(transport, framer, parser, self.stop_event),
                name="serial-reader",
                daemon=True,
            )
            self.connected = True
            self.reader_thread.start()
            self.scheduler.start()

        log.info("Connected: %s, profile '%s', interval %s, terminator %r",
                 port, profile.name, intervals.format_interval(interval_ms), profile.line_terminator)
        self.persist("connect")

    def _stop_io(self):
        self.stop_event.set()
        if self.scheduler:
            self.scheduler.stop()
        if self.transport:
            self.transport.close()
        t = self.reader_thread
        if t and t.is_alive() and t is not threading.current_thread():
            t.join(timeout=1.0)
        self.connected = False
        self.transport = None
        self.reader_thread = None

    def disconnect(self):
        with self.state_lock:
            if not self.connected:
                return False
            self._stop_io()
        log.info("Disconnected")
        self.persist("disconnect")
        return True

    def _on_device_lost(self, reason):
        with self.state_lock:
            if not self.connected:
                return
            self._stop_io()
        log.error("Instrument connection lost: %s", reason)
        self.persist("serialDisconnect")
        paths = emergency_export(self.session, self.export_folder, self.config.fallback_export_dir, prefix="disconnect")
        if paths:
            self.notify(f"Connection to instrument lost. Data auto-saved ({len(paths)} file(s) in {paths[0].parent}).")
        else:
            self.notify("Connection to instrument lost. Data kept in the autosave file.")

    def _on_end_of_stream(self):
        with self.state_lock:
            if not self.connected:
                return
            self._stop_io()
        log.info("Instrument stream ended")
        self.persist("endOfStream")
        self.notify("Instrument stream ended; session disconnected.")

    def _read_loop(self, transport, framer, parser, stop_event):
        while not stop_event.is_set():
            try:
                result = transport.read()
            except TransportLostError as exc:
                if not stop_event.is_set():
                    self._on_device_lost(str(exc))
                return
            except TransportReadError as exc:
                log.warning("Read error (continuing): %s", exc)
                stop_event.wait(SOFT_ERROR_BACKOFF_S)
                continue
            except Exception:
                log.exception("Unexpected read failure (continuing)")
                stop_event.wait(SOFT_ERROR_BACKOFF_S)
                continue

            if result.end_of_stream:
                if not stop_event.is_set():
                    self._on_end_of_stream()
                return
            if not result.chunk:
                continue
            log.debug("Raw chunk: %r", result.chunk)

            try:
                records = framer.feed(result.chunk)
            except FramerOverflowError as exc:
                log.warning("%s", exc)
                records = exc.records

            for record in records:
                measurement = parser.parse(record)
                if measurement is None:
                    log.debug("Record rejected: %r", record)
                    continue
                self.mailbox.put(measurement)
                log.debug("Parsed: %s", measurement)

    def _on_row(self, row):
        if self.on_row:
            self.on_row(row)
        now = time.monotonic()
        if now - self.last_tick_persist >= TICK_AUTOSAVE_MIN_INTERVAL_S:
            self.last_tick_persist = now
            self.persist("rtTick")

    # ----------------------------- Operator actions -----------------------------

    def add_titration_point(self, increment=0):
        row = self.engine.add_point(increment)
        if row is not None:
            self.persist("titAdd")
        return row

    def select_field(self, name):
        self.session.select_field(name)
        self.engine.recompute_derivative()
        self.persist("rtFieldChange")

    def set_y_limits(self, y_min=None, y_max=None):
        self.session.set_y_limits(y_min, y_max)
        self.persist("rtYLimitsChange")

    def clear_data(self):
        self.session.clear()
        self.persist("clear")

    def select_profile(self, index):
        with self.state_lock:
            if self.connected:
                raise ConfigurationError("Disconnect before changing the instrument profile.")
            profile = self.registry.select(index)
            self.session.set_fields(profile.fields)
            self.config.set("selected_profile", self.registry.selected_index)
        self.config.save()
        log.info("Profile selected: %s", profile.name)
        self.persist("profileChange")
        return profile

    def set_export_folder(self, folder):
        self.export_folder = folder or None
        self.store.save_export_folder(self.export_folder)
        log.info("Auto-export: %s", self.export_folder or "off")

    def export_now(self, prefix="manual"):
        target = self.export_folder or self.config.fallback_export_dir
        return CsvExportSink(target).export_all(prefix, self.session)

    def import_profiles(self, path):
        accepted = self.registry.import_file(path)
        self.registry.save_json(self.config.profile_library_path)
        return accepted

    def export_profiles(self, path):
        self.registry.export_file(path)

    def status(self):
        with self.session.lock:
            return {
                "connected": self.connected,
                "port": self.port,
                "profile": self.profile.name,
                "interval": intervals.format_interval(self.interval_ms) if self.interval_ms else None,
                "field": self.session.selected_field,
                "real_time_rows": len(self.session.real_time),
                "titration_rows": len(self.session.titration),
                "derivative_points": len(self.session.derivative),
                "volume": self.session.volume_sum,
                "latest": self.mailbox.peek(),
                "export_folder": self.export_folder,
            }

    def shutdown(self):
        self.disconnect()
        self.persist("shutdown")
        if not self.session.is_empty:
            emergency_export(self.session, self.export_folder, self.config.fallback_export_dir, prefix="autosave")
