import argparse
import json
import logging
import sys

from . import APP_NAME, APP_VERSION
from .acquisition import AcquisitionController
from .config import AppConfig
from .errors import ConfigurationError, ExportError, TransportError
from .export import CsvExportSink
from .intervals import UNIT_FACTORS_MS, format_interval
from .persistence import JsonFileStore
from .profiles import ProfileRegistry
from .session import Session
from .transport import list_serial_ports

log = logging.getLogger(__name__)

RUN_HELP = """Commands:
  add [N]        add a titration point (N = volume increment, default 0)
  field NAME     select the field used for the chart and derivative
  ylim MIN MAX   set real-time Y limits ('-' clears a limit)
  export         export all series now
  folder PATH    set the auto-export folder ('off' disables it)
  clear          clear all series
  status         show session status
  quit           disconnect and exit"""


def setup_logging(level):
    logging.basicConfig(
        level=level,
        format="[%(asctime)s] [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def parse_args(argv=None):
    ap = argparse.ArgumentParser(prog="serialpha", description=f"{APP_NAME} {APP_VERSION} – serial pH/titration logger")
    ap.add_argument("--data-dir", help="directory for config, profiles, autosave and exports")
    ap.add_argument("--verbose", "-v", action="store_true", help="log raw chunks and parsed records")
    sub = ap.add_subparsers(dest="command", required=True)

    sub.add_parser("ports", help="list serial ports")

    prof = sub.add_parser("profiles", help="list, import or export instrument profiles")
    prof_sub = prof.add_subparsers(dest="action", required=True)
    prof_sub.add_parser("list")
    p_imp = prof_sub.add_parser("import")
    p_imp.add_argument("path")
    p_exp = prof_sub.add_parser("export")
    p_exp.add_argument("path")

    run = sub.add_parser("run", help="connect to an instrument and record")
    run.add_argument("port", help="e.g. COM5 or /dev/ttyUSB0")
    run.add_argument("--profile", type=int, help="profile index (see 'profiles list')")
    run.add_argument("--interval", help="sampling interval value")
    run.add_argument("--unit", choices=sorted(UNIT_FACTORS_MS), help="sampling interval unit")
    run.add_argument("--fresh", action="store_true", help="do not restore the autosaved session")

    exp = sub.add_parser("export", help="export the autosaved session to CSV")
    exp.add_argument("--prefix", default="manual")
    exp.add_argument("--folder", help="output folder (default: configured export folder)")
    return ap.parse_args(argv)


def cmd_ports(_config, _args):
    ports = list_serial_ports()
    if not ports:
        print("No serial ports found.")
    for p in ports:
        print(p)
    return 0


def cmd_profiles(config, args):
    registry = ProfileRegistry.load_json(config.profile_library_path, config.selected_profile)
    if args.action == "list":
        for i, p in enumerate(registry):
            mark = "*" if i == registry.selected_index else " "
            print(f"{mark} {i:2d}  {p.name}  [{p.serial.baud_rate} baud, delim {p.delimiter!r}, "
                  f"min {format_interval(p.min_interval_ms)}]  fields: {', '.join(p.label_for(f) for f in p.fields)}")
        return 0
    if args.action == "import":
        try:
            accepted = registry.import_file(args.path)
        except ConfigurationError as exc:
            print(f"Import failed: {exc}", file=sys.stderr)
            return 2
        registry.save_json(config.profile_library_path)
        print(f"{len(accepted)} profile(s) imported.")
        return 0
    registry.export_file(args.path)
    print(f"Profiles exported: {args.path}")
    return 0


def cmd_export(config, args):
    snap = JsonFileStore(config.data_dir).load_snapshot()
    if not snap:
        print("No autosaved session found.")
        return 1
    session = Session.restore(snap, retention=config.retention_rows)
    folder = args.folder or config.export_folder or config.fallback_export_dir
    try:
        paths = CsvExportSink(folder).export_all(args.prefix, session)
    except ExportError as exc:
        print(f"Export failed: {exc}", file=sys.stderr)
        return 3
    for p in paths:
        print(p)
    return 0


def _handle_command(ctl, line):
    parts = line.split()
    if not parts:
        return True
    cmd, rest = parts[0].lower(), parts[1:]
    if cmd in ("quit", "exit", "q"):
        return False
    if cmd == "add":
        row = ctl.add_titration_point(rest[0] if rest else 0)
        if row is None:
            print("No measurement received yet.")
        else:
            field = ctl.session.selected_field
            print(f"#{row['read']}  volume={row['volume']}  {ctl.profile.label_for(field)}={row.get(field)}")
    elif cmd == "field" and rest:
        ctl.select_field(rest[0])
    elif cmd == "ylim" and len(rest) == 2:
        lo, hi = (None if v == "-" else v for v in rest)
        ctl.set_y_limits(lo, hi)
    elif cmd == "export":
        for p in ctl.export_now():
            print(p)
    elif cmd == "folder" and rest:
        ctl.set_export_folder(None if rest[0].lower() == "off" else rest[0])
    elif cmd == "clear":
        ctl.clear_data()
    elif cmd == "status":
        print(json.dumps(ctl.status(), indent=2, default=str))
    else:
        print(RUN_HELP)
    return True


def cmd_run(config, args):
    ctl = AcquisitionController(config, notify=lambda msg: print(f"!! {msg}"))
    if not args.fresh:
        ctl.restore()
    try:
        if args.profile is not None:
            ctl.select_profile(args.profile)
        ctl.connect(args.port, args.interval, args.unit)
    except ConfigurationError as exc:
        print(f"Not connected: {exc}", file=sys.stderr)
        return 2
    except TransportError as exc:
        print(f"Connection failed: {exc}", file=sys.stderr)
        return 3

    print(RUN_HELP)
    try:
        for line in sys.stdin:
            try:
                if not _handle_command(ctl, line):
                    break
            except (ConfigurationError, ExportError) as exc:
                print(f"Error: {exc}")
    except KeyboardInterrupt:
        pass
    finally:
        ctl.shutdown()
    return 0


COMMANDS = {
    "ports": cmd_ports,
    "profiles": cmd_profiles,
    "run": cmd_run,
    "export": cmd_export,
}


def main(argv=None):
    args = parse_args(argv)
    config = AppConfig.load(args.data_dir)
    level = logging.DEBUG if args.verbose else getattr(logging, str(config.log_level).upper(), logging.INFO)
    setup_logging(level)
    return COMMANDS[args.command](config, args)


if __name__ == "__main__":
    sys.exit(main())
