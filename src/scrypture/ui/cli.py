"""Command-line interface router for scrypture-store."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from scrypture.app import ScryptureApp, build_app
from scrypture.config import ConfigLoadError, ConfigValidationError, load_config
from scrypture.config.schema import STORAGE_BACKENDS
from scrypture.observability.logging import LOG_LEVELS, configure_logging
from scrypture.persistence.state_db import SQLiteBackend, StateDBError
from scrypture.ui.render import CLIRenderer, create_renderer


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """User-facing command failure; ``exit_code`` becomes the process status."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router."""

    parser = argparse.ArgumentParser(
        prog="scrypture",
        description=(
            "scrypture-store: local task/habit data store and tutorial progression.\n\n"
            "Common workflows:\n"
            "  scrypture stats               Show storage usage\n"
            "  scrypture export -o data.json Export all data\n"
            "  scrypture import data.json    Restore from an export\n"
            "  scrypture tutorial status     Show tutorial progress\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to scrypture TOML config (default: ./scrypture.toml if present).",
    )
    common.add_argument(
        "--backend",
        choices=STORAGE_BACKENDS,
        default=None,
        help="Storage backend override.",
    )
    common.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="SQLite database path override.",
    )
    common.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        default=None,
        help="Log level override.",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    stats_parser = subparsers.add_parser(
        "stats", parents=[common], help="Show storage usage across known keys"
    )
    stats_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    stats_parser.set_defaults(handler=_cmd_stats)

    export_parser = subparsers.add_parser(
        "export", parents=[common], help="Export all data as JSON"
    )
    export_parser.add_argument(
        "--output", "-o", default=None, help="Write to this file instead of stdout"
    )
    export_parser.set_defaults(handler=_cmd_export)

    import_parser = subparsers.add_parser(
        "import", parents=[common], help="Restore data from an exported JSON file"
    )
    import_parser.add_argument("file", help="Path to an exported JSON file")
    import_parser.set_defaults(handler=_cmd_import)

    backup_parser = subparsers.add_parser(
        "backup", parents=[common], help="Save a snapshot into the backup slot"
    )
    backup_parser.add_argument(
        "--file",
        dest="backup_file",
        default=None,
        help="Also copy the whole SQLite database to this path",
    )
    backup_parser.set_defaults(handler=_cmd_backup)

    restore_parser = subparsers.add_parser(
        "restore-backup", parents=[common], help="Restore the snapshot in the backup slot"
    )
    restore_parser.set_defaults(handler=_cmd_restore_backup)

    clear_parser = subparsers.add_parser(
        "clear", parents=[common], help="Remove all stored user data"
    )
    clear_parser.add_argument(
        "--yes", action="store_true", help="Confirm removal of all stored data"
    )
    clear_parser.set_defaults(handler=_cmd_clear)

    tutorial_parser = subparsers.add_parser(
        "tutorial", parents=[common], help="Inspect or drive tutorial progression"
    )
    tutorial_sub = tutorial_parser.add_subparsers(dest="tutorial_command", required=True)

    tutorial_status = tutorial_sub.add_parser("status", help="Show tutorial steps and progress")
    tutorial_status.add_argument("--json", action="store_true", help="Emit JSON output")
    tutorial_status.set_defaults(handler=_cmd_tutorial_status)

    tutorial_sub.add_parser("start", help="Start the tutorial").set_defaults(
        handler=_cmd_tutorial_start
    )

    tutorial_complete = tutorial_sub.add_parser("complete", help="Complete a tutorial step")
    tutorial_complete.add_argument("step", help="Step id")
    tutorial_complete.set_defaults(handler=_cmd_tutorial_complete)

    tutorial_sub.add_parser("skip", help="Skip the whole tutorial").set_defaults(
        handler=_cmd_tutorial_skip
    )
    tutorial_sub.add_parser("reset", help="Reset tutorial progress").set_defaults(
        handler=_cmd_tutorial_reset
    )

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Dispatch ``argv`` to its subcommand handler; returns the exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_stats(args: argparse.Namespace) -> int:
    app = _open_app(args)
    stats = app.backups.storage_stats()
    if _flag(args, "json"):
        _emit_json(
            {"command": "stats", "storage_available": app.store.is_available, **stats.to_dict()}
        )
        return 0

    renderer = _renderer_for(args)
    renderer.kv("Storage available", "yes" if app.store.is_available else "no")
    renderer.kv("Used", f"{stats.used} chars")
    renderer.kv("Quota", f"{stats.available} bytes")
    renderer.kv("Usage", f"{stats.percentage}%")
    return 0


def _cmd_export(args: argparse.Namespace) -> int:
    app = _open_app(args)
    output = _optional_str(getattr(args, "output", None))
    if output is None:
        print(app.backups.export_text())
        return 0
    if not app.backups.export_to_file(output):
        raise CLIError(f"export failed: cannot write {output}")
    _renderer_for(args).kv("Exported to", Path(output).expanduser())
    return 0


def _cmd_import(args: argparse.Namespace) -> int:
    app = _open_app(args)
    path = str(args.file)
    if not app.backups.import_from_file(path):
        raise CLIError(f"import failed: {path} could not be read or restored")
    _renderer_for(args).kv("Imported", path)
    return 0


def _cmd_backup(args: argparse.Namespace) -> int:
    app = _open_app(args)
    if not app.backups.save_named_backup():
        raise CLIError("backup failed: storage rejected the write")
    renderer = _renderer_for(args)
    renderer.text("Backup saved.")

    destination = _optional_str(getattr(args, "backup_file", None))
    if destination is not None:
        backend = app.store.backend
        if not isinstance(backend, SQLiteBackend):
            raise CLIError("backup --file needs the sqlite storage backend")
        try:
            copied = backend.backup(destination)
        except (StateDBError, OSError) as exc:
            raise CLIError(f"backup failed: {exc}") from exc
        renderer.kv("Database copied to", copied)
    return 0


def _cmd_restore_backup(args: argparse.Namespace) -> int:
    app = _open_app(args)
    snapshot = app.backups.load_named_backup()
    if snapshot is None:
        raise CLIError("restore failed: no backup found")
    if not app.backups.restore(snapshot):
        raise CLIError("restore failed: some stores may already hold backup data")
    renderer = _renderer_for(args)
    renderer.text("Backup restored.")
    if snapshot.timestamp is not None:
        renderer.kv("Backup taken", snapshot.timestamp.isoformat())
    return 0


def _cmd_clear(args: argparse.Namespace) -> int:
    if not _flag(args, "yes"):
        raise CLIError("refusing to clear data without --yes")
    app = _open_app(args)
    if not app.backups.clear_all_data():
        raise CLIError("clear failed: some keys could not be removed")
    _renderer_for(args).text("All data cleared.")
    return 0


def _cmd_tutorial_status(args: argparse.Namespace) -> int:
    tutorial = _open_app(args).tutorial
    if _flag(args, "json"):
        payload: dict[str, object] = {
            "command": "tutorial status",
            "status": tutorial.status.value,
            "progress": tutorial.progress(),
            **tutorial.state().to_dict(),
        }
        _emit_json(payload)
        return 0

    renderer = _renderer_for(args)
    renderer.kv("Status", tutorial.status.value)
    renderer.kv("Progress", f"{tutorial.progress()}%")
    renderer.kv("Current step", tutorial.current_step or "-")
    completed_at = tutorial.state().completed_at
    renderer.detail("Completed at", completed_at.isoformat() if completed_at else "-")
    rows = [
        [step.id, step.title, "done" if step.completed else "pending"]
        for step in tutorial.steps()
    ]
    renderer.table(["Step", "Title", "State"], rows, title="Steps:")
    return 0


def _cmd_tutorial_start(args: argparse.Namespace) -> int:
    tutorial = _open_app(args).tutorial
    renderer = _renderer_for(args)
    if not tutorial.start():
        renderer.text(f"Tutorial already {tutorial.status.value.replace('_', ' ')}.")
        return 0
    renderer.kv("Current step", tutorial.current_step or "-")
    return 0


def _cmd_tutorial_complete(args: argparse.Namespace) -> int:
    tutorial = _open_app(args).tutorial
    step_id = str(args.step)
    if not tutorial.complete_step(step_id):
        known = ", ".join(tutorial.step_order)
        raise CLIError(f"unknown tutorial step {step_id!r}; expected one of: {known}")
    renderer = _renderer_for(args)
    renderer.ok(step_id)
    renderer.kv("Progress", f"{tutorial.progress()}%")
    if tutorial.is_completed:
        renderer.text("Tutorial completed.")
    return 0


def _cmd_tutorial_skip(args: argparse.Namespace) -> int:
    tutorial = _open_app(args).tutorial
    tutorial.skip()
    _renderer_for(args).text("Tutorial skipped.")
    return 0


def _cmd_tutorial_reset(args: argparse.Namespace) -> int:
    tutorial = _open_app(args).tutorial
    tutorial.reset()
    _renderer_for(args).text("Tutorial reset.")
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """One sorted, compact JSON document per command on stdout."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _renderer_for(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(verbose=_flag(args, "verbose"))


def _resolve_config(args: argparse.Namespace) -> dict[str, object]:
    overrides: dict[str, object] = {
        "storage.backend": getattr(args, "backend", None),
        "storage.path": _cli_path(getattr(args, "db_path", None)),
        "observability.log_level": getattr(args, "log_level", None),
    }
    try:
        loaded = load_config(
            _optional_str(getattr(args, "config_path", None)),
            cli_overrides=overrides,
        )
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc
    return dict(loaded)


def _open_app(args: argparse.Namespace) -> ScryptureApp:
    config = _resolve_config(args)
    observability = config.get("observability")
    if isinstance(observability, Mapping):
        configure_logging(
            str(observability.get("log_level", "WARNING")),
            "json" if observability.get("log_format") == "json" else "console",
        )
    app = build_app(config)
    if not app.store.is_available:
        raise CLIError("storage is not available; check the configured storage path")
    return app


def _cli_path(value: object) -> str | None:
    # CLI paths are relative to the working directory, not the config file.
    text = _optional_str(value)
    if text is None:
        return None
    return Path(text).expanduser().resolve().as_posix()


def _optional_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "run_cli"]
