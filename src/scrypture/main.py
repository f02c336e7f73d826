"""Process entrypoint for ``scrypture``; maps every outcome onto :class:`ExitCode`."""

from __future__ import annotations

import sys
import traceback
from collections.abc import Iterator, Sequence
from enum import IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0
    OPERATION_FAILED = 1
    CONFIG_ERROR = 2
    INTERNAL_ERROR = 3


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Run the CLI and return an exit code; never raises."""

    try:
        from scrypture.ui.cli import run_cli

        return _as_exit_code(run_cli(argv))
    except SystemExit as exc:
        # argparse exits with 2 on usage errors, which lines up with CONFIG_ERROR.
        return _as_exit_code(exc.code)
    except KeyboardInterrupt:
        _stderr("interrupted")
        return ExitCode.OPERATION_FAILED
    except Exception as exc:  # noqa: BLE001
        code = _classify(exc)
        if code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(exc, file=sys.stderr)
        else:
            _stderr(str(exc).strip() or type(exc).__name__)
        return code


def _as_exit_code(raw: object) -> int:
    if raw is None:
        return ExitCode.SUCCESS
    if isinstance(raw, int):
        try:
            return ExitCode(raw)
        except ValueError:
            return ExitCode.INTERNAL_ERROR
    if isinstance(raw, str) and raw.strip():
        _stderr(raw.strip())
    return ExitCode.INTERNAL_ERROR


def _classify(exc: BaseException) -> ExitCode:
    from scrypture.config import ConfigLoadError, ConfigValidationError

    config_errors = (ConfigLoadError, ConfigValidationError)
    if any(isinstance(link, config_errors) for link in _causes(exc)):
        return ExitCode.CONFIG_ERROR
    return ExitCode.INTERNAL_ERROR


def _causes(exc: BaseException) -> Iterator[BaseException]:
    """Yield ``exc`` and its explicit or implicit causes, stopping on cycles."""

    visited: set[int] = set()
    link: BaseException | None = exc
    while link is not None and id(link) not in visited:
        visited.add(id(link))
        yield link
        if link.__cause__ is not None:
            link = link.__cause__
        elif not link.__suppress_context__:
            link = link.__context__
        else:
            link = None


def _stderr(message: str) -> None:
    print(message.rstrip("\n"), file=sys.stderr)


__all__ = ["ExitCode", "cli_entrypoint"]
