"""Plain-text output for the scrypture CLI.

File: src/scrypture/ui/render.py

Purpose
- Format key/value lines, notices and step tables for terminal output.

Functional requirements
- Output is deterministic: no colour, no terminal-width probing.
- ``detail`` lines only appear with ``--verbose``.
"""

from __future__ import annotations

import sys
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TextIO

_GUTTER = "  "


@dataclass(slots=True)
class CLIRenderer:
    verbose: bool = False
    stream: TextIO | None = None

    def kv(self, key: str, value: object) -> None:
        self._line(f"{key}: {value}")

    def detail(self, key: str, value: object) -> None:
        if self.verbose:
            self.kv(key, value)

    def text(self, line: str) -> None:
        self._line(line)

    def section(self, title: str) -> None:
        self._line()
        self._line(title)

    def ok(self, label: str) -> None:
        self._line(f"{_GUTTER}OK  {label}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[object]],
        *,
        title: str | None = None,
    ) -> None:
        """Left-aligned columns under a dashed rule; nothing is printed for no rows."""

        if not rows:
            return
        columns = len(headers)
        grid = [list(headers), *([str(cell) for cell in row[:columns]] for row in rows)]
        widths = [
            max(len(line[index]) for line in grid if index < len(line))
            for index in range(columns)
        ]
        if title:
            self.section(title)
        self._row(grid[0], widths)
        self._row(["-" * width for width in widths], widths)
        for line in grid[1:]:
            self._row(line, widths)

    def _row(self, cells: Sequence[str], widths: Sequence[int]) -> None:
        padded = [
            (cells[index] if index < len(cells) else "").ljust(width)
            for index, width in enumerate(widths)
        ]
        self._line(_GUTTER + _GUTTER.join(padded).rstrip())

    def _line(self, text: str = "") -> None:
        print(text, file=self.stream if self.stream is not None else sys.stdout)


def create_renderer(*, verbose: bool = False) -> CLIRenderer:
    return CLIRenderer(verbose=verbose)


__all__ = ["CLIRenderer", "create_renderer"]
