"""UI package exports for the CLI and its renderer."""

from scrypture.ui.cli import CLIError, build_parser, run_cli
from scrypture.ui.render import CLIRenderer, create_renderer

__all__ = ["CLIError", "CLIRenderer", "build_parser", "create_renderer", "run_cli"]
