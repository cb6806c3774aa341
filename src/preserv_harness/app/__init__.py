from .cli import build_context, build_parser, parse_args, run

# app package exports CLI helpers for reuse in tests and entrypoints.
__all__ = ["build_context", "build_parser", "parse_args", "run"]
