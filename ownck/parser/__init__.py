# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Fixture reader for hand-written verifier inputs (lark-based)."""

from .parser import ParseError, parse_block, parse_function

__all__ = ["ParseError", "parse_block", "parse_function"]
