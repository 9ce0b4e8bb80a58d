# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Lightweight source span representation used by diagnostics.

A Span carries optional file/line/column info. Trees built by hand (tests,
external front-ends without positions) use the sentinel `Span()`, which means
"unknown" and sorts before every known position.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class Span:
	"""Represents a source span (best-effort file/line/column)."""

	file: Optional[str] = None
	line: Optional[int] = None
	column: Optional[int] = None
	end_line: Optional[int] = None
	end_column: Optional[int] = None

	@classmethod
	def from_loc(cls, loc: Any) -> "Span":
		"""
		Construct a Span from an existing parser/location object.

		If `loc` is already a Span, it is returned unchanged. Lark trees and
		tokens expose `line`/`column`/`end_line`/`end_column` when positions are
		propagated; anything else degrades to the unknown sentinel.
		"""
		if loc is None:
			return cls()
		if isinstance(loc, cls):
			return loc
		meta = getattr(loc, "meta", None)
		if meta is not None and not getattr(meta, "empty", True):
			loc = meta
		return cls(
			file=getattr(loc, "file", None) or getattr(loc, "filename", None) or None,
			line=getattr(loc, "line", None),
			column=getattr(loc, "column", None),
			end_line=getattr(loc, "end_line", None),
			end_column=getattr(loc, "end_column", None),
		)

	@property
	def known(self) -> bool:
		return self.line is not None


__all__ = ["Span"]
