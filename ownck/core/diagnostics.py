# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Common diagnostic structure for the verifier.

Diagnostics are data, not text: a kind, a stable code, a primary span and a
list of related spans. Rendering them for humans is the job of whatever
reporter consumes them; `to_json` gives that reporter a stable shape.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from .span import Span


class DiagnosticKind(Enum):
	"""Finding taxonomy. Values are the stable names used in JSON output."""

	UNBOUND_NAME = "UnboundNameError"
	USE_AFTER_MOVE = "UseAfterMoveError"
	BORROW_CONFLICT = "BorrowConflictError"
	DANGLING_REFERENCE = "DanglingReferenceError"
	UNSTABLE_FIXED_POINT = "UnstableFixedPointError"
	JOIN_CONFLICT = "JoinConflictError"
	IMMUTABLE_WRITE = "ImmutableWriteError"


@dataclass(frozen=True)
class Related:
	"""A secondary position attached to a diagnostic (e.g. the conflicting borrow site)."""

	label: str
	span: Span = field(default_factory=Span)


@dataclass
class Diagnostic:
	"""Represents one verifier finding."""

	kind: DiagnosticKind
	code: str
	message: str
	span: Span = field(default_factory=Span)  # Span() denotes unknown.
	related: List[Related] = field(default_factory=list)
	severity: str = "error"
	phase: str = "borrowcheck"

	def __post_init__(self) -> None:
		# Normalize missing spans to the sentinel so consumers always get a Span.
		if self.span is None:  # type: ignore[unreachable]
			self.span = Span()

	def identity(self) -> Tuple[str, Optional[str], Optional[int], Optional[int], str]:
		"""Key used to report the same finding only once."""
		return (self.code, self.span.file, self.span.line, self.span.column, self.message)

	def to_json(self) -> dict:
		return {
			"phase": self.phase,
			"kind": self.kind.value,
			"code": self.code,
			"message": self.message,
			"severity": self.severity,
			"file": self.span.file,
			"line": self.span.line,
			"column": self.span.column,
			"related": [
				{"label": rel.label, "file": rel.span.file, "line": rel.span.line, "column": rel.span.column}
				for rel in self.related
			],
		}


def diagnostics_to_json(diagnostics: Iterable[Diagnostic]) -> str:
	"""Serialize diagnostics with sorted keys so identical runs give identical bytes."""
	return json.dumps([d.to_json() for d in diagnostics], sort_keys=True, indent=2)


class DiagnosticSink:
	"""
	Ordered, de-duplicating collector with an optional cap.

	`limit == 0` means unlimited. Once the cap is reached further findings are
	dropped and `full` turns true so callers can stop doing work early.
	"""

	def __init__(self, limit: int = 0) -> None:
		self.limit = limit
		self.items: List[Diagnostic] = []
		self._seen: set = set()

	@property
	def full(self) -> bool:
		return self.limit > 0 and len(self.items) >= self.limit

	def emit(self, diag: Diagnostic) -> bool:
		"""Append `diag` unless it is a duplicate or the sink is full. Returns True when kept."""
		if self.full:
			return False
		key = diag.identity()
		if key in self._seen:
			return False
		self._seen.add(key)
		self.items.append(diag)
		return True

	def extend(self, diags: Iterable[Diagnostic]) -> None:
		for diag in diags:
			self.emit(diag)


__all__ = ["Diagnostic", "DiagnosticKind", "DiagnosticSink", "Related", "diagnostics_to_json"]
