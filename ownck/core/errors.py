# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Exception taxonomy for ownership/borrow violations.

The state machine in `ownck.ownership` and the scope table raise these; the
borrow checker catches them at the statement seam and turns them into
diagnostics, so analysis can continue on other paths. Each exception keeps
the structured context (primary span, related spans) instead of a rendered
message.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from .diagnostics import Diagnostic, DiagnosticKind, Related
from .span import Span


class OwnershipError(Exception):
	"""Base class for every finding the verifier can report."""

	kind: DiagnosticKind
	default_code: str

	def __init__(
		self,
		message: str,
		*,
		span: Optional[Span] = None,
		related: Sequence[Related] = (),
		code: Optional[str] = None,
	) -> None:
		super().__init__(message)
		self.message = message
		self.span = span or Span()
		self.related: List[Related] = list(related)
		self.code = code or self.default_code

	def to_diagnostic(self) -> Diagnostic:
		return Diagnostic(
			kind=self.kind,
			code=self.code,
			message=self.message,
			span=self.span,
			related=list(self.related),
		)


class UnboundNameError(OwnershipError):
	"""Use of an undeclared or out-of-scope name (or an unknown loop label)."""

	kind = DiagnosticKind.UNBOUND_NAME
	default_code = "E_UNBOUND_NAME"

	def __init__(
		self,
		name: str,
		*,
		span: Optional[Span] = None,
		code: Optional[str] = None,
		message: Optional[str] = None,
	) -> None:
		if message is None:
			what = "loop label" if code == "E_UNBOUND_LABEL" else "name"
			message = f"unbound {what} '{name}'"
		super().__init__(message, span=span, code=code)
		self.name = name


class UseAfterMoveError(OwnershipError):
	"""Read of a binding that holds no value (moved out, or never initialized)."""

	kind = DiagnosticKind.USE_AFTER_MOVE
	default_code = "E_USE_AFTER_MOVE"


class BorrowConflictError(OwnershipError):
	"""
	The aliasing invariant would be violated.

	The conflicting loan's origin is always the first related entry. Its
	later use is appended once regions are known.
	"""

	kind = DiagnosticKind.BORROW_CONFLICT
	default_code = "E_BORROW_CONFLICT"

	def __init__(
		self,
		message: str,
		*,
		span: Optional[Span] = None,
		conflict_origin: Optional[Span] = None,
		conflict_loan: Optional[int] = None,
		related: Sequence[Related] = (),
		code: Optional[str] = None,
	) -> None:
		rel = [Related("borrow created here", conflict_origin or Span())]
		rel.extend(related)
		super().__init__(message, span=span, related=rel, code=code)
		self.conflict_origin = conflict_origin or Span()
		# Borrow-site id of the conflicting loan, so its region can be attached later.
		self.conflict_loan = conflict_loan


class DanglingReferenceError(OwnershipError):
	"""A reference would outlive the storage it points into."""

	kind = DiagnosticKind.DANGLING_REFERENCE
	default_code = "E_DANGLING_REFERENCE"


class UnstableFixedPointError(OwnershipError):
	"""Internal: loop analysis did not converge within its bound."""

	kind = DiagnosticKind.UNSTABLE_FIXED_POINT
	default_code = "E_UNSTABLE_FIXED_POINT"


class JoinConflictError(OwnershipError):
	"""Branches disagree on ownership at a merge point (strict join policy only)."""

	kind = DiagnosticKind.JOIN_CONFLICT
	default_code = "E_JOIN_CONFLICT"


class ImmutableWriteError(OwnershipError):
	"""Mutation of an immutable binding, directly or through a shared reference."""

	kind = DiagnosticKind.IMMUTABLE_WRITE
	default_code = "E_ASSIGN_IMMUTABLE"


__all__ = [
	"BorrowConflictError",
	"DanglingReferenceError",
	"ImmutableWriteError",
	"JoinConflictError",
	"OwnershipError",
	"UnboundNameError",
	"UnstableFixedPointError",
	"UseAfterMoveError",
]
