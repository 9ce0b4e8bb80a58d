# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Core data shared by every verifier stage: spans, diagnostics, error taxonomy."""

from .diagnostics import Diagnostic, DiagnosticKind, DiagnosticSink, Related, diagnostics_to_json
from .errors import (
	BorrowConflictError,
	DanglingReferenceError,
	ImmutableWriteError,
	JoinConflictError,
	OwnershipError,
	UnboundNameError,
	UnstableFixedPointError,
	UseAfterMoveError,
)
from .span import Span

__all__ = [
	"BorrowConflictError",
	"DanglingReferenceError",
	"Diagnostic",
	"DiagnosticKind",
	"DiagnosticSink",
	"ImmutableWriteError",
	"JoinConflictError",
	"OwnershipError",
	"Related",
	"Span",
	"UnboundNameError",
	"UnstableFixedPointError",
	"UseAfterMoveError",
	"diagnostics_to_json",
]
