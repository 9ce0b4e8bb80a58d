# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
ownck: static ownership and borrow verifier.

Feed it a function (or a bare block) as an `ownck.hir` tree and get back the
ordered list of ownership violations: use after move, aliasing conflicts,
dangling references. An empty list means the program is accepted.

    from ownck import hir as H, verify
    result = verify(fn)
    for diag in result.diagnostics: ...
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Union

from ownck import hir
from ownck.borrow_checker_pass import BorrowChecker, CheckStats, DropEvent, VerificationResult
from ownck.config import CheckerConfig, ConfigError, JoinPolicy, load_config
from ownck.core import (
	BorrowConflictError,
	DanglingReferenceError,
	Diagnostic,
	DiagnosticKind,
	ImmutableWriteError,
	JoinConflictError,
	OwnershipError,
	Related,
	Span,
	UnboundNameError,
	UnstableFixedPointError,
	UseAfterMoveError,
	diagnostics_to_json,
)

__version__ = "0.1.0"


def verify(
	tree: Union[hir.HFunction, hir.HBlock],
	config: Optional[Union[CheckerConfig, Mapping[str, Any]]] = None,
) -> VerificationResult:
	"""Verify one function (or block) and return its diagnostics; `accepted` is True when there are none."""
	if config is None:
		config = CheckerConfig()
	elif not isinstance(config, CheckerConfig):
		config = CheckerConfig.from_mapping(config)
	checker = BorrowChecker(config=config)
	if isinstance(tree, hir.HBlock):
		tree = hir.HFunction(name="<block>", body=tree, loc=tree.loc)
	if not isinstance(tree, hir.HFunction):
		raise TypeError(f"verify() expects an HFunction or HBlock, got {type(tree).__name__}")
	return checker.check_function(tree)


__all__ = [
	"BorrowChecker",
	"BorrowConflictError",
	"CheckStats",
	"CheckerConfig",
	"ConfigError",
	"DanglingReferenceError",
	"Diagnostic",
	"DiagnosticKind",
	"DropEvent",
	"ImmutableWriteError",
	"JoinConflictError",
	"JoinPolicy",
	"OwnershipError",
	"Related",
	"Span",
	"UnboundNameError",
	"UnstableFixedPointError",
	"UseAfterMoveError",
	"VerificationResult",
	"diagnostics_to_json",
	"hir",
	"load_config",
	"verify",
]
