# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Input tree nodes. Import as `from ownck import hir as H`."""

from .nodes import (
	HAssign,
	HBinary,
	HBlock,
	HBorrow,
	HBreak,
	HCall,
	HContinue,
	HDeref,
	HExpr,
	HExprStmt,
	HFunction,
	HIf,
	HLet,
	HLiteral,
	HLoop,
	HNode,
	HParam,
	HReturn,
	HStmt,
	HVar,
	HWhile,
	Mutability,
	NodeId,
	ValueKind,
)

__all__ = [
	"HAssign",
	"HBinary",
	"HBlock",
	"HBorrow",
	"HBreak",
	"HCall",
	"HContinue",
	"HDeref",
	"HExpr",
	"HExprStmt",
	"HFunction",
	"HIf",
	"HLet",
	"HLiteral",
	"HLoop",
	"HNode",
	"HParam",
	"HReturn",
	"HStmt",
	"HVar",
	"HWhile",
	"Mutability",
	"NodeId",
	"ValueKind",
]
