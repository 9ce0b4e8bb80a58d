# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Input tree consumed by the verifier.

The tree is produced by an external front-end (or by the fixture reader in
`ownck.parser`). It is already name-agnostic about types: every binding
declaration carries the two facts the verifier needs, its value kind
(copy vs move) and its mutability.

Guiding rules:
- Nodes are purely syntactic; name resolution happens in the CFG builder.
- The verifier never mutates nodes; per-node facts live in side tables
  keyed by `node_id`.
- Blocks are explicit statements (`HBlock`) and each one is a scope frame.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import List, Optional, Tuple

from ownck.core.span import Span

NodeId = int

_node_ids = itertools.count(1)


def _next_node_id() -> NodeId:
	return next(_node_ids)


class ValueKind(Enum):
	"""Copy/move classification of a binding's value."""

	COPY = auto()  # ByValueCopy: reads duplicate the value
	MOVE = auto()  # ByValueMove: reads by value transfer ownership


class Mutability(Enum):
	IMMUTABLE = auto()
	MUTABLE = auto()


# Base node kinds

@dataclass
class HNode:
	"""Base class for all tree nodes."""

	node_id: NodeId = field(default_factory=_next_node_id, kw_only=True, compare=False, repr=False)


class HExpr(HNode):
	"""Base class for all expressions."""
	pass


class HStmt(HNode):
	"""Base class for all statements."""
	pass


# Expressions

@dataclass
class HVar(HExpr):
	"""Reference to a binding by name (resolved by the CFG builder)."""
	name: str
	loc: Span = field(default_factory=Span)


@dataclass
class HLiteral(HExpr):
	"""Literal value; owns nothing and borrows nothing."""
	value: object = None
	loc: Span = field(default_factory=Span)


@dataclass
class HBorrow(HExpr):
	"""`&subject` / `&mut subject`."""
	subject: HExpr
	is_mut: bool = False
	loc: Span = field(default_factory=Span)


@dataclass
class HDeref(HExpr):
	"""`*expr`: read (or, as an assignment target, write) through a reference."""
	expr: HExpr
	loc: Span = field(default_factory=Span)


@dataclass
class HCall(HExpr):
	"""
	Call of an external function by name.

	Arguments are passed by value (copy or move, per the argument binding's
	kind) unless they are borrow expressions. `ret_borrows_from` lists the
	argument indices whose references flow into the returned value, the way
	an elided lifetime ties `fn first(x: &T) -> &T` together.
	"""
	fn: str
	args: List[HExpr] = field(default_factory=list)
	ret_borrows_from: Tuple[int, ...] = ()
	loc: Span = field(default_factory=Span)


@dataclass
class HBinary(HExpr):
	"""Binary operator; both operands are read by value."""
	op: str
	left: HExpr
	right: HExpr
	loc: Span = field(default_factory=Span)


# Statements

@dataclass
class HBlock(HStmt):
	"""Lexical block; one scope frame. `end_loc` is the closing position (drop point)."""
	statements: List[HStmt] = field(default_factory=list)
	loc: Span = field(default_factory=Span)
	end_loc: Span = field(default_factory=Span)


@dataclass
class HLet(HStmt):
	"""
	Binding declaration. `value=None` declares a binding that is initialized
	by a later assignment.
	"""
	name: str
	value: Optional[HExpr] = None
	kind: ValueKind = ValueKind.MOVE
	mutability: Mutability = Mutability.IMMUTABLE
	loc: Span = field(default_factory=Span)

	@property
	def mutable(self) -> bool:
		return self.mutability is Mutability.MUTABLE


@dataclass
class HAssign(HStmt):
	"""`target = value`; target is an `HVar` or an `HDeref`."""
	target: HExpr
	value: HExpr
	loc: Span = field(default_factory=Span)


@dataclass
class HExprStmt(HStmt):
	expr: HExpr
	loc: Span = field(default_factory=Span)


@dataclass
class HReturn(HStmt):
	value: Optional[HExpr] = None
	loc: Span = field(default_factory=Span)


@dataclass
class HBreak(HStmt):
	"""`break` out of the innermost loop, or out of the loop named `label`."""
	label: Optional[str] = None
	loc: Span = field(default_factory=Span)


@dataclass
class HContinue(HStmt):
	label: Optional[str] = None
	loc: Span = field(default_factory=Span)


@dataclass
class HIf(HStmt):
	cond: HExpr
	then_block: HBlock
	else_block: Optional[HBlock] = None
	loc: Span = field(default_factory=Span)


@dataclass
class HLoop(HStmt):
	"""Unconditional loop; left only through `break` or `return`."""
	body: HBlock
	label: Optional[str] = None
	loc: Span = field(default_factory=Span)


@dataclass
class HWhile(HStmt):
	cond: HExpr
	body: HBlock
	label: Optional[str] = None
	loc: Span = field(default_factory=Span)


# Functions

@dataclass
class HParam(HNode):
	"""
	Function parameter.

	`ref_mut` is None for an owned parameter, False for `&T` and True for
	`&mut T`; reference parameters point into caller-owned storage.
	"""
	name: str
	kind: ValueKind = ValueKind.MOVE
	mutability: Mutability = Mutability.IMMUTABLE
	ref_mut: Optional[bool] = None
	loc: Span = field(default_factory=Span)


@dataclass
class HFunction(HNode):
	name: str
	params: List[HParam] = field(default_factory=list)
	body: HBlock = field(default_factory=HBlock)
	loc: Span = field(default_factory=Span)
