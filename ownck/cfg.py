# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Lower a structured function body into a control-flow graph.

The tree is walked exactly once. During that walk the scope table resolves
every name (unbound names become diagnostics, the walk continues) and every
frame exit is made explicit as a `ScopeExit` marker statement, including the
exits taken by `break`, `continue` and `return`, so drop points are ordinary
program points for the later passes.

Program points are `(block_id, index)`; `index == len(block.statements)` is
the block terminator. Every point remembers the scope depth it executes at:
ordinary statements run at the depth of their frame, a `ScopeExit` marker at
the depth of the parent frame, and the `return` edge at the caller's depth.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ownck import hir as H
from ownck.core.diagnostics import Diagnostic
from ownck.core.errors import UnboundNameError
from ownck.core.span import Span
from ownck.ownership import LoanKind
from ownck.scope_table import CALLER_DEPTH, Binding, BindingId, Frame, ScopeTable

log = logging.getLogger(__name__)

Point = Tuple[int, int]


@dataclass(frozen=True)
class ScopeExit:
	"""Finalization marker: the frame's bindings are dropped or erased here."""

	scope_id: int
	depth: int
	bindings: Tuple[Binding, ...]  # declaration order
	span: Span = field(default_factory=Span)


@dataclass
class Terminator:
	"""CFG terminator describing control-flow edges out of a basic block."""

	kind: str  # "jump", "branch", "return"
	targets: List[int]
	cond: Optional[H.HExpr] = None


@dataclass
class BasicBlock:
	"""Basic block of statements with a single terminator."""

	id: int
	statements: List[object] = field(default_factory=list)
	# (depth, scope_id) for every statement, parallel to `statements`.
	where: List[Tuple[int, int]] = field(default_factory=list)
	terminator: Optional[Terminator] = None
	term_where: Tuple[int, int] = (CALLER_DEPTH, 0)
	preds: List[int] = field(default_factory=list)
	# Merge position reported for join conflicts (the `if`/loop that joins here).
	span: Span = field(default_factory=Span)

	@property
	def successors(self) -> List[int]:
		return self.terminator.targets if self.terminator else []


@dataclass
class Cfg:
	"""A function lowered to blocks plus the name-resolution side tables."""

	blocks: List[BasicBlock]
	entry: int
	exit: int
	params: List[Binding]
	bindings: Dict[BindingId, Binding]
	# HVar node id -> binding it names.
	resolved: Dict[int, Binding]
	# HLet node id -> binding it declares.
	declared: Dict[int, Binding]
	frames: Dict[int, Frame]
	diagnostics: List[Diagnostic] = field(default_factory=list)

	def block(self, bid: int) -> BasicBlock:
		return self.blocks[bid]

	def point_where(self, point: Point) -> Tuple[int, int]:
		blk = self.block(point[0])
		if point[1] < len(blk.statements):
			return blk.where[point[1]]
		return blk.term_where

	def point_depth(self, point: Point) -> int:
		return self.point_where(point)[0]

	def rpo(self) -> List[int]:
		"""Reverse post-order of the blocks reachable from the entry."""
		seen = set()
		order: List[int] = []
		stack: List[Tuple[int, int]] = [(self.entry, 0)]
		seen.add(self.entry)
		while stack:
			bid, child = stack[-1]
			# Reversed so the first successor (then-branch, loop body) comes first in RPO.
			succs = self.block(bid).successors[::-1]
			if child < len(succs):
				stack[-1] = (bid, child + 1)
				nxt = succs[child]
				if nxt not in seen:
					seen.add(nxt)
					stack.append((nxt, 0))
				continue
			stack.pop()
			order.append(bid)
		order.reverse()
		return order


@dataclass
class _LoopCtx:
	label: Optional[str]
	header: int
	exit: int
	depth: int


class CfgBuilder:
	"""Single-walk lowering of an `HFunction`; see module docstring."""

	def __init__(self) -> None:
		self.blocks: List[BasicBlock] = []
		self.scopes = ScopeTable()
		self.resolved: Dict[int, Binding] = {}
		self.declared: Dict[int, Binding] = {}
		self.bindings: Dict[BindingId, Binding] = {}
		self.frames: Dict[int, Frame] = {}
		self.diagnostics: List[Diagnostic] = []
		self._loops: List[_LoopCtx] = []
		self._cur: BasicBlock
		self._exit = 0

	def build(self, fn: H.HFunction) -> Cfg:
		exit_block = self._new_block()
		exit_block.terminator = Terminator(kind="return", targets=[])
		self._exit = exit_block.id
		param_frame = self.scopes.enter_scope(fn.loc)
		self.frames[param_frame.scope_id] = param_frame
		entry = self._new_block()
		self._cur = entry
		params: List[Binding] = []
		for p in fn.params:
			ref_kind: Optional[LoanKind] = None
			if p.ref_mut is not None:
				ref_kind = LoanKind.MUT if p.ref_mut else LoanKind.SHARED
			binding = self.scopes.declare(
				p.name,
				p.kind,
				p.mutability,
				span=p.loc,
				is_param=True,
				external_ref=ref_kind,
			)
			self.declared[p.node_id] = binding
			self.bindings[binding.binding_id] = binding
			params.append(binding)
		self._block(fn.body)
		self._emit_exit(param_frame, fn.body.end_loc if fn.body.end_loc.known else fn.loc)
		self.scopes.exit_scope()
		self._jump(self._cur, exit_block.id, depth=CALLER_DEPTH)
		log.debug("cfg for %s: %d blocks, %d bindings", fn.name, len(self.blocks), len(self.bindings))
		return Cfg(
			blocks=self.blocks,
			entry=entry.id,
			exit=exit_block.id,
			params=params,
			bindings=self.bindings,
			resolved=self.resolved,
			declared=self.declared,
			frames=self.frames,
			diagnostics=self.diagnostics,
		)

	# Block plumbing

	def _new_block(self, span: Optional[Span] = None) -> BasicBlock:
		bb = BasicBlock(id=len(self.blocks), span=span or Span())
		self.blocks.append(bb)
		return bb

	def _here(self) -> Tuple[int, int]:
		if self.scopes.depth == CALLER_DEPTH:
			return (CALLER_DEPTH, 0)
		frame = self.scopes.current
		return (frame.depth, frame.scope_id)

	def _append(self, stmt: object, where: Optional[Tuple[int, int]] = None) -> None:
		self._cur.statements.append(stmt)
		self._cur.where.append(where or self._here())

	def _terminate(self, src: BasicBlock, term: Terminator, depth: Optional[int] = None) -> None:
		src.terminator = term
		here = self._here()
		src.term_where = (here[0] if depth is None else depth, here[1])
		for tgt in term.targets:
			self.blocks[tgt].preds.append(src.id)

	def _jump(self, src: BasicBlock, dst: int, depth: Optional[int] = None) -> None:
		self._terminate(src, Terminator(kind="jump", targets=[dst]), depth)

	def _unreachable(self) -> None:
		# Code after break/continue/return still gets resolved, but nothing flows into it.
		self._cur = self._new_block()

	def _emit_exit(self, frame: Frame, span: Span) -> None:
		# The marker runs in the parent frame; for the parameter frame that is the caller.
		parent_scope = 0
		for f in self.scopes.frames_above(CALLER_DEPTH):
			if f.depth == frame.depth - 1:
				parent_scope = f.scope_id
				break
		self._append(
			ScopeExit(scope_id=frame.scope_id, depth=frame.depth, bindings=tuple(frame.bindings), span=span),
			where=(frame.depth - 1, parent_scope),
		)

	def _emit_exits_above(self, depth: int, span: Span) -> None:
		for frame in self.scopes.frames_above(depth):
			self._emit_exit(frame, span)

	# Name resolution

	def _resolve(self, expr: Optional[H.HExpr]) -> None:
		if expr is None:
			return
		if isinstance(expr, H.HVar):
			try:
				self.resolved[expr.node_id] = self.scopes.resolve(expr.name, expr.loc)
			except UnboundNameError as err:
				self.diagnostics.append(err.to_diagnostic())
			return
		if isinstance(expr, H.HBorrow):
			self._resolve(expr.subject)
			return
		if isinstance(expr, H.HDeref):
			self._resolve(expr.expr)
			return
		if isinstance(expr, H.HCall):
			for arg in expr.args:
				self._resolve(arg)
			return
		if isinstance(expr, H.HBinary):
			self._resolve(expr.left)
			self._resolve(expr.right)
			return
		if isinstance(expr, H.HLiteral):
			return
		raise TypeError(f"unsupported expression node {type(expr).__name__}")

	def _find_loop(self, label: Optional[str], span: Span, keyword: str) -> Optional[_LoopCtx]:
		for ctx in reversed(self._loops):
			if label is None or ctx.label == label:
				return ctx
		if label is None:
			err = UnboundNameError(keyword, span=span, code="E_UNBOUND_LABEL", message=f"`{keyword}` outside of a loop")
		else:
			err = UnboundNameError(label, span=span, code="E_UNBOUND_LABEL")
		self.diagnostics.append(err.to_diagnostic())
		return None

	# Statements

	def _block(self, block: H.HBlock) -> None:
		frame = self.scopes.enter_scope(block.loc)
		self.frames[frame.scope_id] = frame
		for stmt in block.statements:
			self._stmt(stmt)
		self._emit_exit(frame, block.end_loc if block.end_loc.known else block.loc)
		self.scopes.exit_scope()

	def _stmt(self, stmt: H.HStmt) -> None:
		if isinstance(stmt, H.HBlock):
			self._block(stmt)
			return
		if isinstance(stmt, H.HLet):
			# The initializer sees the outer binding: `let x = x;` shadows.
			self._resolve(stmt.value)
			binding = self.scopes.declare(stmt.name, stmt.kind, stmt.mutability, span=stmt.loc)
			self.declared[stmt.node_id] = binding
			self.bindings[binding.binding_id] = binding
			self._append(stmt)
			return
		if isinstance(stmt, H.HAssign):
			if not isinstance(stmt.target, (H.HVar, H.HDeref)):
				raise TypeError(f"unsupported assignment target {type(stmt.target).__name__}")
			self._resolve(stmt.target)
			self._resolve(stmt.value)
			self._append(stmt)
			return
		if isinstance(stmt, H.HExprStmt):
			self._resolve(stmt.expr)
			self._append(stmt)
			return
		if isinstance(stmt, H.HReturn):
			self._resolve(stmt.value)
			self._append(stmt)
			self._emit_exits_above(CALLER_DEPTH, stmt.loc)
			self._terminate(self._cur, Terminator(kind="return", targets=[self._exit]), CALLER_DEPTH)
			self._unreachable()
			return
		if isinstance(stmt, (H.HBreak, H.HContinue)):
			keyword = "break" if isinstance(stmt, H.HBreak) else "continue"
			ctx = self._find_loop(stmt.label, stmt.loc, keyword)
			if ctx is None:
				return
			self._emit_exits_above(ctx.depth, stmt.loc)
			target = ctx.exit if isinstance(stmt, H.HBreak) else ctx.header
			self._jump(self._cur, target, ctx.depth)
			self._unreachable()
			return
		if isinstance(stmt, H.HIf):
			self._if(stmt)
			return
		if isinstance(stmt, (H.HLoop, H.HWhile)):
			self._loop(stmt)
			return
		raise TypeError(f"unsupported statement node {type(stmt).__name__}")

	def _if(self, stmt: H.HIf) -> None:
		self._resolve(stmt.cond)
		cond_block = self._cur
		then_entry = self._new_block()
		else_entry = self._new_block() if stmt.else_block is not None else None
		join = self._new_block(stmt.loc)
		targets = [then_entry.id, else_entry.id if else_entry is not None else join.id]
		self._terminate(cond_block, Terminator(kind="branch", targets=targets, cond=stmt.cond))
		self._cur = then_entry
		self._block(stmt.then_block)
		self._jump(self._cur, join.id)
		if else_entry is not None and stmt.else_block is not None:
			self._cur = else_entry
			self._block(stmt.else_block)
			self._jump(self._cur, join.id)
		self._cur = join

	def _loop(self, stmt: H.HLoop | H.HWhile) -> None:
		header = self._new_block(stmt.loc)
		self._jump(self._cur, header.id)
		exit_block = self._new_block(stmt.loc)
		self._cur = header
		if isinstance(stmt, H.HWhile):
			self._resolve(stmt.cond)
			body_entry = self._new_block()
			self._terminate(header, Terminator(kind="branch", targets=[body_entry.id, exit_block.id], cond=stmt.cond))
			self._cur = body_entry
		self._loops.append(_LoopCtx(label=stmt.label, header=header.id, exit=exit_block.id, depth=self.scopes.depth))
		try:
			self._block(stmt.body)
		finally:
			self._loops.pop()
		# Loop-back edge.
		self._jump(self._cur, header.id)
		self._cur = exit_block


def build_cfg(fn: H.HFunction) -> Cfg:
	return CfgBuilder().build(fn)


__all__ = ["BasicBlock", "Cfg", "CfgBuilder", "Point", "ScopeExit", "Terminator", "build_cfg"]
