# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Region analysis: where is each reference live, and does it outlive its target?

Two halves, run at different times:

1. `compute_liveness()` is a backward fixed point over the CFG that says,
   for every program point, which bindings are still used later. The borrow
   checker uses it to end a loan as soon as no binding holding it is live
   any more (the "last use" rule). This only depends on syntax, so it runs
   before the forward pass.

2. After the forward pass, the checker feeds the tracker's per-point output
   back in (`record`, `note_creation`, `record_escape`). From that the
   analyzer builds one `Region` per borrow site and applies the outlives
   rule: the shallowest scope depth the region reaches must not be above
   the depth that declared the borrowed binding. A `ScopeExit` marker sits
   at its parent's depth and a `return` escape at the caller's depth, so a
   reference that is still live when its target's frame closes, or that is
   returned, lands above the target and is rejected.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

from ownck import hir as H
from ownck.cfg import Cfg, Point, ScopeExit
from ownck.core.diagnostics import Related
from ownck.core.errors import DanglingReferenceError
from ownck.core.span import Span
from ownck.ownership import Loan, LoanKind
from ownck.scope_table import CALLER_DEPTH, BindingId


@dataclass
class Region:
	"""Live range of one borrow site, as observed by the forward pass."""

	loan_id: int
	target: Optional[BindingId]
	kind: LoanKind
	origin: Span
	points: FrozenSet[Point]
	terminal_depth: int
	created_in: int  # scope id of the borrow site
	escapes: List[Span] = field(default_factory=list)
	last_use: Optional[Span] = None
	drop_span: Optional[Span] = None

	@property
	def escaped(self) -> bool:
		return bool(self.escapes)


def _collect_uses(expr: Optional[H.HExpr], cfg: Cfg, out: Dict[BindingId, Span]) -> None:
	if expr is None:
		return
	if isinstance(expr, H.HVar):
		binding = cfg.resolved.get(expr.node_id)
		if binding is not None:
			out.setdefault(binding.binding_id, expr.loc)
		return
	if isinstance(expr, H.HBorrow):
		_collect_uses(expr.subject, cfg, out)
	elif isinstance(expr, H.HDeref):
		_collect_uses(expr.expr, cfg, out)
	elif isinstance(expr, H.HCall):
		for arg in expr.args:
			_collect_uses(arg, cfg, out)
	elif isinstance(expr, H.HBinary):
		_collect_uses(expr.left, cfg, out)
		_collect_uses(expr.right, cfg, out)


class RegionAnalyzer:
	"""See module docstring."""

	def __init__(self, cfg: Cfg) -> None:
		self.cfg = cfg
		self._uses: Dict[Point, Dict[BindingId, Span]] = {}
		self._defs: Dict[Point, Set[BindingId]] = {}
		self._live_after: Dict[Point, FrozenSet[BindingId]] = {}
		self._live_before: Dict[Point, FrozenSet[BindingId]] = {}
		self._order: Dict[int, int] = {bid: i for i, bid in enumerate(cfg.rpo())}
		self._loan_points: Dict[int, Set[Point]] = {}
		self._loan_info: Dict[int, Loan] = {}
		self._holders: Dict[int, Set[BindingId]] = {}
		self._created: Dict[int, Point] = {}
		self._escapes: Dict[int, List[Span]] = {}

	# Liveness

	def _scan(self) -> None:
		cfg = self.cfg
		for blk in cfg.blocks:
			for idx, stmt in enumerate(blk.statements):
				uses: Dict[BindingId, Span] = {}
				defs: Set[BindingId] = set()
				if isinstance(stmt, H.HLet):
					_collect_uses(stmt.value, cfg, uses)
					defs.add(cfg.declared[stmt.node_id].binding_id)
				elif isinstance(stmt, H.HAssign):
					if isinstance(stmt.target, H.HVar):
						binding = cfg.resolved.get(stmt.target.node_id)
						if binding is not None:
							defs.add(binding.binding_id)
					else:
						# `*r = v` uses `r`.
						_collect_uses(stmt.target, cfg, uses)
					_collect_uses(stmt.value, cfg, uses)
				elif isinstance(stmt, H.HExprStmt):
					_collect_uses(stmt.expr, cfg, uses)
				elif isinstance(stmt, H.HReturn):
					_collect_uses(stmt.value, cfg, uses)
				self._uses[(blk.id, idx)] = uses
				self._defs[(blk.id, idx)] = defs
			term_uses: Dict[BindingId, Span] = {}
			if blk.terminator is not None:
				_collect_uses(blk.terminator.cond, cfg, term_uses)
			self._uses[(blk.id, len(blk.statements))] = term_uses
			self._defs[(blk.id, len(blk.statements))] = set()

	def compute_liveness(self) -> None:
		"""Backward fixed point: which bindings are used after each point."""
		self._scan()
		blocks = self.cfg.blocks
		live_in: Dict[int, FrozenSet[BindingId]] = {blk.id: frozenset() for blk in blocks}
		order = sorted(blocks, key=lambda b: self._order.get(b.id, len(blocks) + b.id), reverse=True)
		changed = True
		while changed:
			changed = False
			for blk in order:
				live: Set[BindingId] = set()
				for succ in blk.successors:
					live |= live_in[succ]
				for idx in range(len(blk.statements), -1, -1):
					point = (blk.id, idx)
					self._live_after[point] = frozenset(live)
					live = (live - self._defs[point]) | set(self._uses[point])
					self._live_before[point] = frozenset(live)
				new_in = frozenset(live)
				if new_in != live_in[blk.id]:
					live_in[blk.id] = new_in
					changed = True

	def live_after(self, point: Point) -> FrozenSet[BindingId]:
		return self._live_after.get(point, frozenset())

	def live_in(self, block_id: int) -> FrozenSet[BindingId]:
		return self._live_before.get((block_id, 0), frozenset())

	def uses_at(self, point: Point) -> Dict[BindingId, Span]:
		return self._uses.get(point, {})

	# Tracker output

	def record(self, point: Point, loans: Iterable[Loan]) -> None:
		"""Loans live while `point` executes."""
		for loan in loans:
			self._loan_points.setdefault(loan.loan_id, set()).add(point)
			self._loan_info.setdefault(loan.loan_id, loan)
			if loan.holder is not None:
				self._holders.setdefault(loan.loan_id, set()).add(loan.holder)

	def note_creation(self, loan: Loan, point: Point) -> None:
		self._created.setdefault(loan.loan_id, point)
		self._loan_info.setdefault(loan.loan_id, loan)
		self._loan_points.setdefault(loan.loan_id, set()).add(point)

	def record_escape(self, loans: Iterable[Loan], span: Span) -> None:
		"""Loans carried out of the function by a `return`."""
		for loan in loans:
			spans = self._escapes.setdefault(loan.loan_id, [])
			if span not in spans:
				spans.append(span)
			self._loan_info.setdefault(loan.loan_id, loan)

	# Regions

	def _point_key(self, point: Point) -> tuple:
		return (self._order.get(point[0], len(self.cfg.blocks) + point[0]), point[1])

	def _statement(self, point: Point) -> object:
		blk = self.cfg.block(point[0])
		if point[1] < len(blk.statements):
			return blk.statements[point[1]]
		return None

	def regions(self) -> Dict[int, Region]:
		out: Dict[int, Region] = {}
		for loan_id in sorted(self._loan_info):
			info = self._loan_info[loan_id]
			points = self._loan_points.get(loan_id, set())
			ordered = sorted(points, key=self._point_key)
			depths = [self.cfg.point_depth(p) for p in ordered]
			escapes = list(self._escapes.get(loan_id, []))
			terminal = min(depths) if depths else CALLER_DEPTH
			if escapes:
				terminal = min(terminal, CALLER_DEPTH)
			drop_span: Optional[Span] = None
			for p in ordered:
				stmt = self._statement(p)
				if isinstance(stmt, ScopeExit) and any(b.binding_id == info.target for b in stmt.bindings):
					drop_span = stmt.span
					break
			last_use: Optional[Span] = None
			holders = self._holders.get(loan_id, set())
			for p in ordered:
				for bid, span in self.uses_at(p).items():
					if bid in holders:
						last_use = span
			created = self._created.get(loan_id, ordered[0] if ordered else (self.cfg.entry, 0))
			out[loan_id] = Region(
				loan_id=loan_id,
				target=info.target,
				kind=info.kind,
				origin=info.origin,
				points=frozenset(points),
				terminal_depth=terminal,
				created_in=self.cfg.point_where(created)[1],
				escapes=escapes,
				last_use=last_use,
				drop_span=drop_span,
			)
		return out

	def frame_reach(self) -> Dict[int, int]:
		"""Per scope frame: the shallowest depth reached by a reference created in it."""
		reach: Dict[int, int] = {}
		for region in self.regions().values():
			prev = reach.get(region.created_in)
			if prev is None or region.terminal_depth < prev:
				reach[region.created_in] = region.terminal_depth
		return reach

	def check_outlives(self) -> List[DanglingReferenceError]:
		"""Apply the outlives rule to every region (sorted by borrow site)."""
		errors: List[DanglingReferenceError] = []
		for region in self.regions().values():
			if region.target is None:
				continue
			target = self.cfg.bindings.get(region.target)
			if target is None or region.terminal_depth >= target.depth:
				continue
			related: List[Related] = []
			if region.drop_span is not None:
				related.append(Related("borrowed value dropped here", region.drop_span))
			if region.escapes:
				related.append(Related("reference escapes here", region.escapes[0]))
			if region.last_use is not None:
				related.append(Related("borrow later used here", region.last_use))
			errors.append(
				DanglingReferenceError(
					f"'{target.name}' does not live long enough",
					span=region.origin,
					related=related,
				)
			)
		return errors


__all__ = ["Region", "RegionAnalyzer"]
