# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Borrow-check pass: ownership and borrow verification of one function.

Scope:
- Lowers the input tree to a CFG (names resolved, frame exits explicit).
- Computes backward liveness so a loan ends at the last use of whatever
  binding holds it.
- Runs the ownership state machine as a forward dataflow to a fixed point
  (worklist in reverse post-order, meet at joins).
- Replays the converged states once with reporting switched on, collecting
  diagnostics, drop events and per-point live loans.
- Builds regions from those loans and applies the outlives rule.

Only the first violation on a path is reported: a failing statement marks
its path as poisoned and the path stays silent until it meets a clean one.
"""

from __future__ import annotations

import heapq
import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Tuple, TypeVar

from ownck import hir as H
from ownck.cfg import Cfg, Point, ScopeExit, build_cfg
from ownck.config import CheckerConfig, JoinPolicy
from ownck.core.diagnostics import Diagnostic, DiagnosticSink, Related
from ownck.core.errors import (
	BorrowConflictError,
	JoinConflictError,
	OwnershipError,
	UnstableFixedPointError,
)
from ownck.core.span import Span
from ownck.ownership import (
	LATTICE_HEIGHT,
	FlowState,
	Loan,
	LoanKind,
	borrow,
	consume,
	disagreeing_bindings,
	fresh_state,
	meet_flow,
	read,
	reborrow,
	use_through,
	write,
	write_through,
)
from ownck.regions import Region, RegionAnalyzer
from ownck.scope_table import Binding, BindingId, finalize_order

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class DropEvent:
	"""A binding that still owned its value when its frame closed."""

	binding: Binding
	span: Span


@dataclass
class CheckStats:
	block_visits: Dict[int, int] = field(default_factory=dict)
	visit_bound: int = 0

	@property
	def max_visits(self) -> int:
		return max(self.block_visits.values(), default=0)


@dataclass
class VerificationResult:
	"""Everything one run produces. `diagnostics` is the verdict; the rest is for tooling and tests."""

	diagnostics: List[Diagnostic] = field(default_factory=list)
	regions: Dict[int, Region] = field(default_factory=dict)
	drops: List[DropEvent] = field(default_factory=list)
	frame_reach: Dict[int, int] = field(default_factory=dict)
	stats: CheckStats = field(default_factory=CheckStats)

	@property
	def accepted(self) -> bool:
		return not self.diagnostics


def _borrow_sites(expr: Optional[H.HExpr]) -> int:
	if expr is None:
		return 0
	if isinstance(expr, H.HBorrow):
		return 1 + _borrow_sites(expr.subject)
	if isinstance(expr, H.HDeref):
		return _borrow_sites(expr.expr)
	if isinstance(expr, H.HCall):
		return sum(_borrow_sites(arg) for arg in expr.args)
	if isinstance(expr, H.HBinary):
		return _borrow_sites(expr.left) + _borrow_sites(expr.right)
	return 0


def _count_borrow_sites(cfg: Cfg) -> int:
	total = 0
	for blk in cfg.blocks:
		for stmt in blk.statements:
			if isinstance(stmt, H.HLet):
				total += _borrow_sites(stmt.value)
			elif isinstance(stmt, H.HAssign):
				total += _borrow_sites(stmt.value)
			elif isinstance(stmt, H.HExprStmt):
				total += _borrow_sites(stmt.expr)
			elif isinstance(stmt, H.HReturn):
				total += _borrow_sites(stmt.value)
		if blk.terminator is not None:
			total += _borrow_sites(blk.terminator.cond)
	return total


@dataclass
class BorrowChecker:
	"""
	Ownership/borrow verifier for one function (or a bare block).

	Usage:
	    result = BorrowChecker(config).check_function(fn)
	    if not result.accepted: ...

	The checker is reusable; every call starts from a clean slate.
	"""

	config: CheckerConfig = field(default_factory=CheckerConfig)
	diagnostics: List[Diagnostic] = field(default_factory=list)

	def __post_init__(self) -> None:
		self._cfg: Optional[Cfg] = None
		self._regions: Optional[RegionAnalyzer] = None
		self._sink = DiagnosticSink(self.config.max_diagnostics)
		self._reporting = False
		self._drops: List[DropEvent] = []
		self._conflicts: List[Tuple[Diagnostic, int]] = []
		self._stats = CheckStats()

	# Entry points

	def check_function(self, fn: H.HFunction) -> VerificationResult:
		self.diagnostics.clear()
		self._sink = DiagnosticSink(self.config.max_diagnostics)
		self._drops = []
		self._conflicts = []
		self._reporting = False

		cfg = build_cfg(fn)
		self._cfg = cfg
		self._sink.extend(cfg.diagnostics)
		regions = RegionAnalyzer(cfg)
		regions.compute_liveness()
		self._regions = regions

		self._stats = CheckStats(visit_bound=self._visit_bound(cfg))
		outs = self._solve()
		if outs is not None and not self._sink.full:
			self._reporting = True
			self._sweep(outs)
			self._reporting = False
		if outs is not None and not self._sink.full:
			for err in regions.check_outlives():
				self._sink.emit(err.to_diagnostic())
		computed = regions.regions()
		self._attach_later_uses(computed)

		self.diagnostics.extend(self._sink.items)
		log.debug(
			"borrow check %s: %d diagnostics, %d regions, %d drops, max block visits %d/%d",
			fn.name,
			len(self.diagnostics),
			len(computed),
			len(self._drops),
			self._stats.max_visits,
			self._stats.visit_bound,
		)
		return VerificationResult(
			diagnostics=list(self.diagnostics),
			regions=computed,
			drops=list(self._drops),
			frame_reach=regions.frame_reach(),
			stats=self._stats,
		)

	def check_block(self, block: H.HBlock) -> List[Diagnostic]:
		"""Verify a bare block as the body of a parameterless function."""
		fn = H.HFunction(name="<block>", body=block, loc=block.loc)
		return self.check_function(fn).diagnostics

	# Fixed point

	def _visit_bound(self, cfg: Cfg) -> int:
		# Each visit of a block must lower some binding in a finite lattice, or
		# add a loan from a finite set of borrow sites; beyond that it is cycling.
		n_bindings = len(cfg.bindings)
		n_sites = _count_borrow_sites(cfg)
		return LATTICE_HEIGHT * (n_bindings + n_sites * (n_bindings + 1)) + 2

	def _entry_state(self) -> FlowState:
		cfg = self._cfg
		assert cfg is not None
		st = FlowState(bindings={p.binding_id: fresh_state() for p in cfg.params})
		# A reference parameter holds one loan into caller storage, keyed by its HParam node.
		for node_id, binding in sorted(cfg.declared.items()):
			if binding.is_param and binding.external_ref is not None:
				st.hold(
					Loan(
						loan_id=node_id,
						target=None,
						kind=binding.external_ref,
						holder=binding.binding_id,
						origin=binding.span,
					)
				)
		return st

	def _in_state(self, bid: int, outs: Dict[int, FlowState]) -> Optional[FlowState]:
		cfg = self._cfg
		assert cfg is not None and self._regions is not None
		blk = cfg.blocks[bid]
		states = [outs[p] for p in sorted(set(blk.preds)) if p in outs]
		if bid == cfg.entry:
			states.insert(0, self._entry_state())
		if not states:
			return None
		merged = states[0].copy()
		for other in states[1:]:
			merged = meet_flow(merged, other)
		if self.config.join_policy is JoinPolicy.ERROR and len(states) > 1:
			conflicts = disagreeing_bindings(states)
			if conflicts:
				if self._reporting and not merged.poisoned:
					for binding_id in conflicts:
						self._emit(self._join_conflict(binding_id, states, blk.span))
				merged.poisoned = True
		live = self._regions.live_in(bid)
		merged.release(lambda ln: ln.holder is not None and ln.holder in live)
		return merged

	def _join_conflict(self, binding_id: BindingId, states: List[FlowState], span: Span) -> JoinConflictError:
		assert self._cfg is not None
		binding = self._cfg.bindings[binding_id]
		moved_at: Optional[Span] = None
		for st in states:
			cur = st.get(binding_id)
			if cur is not None and cur.moved:
				moved_at = cur.moved_at
				break
		return JoinConflictError(
			f"'{binding.name}' is moved on some paths into this point but not on others",
			span=span,
			related=[Related("value moved here", moved_at or Span())],
		)

	def _solve(self) -> Optional[Dict[int, FlowState]]:
		"""Forward worklist to a fixed point. Returns None if it failed to converge."""
		cfg = self._cfg
		assert cfg is not None
		order = {bid: i for i, bid in enumerate(cfg.rpo())}
		outs: Dict[int, FlowState] = {}
		visits: Dict[int, int] = defaultdict(int)
		heap: List[Tuple[int, int]] = [(order[cfg.entry], cfg.entry)]
		queued = {cfg.entry}
		while heap:
			_, bid = heapq.heappop(heap)
			queued.discard(bid)
			in_state = self._in_state(bid, outs)
			if in_state is None:
				continue
			visits[bid] += 1
			self._stats.block_visits[bid] = visits[bid]
			if visits[bid] > self._stats.visit_bound:
				blk = cfg.blocks[bid]
				err = UnstableFixedPointError(
					f"ownership analysis did not converge after {visits[bid] - 1} visits of block {bid}",
					span=blk.span,
				)
				self._emit(err)
				log.debug("fixed point aborted at block %d (bound %d)", bid, self._stats.visit_bound)
				return None
			out = self._transfer(bid, in_state)
			if outs.get(bid) == out:
				continue
			outs[bid] = out
			for succ in cfg.blocks[bid].successors:
				if succ not in queued:
					queued.add(succ)
					heapq.heappush(heap, (order[succ], succ))
		return outs

	def _sweep(self, outs: Dict[int, FlowState]) -> None:
		"""Replay every reachable block once on the converged states, reporting."""
		cfg = self._cfg
		assert cfg is not None
		for bid in cfg.rpo():
			if self._sink.full:
				return
			in_state = self._in_state(bid, outs)
			if in_state is None:
				continue
			self._transfer(bid, in_state)

	# Transfer

	def _transfer(self, bid: int, in_state: FlowState) -> FlowState:
		cfg = self._cfg
		assert cfg is not None
		blk = cfg.blocks[bid]
		st = in_state.copy()
		for idx, stmt in enumerate(blk.statements):
			point = (bid, idx)
			if isinstance(stmt, ScopeExit):
				self._finalize(st, stmt, point)
				continue
			before = st.all_loans()
			self._exec(st, stmt, point)
			self._record(point, before + st.all_loans())
			self._end_statement(st, point)
		term = blk.terminator
		if term is not None and term.cond is not None:
			point = (bid, len(blk.statements))
			before = st.all_loans()
			cond = term.cond
			self._guard(st, lambda: self._eval(st, cond, point))
			self._record(point, before + st.all_loans())
			self._end_statement(st, point)
		return st

	def _record(self, point: Point, loans: List[Loan]) -> None:
		if self._reporting and self._regions is not None:
			self._regions.record(point, loans)

	def _end_statement(self, st: FlowState, point: Point) -> None:
		# Temporaries end with their statement; stored references end at the
		# last use of the binding holding them.
		assert self._regions is not None
		live = self._regions.live_after(point)
		st.release(lambda ln: ln.holder is not None and ln.holder in live)

	def _finalize(self, st: FlowState, marker: ScopeExit, point: Point) -> None:
		self._record(point, st.all_loans())
		present = [b for b in marker.bindings if b.binding_id in st.bindings]
		dropped, erased = finalize_order(present, lambda b: st.get(b.binding_id))
		gone = {b.binding_id for b in present}
		for binding_id in gone:
			del st.bindings[binding_id]
		st.release(lambda ln: ln.holder not in gone)
		if self._reporting:
			for binding in dropped:
				self._drops.append(DropEvent(binding=binding, span=marker.span))
			log.debug(
				"scope %d exit: drop %s, erase %s",
				marker.scope_id,
				[b.name for b in dropped],
				[b.name for b in erased],
			)

	def _exec(self, st: FlowState, stmt: object, point: Point) -> None:
		cfg = self._cfg
		assert cfg is not None
		if isinstance(stmt, H.HLet):
			binding = cfg.declared[stmt.node_id]
			value = stmt.value
			carried: Optional[List[Loan]] = []
			if value is not None:
				carried = self._guard(st, lambda: self._eval(st, value, point))
			st.bindings[binding.binding_id] = fresh_state(initialized=value is not None)
			st.detach(binding.binding_id)
			self._bind(st, carried or [], binding.binding_id)
		elif isinstance(stmt, H.HAssign):
			self._guard(st, lambda: self._assign(st, stmt, point))
		elif isinstance(stmt, H.HExprStmt):
			self._guard(st, lambda: self._eval(st, stmt.expr, point))
		elif isinstance(stmt, H.HReturn):
			self._guard(st, lambda: self._return(st, stmt, point))

	def _assign(self, st: FlowState, stmt: H.HAssign, point: Point) -> None:
		cfg = self._cfg
		assert cfg is not None
		carried = self._eval(st, stmt.value, point)
		target = stmt.target
		if isinstance(target, H.HDeref):
			self._write_through(st, target, point)
			return
		binding = cfg.resolved.get(target.node_id)
		if binding is None:
			return
		cur = st.get(binding.binding_id)
		if cur is None:
			return
		st.bindings[binding.binding_id] = write(binding, cur, target.loc)
		# The old reference stored in the target is overwritten.
		st.release(lambda ln: ln.holder != binding.binding_id)
		st.detach(binding.binding_id)
		self._bind(st, carried, binding.binding_id)

	def _return(self, st: FlowState, stmt: H.HReturn, point: Point) -> None:
		if stmt.value is None:
			return
		carried = self._eval(st, stmt.value, point)
		if self._reporting and self._regions is not None and carried:
			self._regions.record_escape(carried, stmt.loc)

	def _write_through(self, st: FlowState, target: H.HDeref, point: Point) -> None:
		cfg = self._cfg
		assert cfg is not None
		inner = target.expr
		if not isinstance(inner, H.HVar):
			self._eval(st, inner, point)
			return
		binding = cfg.resolved.get(inner.node_id)
		if binding is None:
			return
		cur = st.get(binding.binding_id)
		if cur is None:
			return
		read(binding, cur, inner.loc)
		write_through(
			binding,
			st.loans_held_by(binding.binding_id),
			st.children_of(binding.binding_id),
			target.loc,
		)

	def _bind(self, st: FlowState, carried: List[Loan], holder: BindingId) -> None:
		"""Hand the loans an initializer produced over to the binding that stores it."""
		for loan in carried:
			# A reference never freezes itself (`r = &mut *r`).
			st.hold(replace(loan, holder=holder, via=loan.via - {holder}), temp=loan.with_holder(None))

	def _eval(self, st: FlowState, expr: H.HExpr, point: Point) -> List[Loan]:
		"""
		Evaluate `expr` by value. Returns the loans its result carries, as
		temporaries (holder None) until something stores them.
		"""
		cfg = self._cfg
		assert cfg is not None
		if isinstance(expr, H.HLiteral):
			return []
		if isinstance(expr, H.HVar):
			binding = cfg.resolved.get(expr.node_id)
			if binding is None:
				return []
			cur = st.get(binding.binding_id)
			if cur is None:
				return []
			nxt = consume(binding, cur, expr.loc)
			use_through(
				binding,
				st.children_of(binding.binding_id),
				expr.loc,
				access="use" if binding.is_copy else "move",
			)
			st.bindings[binding.binding_id] = nxt
			return [ln.with_holder(None) for ln in st.loans_held_by(binding.binding_id)]
		if isinstance(expr, H.HDeref):
			inner = expr.expr
			if isinstance(inner, H.HVar):
				binding = cfg.resolved.get(inner.node_id)
				cur = st.get(binding.binding_id) if binding is not None else None
				if binding is not None and cur is not None:
					read(binding, cur, inner.loc)
					use_through(binding, st.children_of(binding.binding_id), inner.loc)
				return []
			self._eval(st, inner, point)
			return []
		if isinstance(expr, H.HBorrow):
			return self._borrow(st, expr, point)
		if isinstance(expr, H.HCall):
			carried: List[Loan] = []
			for idx, arg in enumerate(expr.args):
				loans = self._eval(st, arg, point)
				if idx in expr.ret_borrows_from:
					carried.extend(loans)
			return carried
		if isinstance(expr, H.HBinary):
			self._eval(st, expr.left, point)
			self._eval(st, expr.right, point)
			return []
		raise TypeError(f"unsupported expression node {type(expr).__name__}")

	def _borrow(self, st: FlowState, expr: H.HBorrow, point: Point) -> List[Loan]:
		cfg = self._cfg
		assert cfg is not None
		subject = expr.subject
		if isinstance(subject, H.HVar):
			binding = cfg.resolved.get(subject.node_id)
			if binding is None:
				return []
			cur = st.get(binding.binding_id)
			if cur is None:
				return []
			loan = Loan(
				loan_id=expr.node_id,
				target=binding.binding_id,
				kind=LoanKind.MUT if expr.is_mut else LoanKind.SHARED,
				origin=expr.loc,
			)
			st.bindings[binding.binding_id] = borrow(binding, cur, loan)
			if self._reporting and self._regions is not None:
				self._regions.note_creation(loan, point)
			return [loan]
		if isinstance(subject, H.HDeref) and isinstance(subject.expr, H.HVar):
			# Reborrow `&*r` / `&mut *r`: a new loan on every target r points into.
			ref = cfg.resolved.get(subject.expr.node_id)
			if ref is None:
				return []
			cur = st.get(ref.binding_id)
			if cur is None:
				return []
			read(ref, cur, subject.expr.loc)
			held = st.loans_held_by(ref.binding_id)
			kind = LoanKind.MUT if expr.is_mut else LoanKind.SHARED
			reborrow(ref, held, st.children_of(ref.binding_id), kind, expr.loc)
			via = frozenset({ref.binding_id}).union(*(ln.via for ln in held))
			targets = {ln.target for ln in held}
			loans: List[Loan] = []
			for tgt in sorted(targets, key=lambda t: -1 if t is None else t):
				loan = Loan(loan_id=expr.node_id, target=tgt, kind=kind, origin=expr.loc, via=via)
				st.hold(loan)
				if self._reporting and self._regions is not None:
					self._regions.note_creation(loan, point)
				loans.append(loan)
			return loans
		# Borrow of a temporary value: nothing to track.
		self._eval(st, subject, point)
		return []

	# Reporting

	def _guard(self, st: FlowState, fn: Callable[[], T]) -> Optional[T]:
		try:
			return fn()
		except OwnershipError as err:
			self._report(st, err)
			return None

	def _report(self, st: FlowState, err: OwnershipError) -> None:
		if self._reporting and not st.poisoned:
			diag = self._emit(err)
			if diag is not None and isinstance(err, BorrowConflictError) and err.conflict_loan is not None:
				self._conflicts.append((diag, err.conflict_loan))
		st.poisoned = True

	def _emit(self, err: OwnershipError) -> Optional[Diagnostic]:
		diag = err.to_diagnostic()
		if self._sink.emit(diag):
			return diag
		return None

	def _attach_later_uses(self, regions: Dict[int, Region]) -> None:
		for diag, loan_id in self._conflicts:
			region = regions.get(loan_id)
			if region is None or region.last_use is None:
				continue
			diag.related.append(Related("borrow later used here", region.last_use))


__all__ = ["BorrowChecker", "CheckStats", "DropEvent", "VerificationResult"]
