# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Ownership tracker: per-binding state machine and control-flow meet.

Every binding carries one `OwnershipState` per program point. The state is
stored as raw facts (initialized, moved, live loans) and the four observable
kinds are derived from them:

  Owned --move--> MovedOut (terminal, resettable only by re-declaration)
  Owned --&-----> SharedBorrowed(n)  --last shared use, n-1==0--> Owned
  SharedBorrowed(n) --&----------> SharedBorrowed(n+1)
  Owned --&mut--> MutablyBorrowed --last use--> Owned
  {Owned, SharedBorrowed} --&mut--> BorrowConflictError
  MutablyBorrowed --& or &mut---> BorrowConflictError

Transitions are pure functions that return a new state or raise an
`OwnershipError`. They know nothing about the CFG; the borrow checker drives
them statement by statement and decides which loans are still live.

Loans are counted by borrow site (`loan_id`), not by holder: copying a
reference into another binding clones the loan for the new holder but it is
still one borrow. A reborrow (`&*r`, `&mut *r`) is a borrow site of its own;
its loans remember every reference they were taken through (`via`), and
while they are live `r` itself is frozen or shared accordingly.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum, auto
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from ownck.core.diagnostics import Related
from ownck.core.errors import BorrowConflictError, ImmutableWriteError, UseAfterMoveError
from ownck.core.span import Span
from ownck.scope_table import Binding, BindingId

# Owned ⊑ {Shared,Mutably}Borrowed ⊑ MovedOut
LATTICE_HEIGHT = 3


class LoanKind(Enum):
	SHARED = auto()
	MUT = auto()


class OwnershipKind(Enum):
	OWNED = auto()
	MOVED_OUT = auto()
	SHARED_BORROWED = auto()
	MUTABLY_BORROWED = auto()


@dataclass(frozen=True)
class Loan:
	"""
	One live reference to a binding's storage.

	`target` is None for caller-owned storage reached through a reference
	parameter. `holder` is the binding the reference is stored in; None marks
	a temporary that ends with its statement. `via` is empty for a direct
	borrow and names the references a reborrow was taken through.
	"""

	loan_id: int
	target: Optional[BindingId]
	kind: LoanKind
	holder: Optional[BindingId] = None
	origin: Span = field(default_factory=Span, compare=False)
	via: FrozenSet[BindingId] = frozenset()

	@property
	def is_mut(self) -> bool:
		return self.kind is LoanKind.MUT

	def sort_key(self) -> Tuple[int, int, int]:
		return (self.loan_id, self.holder or 0, -1 if self.target is None else self.target)

	def with_holder(self, holder: Optional[BindingId]) -> "Loan":
		return replace(self, holder=holder)


def sorted_loans(loans: Iterable[Loan]) -> List[Loan]:
	return sorted(loans, key=Loan.sort_key)


@dataclass(frozen=True)
class OwnershipState:
	"""State of one binding at one program point."""

	initialized: bool = True
	moved: bool = False
	loans: FrozenSet[Loan] = frozenset()
	moved_at: Optional[Span] = field(default=None, compare=False)

	@property
	def holds_value(self) -> bool:
		return self.initialized and not self.moved

	@property
	def kind(self) -> OwnershipKind:
		# A declared-but-unassigned binding holds no value, same as moved out.
		if not self.holds_value:
			return OwnershipKind.MOVED_OUT
		if any(ln.is_mut for ln in self.loans):
			return OwnershipKind.MUTABLY_BORROWED
		if self.loans:
			return OwnershipKind.SHARED_BORROWED
		return OwnershipKind.OWNED

	@property
	def shared_count(self) -> int:
		return len({ln.loan_id for ln in self.loans if not ln.is_mut})

	def mut_loans(self) -> List[Loan]:
		return sorted_loans(ln for ln in self.loans if ln.is_mut)

	def check_invariants(self) -> None:
		"""Assert the aliasing invariant on a single-path state."""
		# Reborrows nest inside the loan they were taken through.
		roots = [ln for ln in self.loans if not ln.via]
		mut_ids = {ln.loan_id for ln in roots if ln.is_mut}
		shared_ids = {ln.loan_id for ln in roots if not ln.is_mut}
		assert len(mut_ids) <= 1, "more than one mutable borrow live"
		assert not (mut_ids and shared_ids), "shared and mutable borrows live together"
		assert self.holds_value or not self.loans, "loan on a binding without a value"


def fresh_state(initialized: bool = True) -> OwnershipState:
	return OwnershipState(initialized=initialized)


def _require_value(binding: Binding, state: OwnershipState, span: Optional[Span], verb: str) -> None:
	if state.moved:
		raise UseAfterMoveError(
			f"{verb} of moved value '{binding.name}'",
			span=span,
			related=[Related("value moved here", state.moved_at or Span())],
		)
	if not state.initialized:
		raise UseAfterMoveError(
			f"{verb} of possibly-uninitialized '{binding.name}'",
			span=span,
			related=[Related("binding declared here", binding.span)],
			code="E_USE_UNINIT",
		)


def read(binding: Binding, state: OwnershipState, span: Optional[Span] = None) -> OwnershipState:
	"""Read the value of `binding` in place (copy or inspection)."""
	_require_value(binding, state, span, "use")
	muts = state.mut_loans()
	if muts:
		raise BorrowConflictError(
			f"cannot use '{binding.name}' because it is mutably borrowed",
			span=span,
			conflict_origin=muts[0].origin,
			conflict_loan=muts[0].loan_id,
			code="E_READ_WHILE_MUT_BORROWED",
		)
	return state


def move(binding: Binding, state: OwnershipState, span: Optional[Span] = None) -> OwnershipState:
	"""Transfer ownership out of `binding`."""
	read(binding, state, span)
	if state.loans:
		first = sorted_loans(state.loans)[0]
		raise BorrowConflictError(
			f"cannot move out of '{binding.name}' because it is borrowed",
			span=span,
			conflict_origin=first.origin,
			conflict_loan=first.loan_id,
			code="E_MOVE_WHILE_BORROWED",
		)
	return replace(state, moved=True, moved_at=span or Span())


def consume(binding: Binding, state: OwnershipState, span: Optional[Span] = None) -> OwnershipState:
	"""Use `binding` by value: a copy for copy-kind values, a move otherwise."""
	if binding.is_copy:
		return read(binding, state, span)
	return move(binding, state, span)


def borrow(binding: Binding, state: OwnershipState, loan: Loan) -> OwnershipState:
	"""Create `loan` against `binding`, enforcing one-mutable-xor-many-shared."""
	span = loan.origin
	_require_value(binding, state, span, "borrow")
	if loan.is_mut and not binding.mutable:
		raise ImmutableWriteError(
			f"cannot borrow immutable binding '{binding.name}' as mutable",
			span=span,
			related=[Related("binding declared here", binding.span)],
			code="E_MUT_BORROW_IMMUTABLE",
		)
	conflicting = sorted_loans(ln for ln in state.loans if loan.is_mut or ln.is_mut)
	if conflicting:
		first = conflicting[0]
		if not loan.is_mut:
			message = f"cannot borrow '{binding.name}' as shared because it is also borrowed as mutable"
		elif first.is_mut:
			message = f"cannot borrow '{binding.name}' as mutable more than once at a time"
		else:
			message = f"cannot borrow '{binding.name}' as mutable because it is also borrowed as shared"
		raise BorrowConflictError(message, span=span, conflict_origin=first.origin, conflict_loan=first.loan_id)
	out = replace(state, loans=state.loans | {loan})
	out.check_invariants()
	return out


def write(binding: Binding, state: OwnershipState, span: Optional[Span] = None) -> OwnershipState:
	"""Assign a new value to `binding` itself."""
	if not state.initialized and not state.moved:
		# Deferred initialization: the first assignment is a declaration.
		return replace(state, initialized=True)
	if not binding.mutable:
		raise ImmutableWriteError(
			f"cannot assign twice to immutable binding '{binding.name}'",
			span=span,
			related=[Related("binding declared here", binding.span)],
		)
	if state.moved:
		raise UseAfterMoveError(
			f"cannot assign to '{binding.name}' after its value was moved",
			span=span,
			related=[Related("value moved here", state.moved_at or Span())],
			code="E_ASSIGN_MOVED",
		)
	if state.loans:
		first = sorted_loans(state.loans)[0]
		raise BorrowConflictError(
			f"cannot assign to '{binding.name}' because it is borrowed",
			span=span,
			conflict_origin=first.origin,
			conflict_loan=first.loan_id,
			code="E_WRITE_WHILE_BORROWED",
		)
	return state


_THROUGH = {
	"use": (False, "E_READ_WHILE_MUT_BORROWED", "cannot use '{0}' because '*{0}' is mutably reborrowed"),
	"move": (True, "E_MOVE_WHILE_BORROWED", "cannot move out of '{0}' because '*{0}' is reborrowed"),
	"write": (True, "E_WRITE_WHILE_BORROWED", "cannot assign through '{0}' because '*{0}' is reborrowed"),
}


def use_through(ref: Binding, children: Iterable[Loan], span: Optional[Span] = None, *, access: str = "use") -> None:
	"""
	Use the reference `ref` while loans reborrowed through it may be live.

	`access` is "use" (copy or read through), "move" or "write" (assign
	through). A use is blocked by a live mutable reborrow, a move or write by
	any live reborrow.
	"""
	exclusive, code, template = _THROUGH[access]
	blocking = sorted_loans(ln for ln in children if exclusive or ln.is_mut)
	if blocking:
		first = blocking[0]
		raise BorrowConflictError(
			template.format(ref.name),
			span=span,
			conflict_origin=first.origin,
			conflict_loan=first.loan_id,
			code=code,
		)


def write_through(
	ref: Binding,
	held: Iterable[Loan],
	children: Iterable[Loan],
	span: Optional[Span] = None,
) -> None:
	"""`*ref = e`: only a reference holding mutable loans may be written through."""
	if any(not ln.is_mut for ln in held):
		raise ImmutableWriteError(
			f"cannot assign through shared reference '{ref.name}'",
			span=span,
			related=[Related("reference declared here", ref.span)],
			code="E_ASSIGN_THROUGH_SHARED_REF",
		)
	use_through(ref, children, span, access="write")


def reborrow(
	ref: Binding,
	held: Iterable[Loan],
	children: Iterable[Loan],
	kind: LoanKind,
	span: Optional[Span] = None,
) -> None:
	"""Check `&*ref` / `&mut *ref` against the loans `ref` holds and its live reborrows."""
	is_mut = kind is LoanKind.MUT
	if is_mut and any(not ln.is_mut for ln in held):
		raise ImmutableWriteError(
			f"cannot borrow data behind shared reference '{ref.name}' as mutable",
			span=span,
			related=[Related("reference declared here", ref.span)],
			code="E_MUT_BORROW_IMMUTABLE",
		)
	conflicting = sorted_loans(ln for ln in children if is_mut or ln.is_mut)
	if conflicting:
		first = conflicting[0]
		if not is_mut:
			message = f"cannot reborrow '*{ref.name}' as shared because it is also reborrowed as mutable"
		elif first.is_mut:
			message = f"cannot reborrow '*{ref.name}' as mutable more than once at a time"
		else:
			message = f"cannot reborrow '*{ref.name}' as mutable because it is also reborrowed as shared"
		raise BorrowConflictError(message, span=span, conflict_origin=first.origin, conflict_loan=first.loan_id)


def release(state: OwnershipState, keep: Callable[[Loan], bool]) -> OwnershipState:
	"""End every loan `keep` rejects; with no loans left the binding is Owned again."""
	kept = frozenset(ln for ln in state.loans if keep(ln))
	if kept == state.loans:
		return state
	return replace(state, loans=kept)


def meet(a: Optional[OwnershipState], b: Optional[OwnershipState]) -> Optional[OwnershipState]:
	"""
	Conservative merge of one binding's state from two predecessors.

	Owned vs MovedOut yields MovedOut (move wins), a loan live on either path
	stays live, and a binding is initialized only if it is on both paths. A
	binding missing on one side is out of scope there; take the other side.
	"""
	if a is None:
		return b
	if b is None or a == b:
		return a
	return OwnershipState(
		initialized=a.initialized and b.initialized,
		moved=a.moved or b.moved,
		loans=a.loans | b.loans,
		moved_at=a.moved_at or b.moved_at,
	)


def disagrees(a: Optional[OwnershipState], b: Optional[OwnershipState]) -> bool:
	"""True when one predecessor has the binding Owned and the other MovedOut."""
	if a is None or b is None:
		return False
	return a.moved != b.moved


@dataclass
class FlowState:
	"""
	Dataflow state at a CFG point: every binding in scope plus a path flag.

	`external` holds the loans into caller-owned storage (reference
	parameters and whatever is copied or reborrowed from them); they have no
	target binding to live on. `poisoned` marks a path that already reported
	its first violation; it stays silent until it meets a clean path.
	"""

	bindings: Dict[BindingId, OwnershipState] = field(default_factory=dict)
	external: FrozenSet[Loan] = frozenset()
	poisoned: bool = False

	def copy(self) -> "FlowState":
		return FlowState(bindings=dict(self.bindings), external=self.external, poisoned=self.poisoned)

	def get(self, bid: BindingId) -> Optional[OwnershipState]:
		return self.bindings.get(bid)

	def all_loans(self) -> List[Loan]:
		out: List[Loan] = list(self.external)
		for st in self.bindings.values():
			out.extend(st.loans)
		return sorted_loans(out)

	def loans_held_by(self, holder: BindingId) -> List[Loan]:
		return [ln for ln in self.all_loans() if ln.holder == holder]

	def children_of(self, ref: BindingId) -> List[Loan]:
		"""Live loans reborrowed through `ref`, directly or transitively."""
		return [ln for ln in self.all_loans() if ref in ln.via]

	def hold(self, loan: Loan, temp: Optional[Loan] = None) -> None:
		"""Store `loan` on its target, replacing the temporary it was carried as."""
		if temp is None:
			temp = loan.with_holder(None)
		if loan.target is None:
			self.external = (self.external - {temp}) | {loan}
			return
		cur = self.bindings.get(loan.target)
		if cur is None:
			return
		self.bindings[loan.target] = replace(cur, loans=(cur.loans - {temp}) | {loan})

	def detach(self, ref: BindingId) -> None:
		"""`ref` got a new value: reborrows of its old pointee stop freezing it."""
		def cut(loans: FrozenSet[Loan]) -> FrozenSet[Loan]:
			return frozenset(replace(ln, via=ln.via - {ref}) if ref in ln.via else ln for ln in loans)

		self.external = cut(self.external)
		for bid, st in self.bindings.items():
			if any(ref in ln.via for ln in st.loans):
				self.bindings[bid] = replace(st, loans=cut(st.loans))

	def release(self, keep: Callable[[Loan], bool]) -> None:
		self.external = frozenset(ln for ln in self.external if keep(ln))
		for bid in list(self.bindings):
			self.bindings[bid] = release(self.bindings[bid], keep)


def meet_flow(a: FlowState, b: FlowState) -> FlowState:
	out = FlowState(
		bindings=dict(a.bindings),
		external=a.external | b.external,
		poisoned=a.poisoned and b.poisoned,
	)
	for bid, st in b.bindings.items():
		out.bindings[bid] = meet(out.bindings.get(bid), st)
	return out


def disagreeing_bindings(states: List[FlowState]) -> List[BindingId]:
	"""Bindings on which some pair of predecessor states disagrees (sorted)."""
	out = set()
	for i, a in enumerate(states):
		for b in states[i + 1 :]:
			for bid, st in a.bindings.items():
				if disagrees(st, b.bindings.get(bid)):
					out.add(bid)
	return sorted(out)


__all__ = [
	"FlowState",
	"LATTICE_HEIGHT",
	"Loan",
	"LoanKind",
	"OwnershipKind",
	"OwnershipState",
	"borrow",
	"consume",
	"disagreeing_bindings",
	"disagrees",
	"fresh_state",
	"meet",
	"meet_flow",
	"move",
	"read",
	"reborrow",
	"release",
	"sorted_loans",
	"use_through",
	"write",
	"write_through",
]
