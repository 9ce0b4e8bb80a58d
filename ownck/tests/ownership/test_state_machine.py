#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Per-binding ownership state machine, exercised in isolation."""

import pytest

from ownck.core.errors import BorrowConflictError, ImmutableWriteError, UseAfterMoveError
from ownck.core.span import Span
from ownck.hir import Mutability, ValueKind
from ownck.ownership import (
	FlowState,
	Loan,
	LoanKind,
	OwnershipKind,
	OwnershipState,
	borrow,
	consume,
	disagreeing_bindings,
	fresh_state,
	meet,
	meet_flow,
	move,
	read,
	reborrow,
	release,
	use_through,
	write,
	write_through,
)
from ownck.scope_table import Binding


def _binding(kind=ValueKind.MOVE, mutable=False, name="v") -> Binding:
	return Binding(
		binding_id=1,
		name=name,
		kind=kind,
		mutability=Mutability.MUTABLE if mutable else Mutability.IMMUTABLE,
		depth=2,
		scope_id=2,
	)


def _loan(loan_id: int, kind: LoanKind = LoanKind.SHARED, holder=None) -> Loan:
	return Loan(loan_id=loan_id, target=1, kind=kind, holder=holder, origin=Span(line=loan_id, column=1))


def test_move_makes_binding_moved_out():
	b = _binding()
	st = move(b, fresh_state(), Span(line=2, column=1))
	assert st.kind is OwnershipKind.MOVED_OUT
	with pytest.raises(UseAfterMoveError) as info:
		read(b, st, Span(line=3, column=1))
	assert info.value.code == "E_USE_AFTER_MOVE"
	assert info.value.related[0].span.line == 2


def test_copy_kind_is_never_moved():
	b = _binding(kind=ValueKind.COPY)
	st = consume(b, consume(b, fresh_state()))
	assert st.kind is OwnershipKind.OWNED


def test_shared_borrows_accumulate():
	b = _binding()
	st = borrow(b, fresh_state(), _loan(1))
	st = borrow(b, st, _loan(2))
	assert st.kind is OwnershipKind.SHARED_BORROWED
	assert st.shared_count == 2


def test_shared_count_is_per_borrow_site():
	# The same borrow copied into a second holder is still one borrow.
	st = OwnershipState(loans=frozenset({_loan(1, holder=10), _loan(1, holder=11)}))
	assert st.shared_count == 1


def test_mut_after_shared_conflicts():
	b = _binding(mutable=True)
	st = borrow(b, fresh_state(), _loan(1))
	with pytest.raises(BorrowConflictError) as info:
		borrow(b, st, _loan(2, LoanKind.MUT))
	assert "also borrowed as shared" in str(info.value)
	assert info.value.conflict_loan == 1
	assert info.value.related[0].label == "borrow created here"


def test_two_mut_borrows_conflict():
	b = _binding(mutable=True)
	st = borrow(b, fresh_state(), _loan(1, LoanKind.MUT))
	assert st.kind is OwnershipKind.MUTABLY_BORROWED
	with pytest.raises(BorrowConflictError, match="more than once"):
		borrow(b, st, _loan(2, LoanKind.MUT))
	with pytest.raises(BorrowConflictError, match="as shared"):
		borrow(b, st, _loan(3))


def test_mut_borrow_of_immutable_binding():
	with pytest.raises(ImmutableWriteError) as info:
		borrow(_binding(), fresh_state(), _loan(1, LoanKind.MUT))
	assert info.value.code == "E_MUT_BORROW_IMMUTABLE"


def test_release_returns_to_owned():
	b = _binding(mutable=True)
	st = borrow(b, fresh_state(), _loan(1, LoanKind.MUT))
	st = release(st, lambda ln: False)
	assert st.kind is OwnershipKind.OWNED
	assert borrow(b, st, _loan(2, LoanKind.MUT)).kind is OwnershipKind.MUTABLY_BORROWED


def test_move_while_borrowed():
	b = _binding()
	st = borrow(b, fresh_state(), _loan(1))
	with pytest.raises(BorrowConflictError) as info:
		move(b, st)
	assert info.value.code == "E_MOVE_WHILE_BORROWED"


def test_read_while_mutably_borrowed():
	b = _binding(kind=ValueKind.COPY, mutable=True)
	st = borrow(b, fresh_state(), _loan(1, LoanKind.MUT))
	with pytest.raises(BorrowConflictError) as info:
		read(b, st)
	assert info.value.code == "E_READ_WHILE_MUT_BORROWED"


def test_write_rules():
	imm = _binding()
	mut = _binding(mutable=True)
	# Deferred initialization is allowed once, even for immutable bindings.
	st = write(imm, fresh_state(initialized=False))
	assert st.kind is OwnershipKind.OWNED
	with pytest.raises(ImmutableWriteError):
		write(imm, st)
	assert write(mut, fresh_state()).kind is OwnershipKind.OWNED
	with pytest.raises(UseAfterMoveError) as info:
		write(mut, move(mut, fresh_state()))
	assert info.value.code == "E_ASSIGN_MOVED"
	with pytest.raises(BorrowConflictError) as info:
		write(mut, borrow(mut, fresh_state(), _loan(1)))
	assert info.value.code == "E_WRITE_WHILE_BORROWED"


def test_uninitialized_read():
	with pytest.raises(UseAfterMoveError) as info:
		read(_binding(), fresh_state(initialized=False))
	assert info.value.code == "E_USE_UNINIT"


def test_meet_move_wins():
	owned = fresh_state()
	moved = move(_binding(), fresh_state(), Span(line=4, column=2))
	merged = meet(owned, moved)
	assert merged.kind is OwnershipKind.MOVED_OUT
	assert merged.moved_at == Span(line=4, column=2)
	assert meet(None, owned) is owned
	assert meet(owned, None) is owned


def test_meet_unions_loans_and_intersects_init():
	a = borrow(_binding(), fresh_state(), _loan(1))
	b = borrow(_binding(), fresh_state(), _loan(2))
	merged = meet(a, b)
	assert merged.shared_count == 2
	assert not meet(fresh_state(), fresh_state(initialized=False)).initialized


def test_meet_flow_poison_needs_both_paths():
	clean = FlowState(bindings={1: fresh_state()})
	dirty = FlowState(bindings={1: fresh_state()}, poisoned=True)
	assert not meet_flow(clean, dirty).poisoned
	assert meet_flow(dirty, dirty.copy()).poisoned


def test_disagreeing_bindings_are_sorted():
	b = _binding()
	left = FlowState(bindings={3: fresh_state(), 1: fresh_state(), 2: fresh_state()})
	right = FlowState(bindings={3: move(b, fresh_state()), 1: move(b, fresh_state()), 2: fresh_state()})
	assert disagreeing_bindings([left, right]) == [1, 3]
	assert disagreeing_bindings([left, left.copy()]) == []


def _child(loan_id: int, kind: LoanKind, via=frozenset({5})) -> Loan:
	return Loan(loan_id=loan_id, target=1, kind=kind, holder=9, origin=Span(line=loan_id, column=1), via=via)


def test_reborrow_nests_inside_its_parent_loan():
	"""A reborrow through a `&mut` does not count as a second mutable borrow."""
	st = OwnershipState(loans=frozenset({_loan(1, LoanKind.MUT, holder=5), _child(2, LoanKind.MUT)}))
	st.check_invariants()
	assert st.kind is OwnershipKind.MUTABLY_BORROWED


def test_reference_is_frozen_by_its_reborrows():
	r = _binding(name="r")
	shared = [_child(2, LoanKind.SHARED)]
	mutable = [_child(3, LoanKind.MUT)]
	use_through(r, shared)
	with pytest.raises(BorrowConflictError) as info:
		use_through(r, mutable, Span(line=4, column=1))
	assert info.value.code == "E_READ_WHILE_MUT_BORROWED"
	with pytest.raises(BorrowConflictError) as info:
		use_through(r, shared, access="move")
	assert info.value.code == "E_MOVE_WHILE_BORROWED"
	with pytest.raises(BorrowConflictError) as info:
		write_through(r, [_loan(1, LoanKind.MUT, holder=5)], shared, Span(line=4, column=1))
	assert info.value.code == "E_WRITE_WHILE_BORROWED"
	assert info.value.related[0].span.line == 2


def test_write_through_needs_a_mutable_loan():
	r = _binding(name="r")
	write_through(r, [_loan(1, LoanKind.MUT, holder=5)], [])
	with pytest.raises(ImmutableWriteError) as info:
		write_through(r, [_loan(1, LoanKind.SHARED, holder=5)], [])
	assert info.value.code == "E_ASSIGN_THROUGH_SHARED_REF"


def test_reborrow_conflicts():
	r = _binding(name="r")
	held = [_loan(1, LoanKind.MUT, holder=5)]
	reborrow(r, held, [_child(2, LoanKind.SHARED)], LoanKind.SHARED)
	with pytest.raises(BorrowConflictError) as info:
		reborrow(r, held, [_child(2, LoanKind.MUT)], LoanKind.MUT)
	assert info.value.message == "cannot reborrow '*r' as mutable more than once at a time"
	with pytest.raises(ImmutableWriteError):
		reborrow(r, [_loan(1, LoanKind.SHARED, holder=5)], [], LoanKind.MUT)


def test_flow_state_keeps_caller_loans_apart():
	ext = Loan(loan_id=7, target=None, kind=LoanKind.SHARED, holder=4)
	st = FlowState(bindings={1: fresh_state()})
	st.hold(ext)
	st.hold(_child(2, LoanKind.SHARED, via=frozenset({4})).with_holder(None))
	st.hold(_child(2, LoanKind.SHARED, via=frozenset({4})))
	assert st.external == frozenset({ext})
	assert [ln.holder for ln in st.get(1).loans] == [9]
	assert [ln.loan_id for ln in st.children_of(4)] == [2]
	st.detach(4)
	assert st.children_of(4) == []
	merged = meet_flow(st, FlowState(bindings={1: fresh_state()}))
	assert merged.external == frozenset({ext})
	st.release(lambda ln: ln.holder != 4)
	assert st.external == frozenset()
