# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Scope table: a stack of lexical frames mapping names to bindings.

Shadowing is modelled as a small stack per name within a frame: a second
`let x` in the same frame pushes a new binding on top of the first one. The
hidden binding stays in the frame (it still owns its value) and is finalized
together with the rest of the frame on exit.

Frame exit is the explicit finalization step: bindings that still hold a
value are dropped in reverse declaration order, bindings that were moved out
(or never initialized) are erased without a drop.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional, Tuple

from ownck.core.errors import UnboundNameError
from ownck.core.span import Span
from ownck.hir.nodes import Mutability, ValueKind

if TYPE_CHECKING:
	from ownck.ownership import LoanKind, OwnershipState

BindingId = int

# Depth 0 is the caller (storage outside the function being verified); the
# parameter frame is depth 1 and the function body starts at depth 2.
CALLER_DEPTH = 0


@dataclass(frozen=True)
class Binding:
	"""Identity and static facts of one declared name."""

	binding_id: BindingId
	name: str
	kind: ValueKind
	mutability: Mutability
	depth: int
	scope_id: int
	span: Span = field(default_factory=Span, compare=False)
	is_param: bool = False
	# Kind of the caller-owned loan a reference parameter carries.
	external_ref: Optional[LoanKind] = None

	@property
	def is_copy(self) -> bool:
		return self.kind is ValueKind.COPY

	@property
	def mutable(self) -> bool:
		return self.mutability is Mutability.MUTABLE


@dataclass
class Frame:
	"""Bindings introduced by one lexical block, in declaration order."""

	scope_id: int
	depth: int
	span: Span = field(default_factory=Span)
	bindings: List[Binding] = field(default_factory=list)
	names: Dict[str, List[Binding]] = field(default_factory=dict)

	def lookup(self, name: str) -> Optional[Binding]:
		stack = self.names.get(name)
		return stack[-1] if stack else None


@dataclass(frozen=True)
class FrameExit:
	"""Result of leaving a frame: drop order and erased (moved-out) bindings."""

	frame: Frame
	dropped: Tuple[Binding, ...]
	erased: Tuple[Binding, ...]


def finalize_order(
	bindings: Iterable[Binding],
	state_of: Optional[Callable[[Binding], Optional["OwnershipState"]]] = None,
) -> Tuple[Tuple[Binding, ...], Tuple[Binding, ...]]:
	"""
	Split a frame's bindings into (dropped, erased), both in reverse declaration order.

	A binding without known state is treated as owned. Later-declared values
	may point at earlier ones, so they must go first.
	"""
	dropped: List[Binding] = []
	erased: List[Binding] = []
	for binding in reversed(list(bindings)):
		state = state_of(binding) if state_of is not None else None
		if state is None or state.holds_value:
			dropped.append(binding)
		else:
			erased.append(binding)
	return tuple(dropped), tuple(erased)


class ScopeTable:
	"""Stack of frames; see module docstring."""

	def __init__(self) -> None:
		self._frames: List[Frame] = []
		self._binding_ids = itertools.count(1)
		self._scope_ids = itertools.count(1)

	@property
	def depth(self) -> int:
		"""Depth of the current frame (CALLER_DEPTH when no frame is open)."""
		return self._frames[-1].depth if self._frames else CALLER_DEPTH

	@property
	def current(self) -> Frame:
		if not self._frames:
			raise RuntimeError("no open scope frame")
		return self._frames[-1]

	def enter_scope(self, span: Optional[Span] = None) -> Frame:
		frame = Frame(scope_id=next(self._scope_ids), depth=self.depth + 1, span=span or Span())
		self._frames.append(frame)
		return frame

	def declare(
		self,
		name: str,
		kind: ValueKind,
		mutability: Mutability,
		*,
		span: Optional[Span] = None,
		is_param: bool = False,
		external_ref: Optional[LoanKind] = None,
	) -> Binding:
		"""Bind `name` in the current frame, hiding any visible binding of the same name."""
		frame = self.current
		binding = Binding(
			binding_id=next(self._binding_ids),
			name=name,
			kind=kind,
			mutability=mutability,
			depth=frame.depth,
			scope_id=frame.scope_id,
			span=span or Span(),
			is_param=is_param,
			external_ref=external_ref,
		)
		frame.bindings.append(binding)
		frame.names.setdefault(name, []).append(binding)
		return binding

	def resolve(self, name: str, span: Optional[Span] = None) -> Binding:
		for frame in reversed(self._frames):
			binding = frame.lookup(name)
			if binding is not None:
				return binding
		raise UnboundNameError(name, span=span)

	def frames_above(self, depth: int) -> List[Frame]:
		"""Open frames deeper than `depth`, innermost first (the ones an early exit leaves)."""
		return [frame for frame in reversed(self._frames) if frame.depth > depth]

	def exit_scope(self, state_of: Optional[Callable[[Binding], Optional["OwnershipState"]]] = None) -> FrameExit:
		frame = self._frames.pop()
		dropped, erased = finalize_order(frame.bindings, state_of)
		return FrameExit(frame=frame, dropped=dropped, erased=erased)


__all__ = ["Binding", "BindingId", "CALLER_DEPTH", "Frame", "FrameExit", "ScopeTable", "finalize_order"]
