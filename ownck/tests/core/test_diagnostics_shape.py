#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Diagnostic data, JSON rendering and the de-duplicating sink."""

import json

from ownck.core import (
	BorrowConflictError,
	Diagnostic,
	DiagnosticKind,
	DiagnosticSink,
	Related,
	Span,
	UnboundNameError,
	diagnostics_to_json,
)


def _diag(code: str = "E_USE_AFTER_MOVE", line: int = 1, message: str = "m") -> Diagnostic:
	return Diagnostic(kind=DiagnosticKind.USE_AFTER_MOVE, code=code, message=message, span=Span(line=line, column=1))


def test_diagnostic_json_has_stable_keys():
	diag = Diagnostic(
		kind=DiagnosticKind.BORROW_CONFLICT,
		code="E_BORROW_CONFLICT",
		message="cannot borrow 'v' as mutable more than once at a time",
		span=Span(file="a.own", line=3, column=9),
		related=[Related("borrow created here", Span(file="a.own", line=2, column=9))],
	)
	out = diag.to_json()
	assert set(out) == {"phase", "kind", "code", "message", "severity", "file", "line", "column", "related"}
	assert out["kind"] == "BorrowConflictError"
	assert out["related"] == [{"label": "borrow created here", "file": "a.own", "line": 2, "column": 9}]


def test_unknown_span_is_normalized_to_sentinel():
	diag = Diagnostic(kind=DiagnosticKind.USE_AFTER_MOVE, code="E_USE_AFTER_MOVE", message="m", span=None)
	assert isinstance(diag.span, Span)
	assert not diag.span.known


def test_diagnostics_to_json_is_key_sorted():
	text = diagnostics_to_json([_diag()])
	first = json.loads(text)[0]
	assert list(first) == sorted(first)
	assert text == diagnostics_to_json([_diag()])


def test_sink_drops_duplicates():
	sink = DiagnosticSink()
	assert sink.emit(_diag())
	assert not sink.emit(_diag())
	assert sink.emit(_diag(line=2))
	assert len(sink.items) == 2


def test_sink_limit_marks_full():
	sink = DiagnosticSink(limit=2)
	sink.extend(_diag(line=n) for n in range(1, 5))
	assert sink.full
	assert [d.span.line for d in sink.items] == [1, 2]


def test_zero_limit_means_unlimited():
	sink = DiagnosticSink(limit=0)
	sink.extend(_diag(line=n) for n in range(1, 50))
	assert not sink.full
	assert len(sink.items) == 49


def test_borrow_conflict_puts_origin_first():
	err = BorrowConflictError(
		"cannot borrow 'v' as mutable because it is also borrowed as shared",
		span=Span(line=3, column=1),
		conflict_origin=Span(line=2, column=11),
		conflict_loan=7,
		related=[Related("borrow later used here", Span(line=4, column=1))],
	)
	diag = err.to_diagnostic()
	assert diag.code == "E_BORROW_CONFLICT"
	assert [r.label for r in diag.related] == ["borrow created here", "borrow later used here"]
	assert err.conflict_loan == 7


def test_unbound_label_message():
	err = UnboundNameError("outer", code="E_UNBOUND_LABEL")
	assert str(err) == "unbound loop label 'outer'"
	assert err.to_diagnostic().kind is DiagnosticKind.UNBOUND_NAME
