#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Fixture reader: surface syntax to `ownck.hir` trees."""

import pytest

from ownck import hir as H
from ownck.parser import ParseError, parse_block, parse_function


def test_function_params_and_kinds():
	fn = parse_function("fn f(mut a: move, b: copy, r: &, w: &mut) { }")
	assert fn.name == "f"
	a, b, r, w = fn.params
	assert (a.name, a.kind, a.mutability, a.ref_mut) == ("a", H.ValueKind.MOVE, H.Mutability.MUTABLE, None)
	assert (b.kind, b.mutability) == (H.ValueKind.COPY, H.Mutability.IMMUTABLE)
	assert (r.kind, r.ref_mut) == (H.ValueKind.COPY, False)
	assert (w.kind, w.ref_mut) == (H.ValueKind.MOVE, True)


def test_let_kind_inference():
	fn = parse_function(
		"""
		fn f(c: copy) {
			let a = 1;
			let b = make();
			let r = &b;
			let m = &mut b;
			let d = *r;
			let e = a;
			let g = b;
			let h = a + 2;
			let i: copy = make();
			let j;
		}
		"""
	)
	kinds = {s.name: s.kind for s in fn.body.statements}
	assert kinds == {
		"a": H.ValueKind.COPY,
		"b": H.ValueKind.MOVE,
		"r": H.ValueKind.COPY,
		"m": H.ValueKind.MOVE,
		"d": H.ValueKind.COPY,
		"e": H.ValueKind.COPY,
		"g": H.ValueKind.MOVE,
		"h": H.ValueKind.COPY,
		"i": H.ValueKind.COPY,
		"j": H.ValueKind.MOVE,
	}
	assert fn.body.statements[-1].value is None


def test_statement_shapes():
	fn = parse_function(
		"""
		fn f(c: copy, r: &mut) {
			let mut x = 1;
			x = 2;
			*r = x;
			if c { read(x); } else if x < 3 { } else { }
			'outer: loop { while c { continue 'outer; } break 'outer; }
			{ let y = 3; }
			return &x;
		}
		"""
	)
	let, assign, deref_assign, if_, loop, block, ret = fn.body.statements
	assert isinstance(let, H.HLet) and let.mutable
	assert isinstance(assign, H.HAssign) and isinstance(assign.target, H.HVar)
	assert isinstance(deref_assign.target, H.HDeref)
	assert isinstance(if_, H.HIf)
	assert isinstance(if_.else_block.statements[0], H.HIf)
	assert isinstance(loop, H.HLoop) and loop.label == "outer"
	inner_while, brk = loop.body.statements
	assert isinstance(inner_while, H.HWhile)
	assert isinstance(inner_while.body.statements[0], H.HContinue)
	assert inner_while.body.statements[0].label == "outer"
	assert isinstance(brk, H.HBreak) and brk.label == "outer"
	assert isinstance(block, H.HBlock)
	assert isinstance(ret.value, H.HBorrow) and not ret.value.is_mut


def test_spans_and_block_end():
	fn = parse_function("fn f() {\n\tlet s = make();\n\tread(s);\n}\n", filename="t.own")
	let = fn.body.statements[0]
	use = fn.body.statements[1].expr.args[0]
	assert (let.loc.file, let.loc.line, let.loc.column) == ("t.own", 2, 2)
	assert (use.loc.line, use.loc.column) == (3, 7)
	assert fn.body.end_loc.line == 4


def test_ref_returning_calls():
	fn = parse_function("fn f() { let v = 1; let r = first(&v, 2); }", ref_returning={"first": [0]})
	call = fn.body.statements[1].value
	assert isinstance(call, H.HCall)
	assert call.ret_borrows_from == (0,)
	plain = parse_function("fn f() { let v = 1; let r = first(&v, 2); }")
	assert plain.body.statements[1].value.ret_borrows_from == ()


def test_comments_and_literals():
	block = parse_block('{ // note\n let s = "hi"; let t = true; }')
	s, t = block.statements
	assert s.value.value == "hi"
	assert t.value.value is True


def test_syntax_error_has_position():
	with pytest.raises(ParseError) as info:
		parse_function("fn f() {\n\tlet = 1;\n}", filename="bad.own")
	assert info.value.loc.file == "bad.own"
	assert info.value.loc.line == 2
