#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Liveness, loan regions and the outlives rule."""

from ownck import verify
from ownck.cfg import build_cfg
from ownck.ownership import LoanKind
from ownck.parser import parse_function
from ownck.regions import RegionAnalyzer


def _ids(cfg, fn, *names):
	by_name = {b.name: b.binding_id for b in cfg.bindings.values()}
	return [by_name[n] for n in names]


def test_liveness_ends_at_last_use():
	fn = parse_function("fn f() { let a = 1; let r = &a; read(r); let z = 2; }")
	cfg = build_cfg(fn)
	analyzer = RegionAnalyzer(cfg)
	analyzer.compute_liveness()
	a, r = _ids(cfg, fn, "a", "r")
	entry = cfg.entry
	assert a in analyzer.live_after((entry, 0))
	assert r in analyzer.live_after((entry, 1))
	assert a not in analyzer.live_after((entry, 1))
	assert r not in analyzer.live_after((entry, 2))


def test_liveness_flows_around_loops():
	fn = parse_function("fn f(c: copy) { let r = 1; while c { read(r); } }")
	cfg = build_cfg(fn)
	analyzer = RegionAnalyzer(cfg)
	analyzer.compute_liveness()
	(r,) = _ids(cfg, fn, "r")
	header = cfg.block(cfg.entry).successors[0]
	assert r in analyzer.live_in(header)


def test_region_of_named_borrow():
	fn = parse_function("fn f() {\n\tlet a = 1;\n\tlet r = &a;\n\tread(r);\n}")
	result = verify(fn)
	assert result.accepted
	(region,) = result.regions.values()
	assert region.kind is LoanKind.SHARED
	assert region.terminal_depth == 2
	assert region.last_use.line == 4
	assert not region.escaped
	assert region.drop_span is None


def test_frame_reach_reports_escape_depth():
	fn = parse_function("fn f() { let r; { let x = 1; r = &x; } read(r); }")
	result = verify(fn)
	(region,) = result.regions.values()
	# The reference reached the body frame (depth 2) while `x` lives at depth 3.
	assert region.terminal_depth == 2
	assert result.frame_reach[region.created_in] == 2


def test_return_of_local_borrow_reaches_caller():
	result = verify(parse_function("fn f() { let v = make(); return &v; }"))
	(region,) = result.regions.values()
	assert region.escaped
	assert region.terminal_depth == 0


def test_check_outlives_related_positions():
	fn = parse_function("fn f() {\n\tlet r;\n\t{\n\t\tlet x = 1;\n\t\tr = &x;\n\t}\n\tread(r);\n}")
	(diag,) = verify(fn).diagnostics
	assert diag.code == "E_DANGLING_REFERENCE"
	assert diag.message == "'x' does not live long enough"
	assert (diag.span.line, diag.span.column) == (5, 7)
	labels = {r.label: r.span.line for r in diag.related}
	assert labels == {"borrowed value dropped here": 6}
