# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Fixture reader: a small surface syntax for writing verifier inputs by hand.

The verifier itself only consumes `ownck.hir` trees; this reader exists so
tests and examples can be written as source text with real positions:

    fn f(mut v: move, r: &mut) {
        let a = &v;
        'outer: loop { break 'outer; }
        *r = 1;
    }

Value kinds are part of the tree. When a `let` has no `: copy`/`: move`
annotation the kind is inferred from the initializer: literals, arithmetic,
shared borrows and reads through a reference are copy, a plain name takes
the kind of the binding it names, everything else moves.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from lark import Lark, Token, Tree
from lark.exceptions import LarkError, UnexpectedInput

from ownck import hir as H
from ownck.core.span import Span

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

_PARSER = Lark(
	_GRAMMAR_SRC,
	parser="lalr",
	lexer="basic",
	start=["function", "block"],
	propagate_positions=True,
	maybe_placeholders=False,
)


class ParseError(ValueError):
	"""Fixture text that does not match the grammar."""

	def __init__(self, message: str, *, loc: Optional[Span] = None) -> None:
		super().__init__(message)
		self.loc = loc or Span()


def _name(node: Tree | Token) -> str:
	if isinstance(node, Tree):
		return str(node.data)
	return node.type


def _tokens(tree: Tree, kind: str) -> List[Token]:
	return [c for c in tree.children if isinstance(c, Token) and c.type == kind]


def _subtrees(tree: Tree) -> List[Tree]:
	return [c for c in tree.children if isinstance(c, Tree)]


def _label(tree: Tree) -> Optional[str]:
	labels = _tokens(tree, "LABEL")
	return labels[0].value[1:] if labels else None


class _Builder:
	"""Parse tree -> `ownck.hir` nodes."""

	def __init__(self, filename: Optional[str], ref_returning: Mapping[str, Sequence[int]]) -> None:
		self.filename = filename
		self.ref_returning = {name: tuple(idx) for name, idx in ref_returning.items()}
		# Visible name -> value kind, one dict per open block (for kind inference).
		self._kinds: List[Dict[str, H.ValueKind]] = []

	def span(self, node: Tree | Token) -> Span:
		span = Span.from_loc(node)
		if self.filename and span.known:
			span = replace(span, file=self.filename)
		return span

	def _lookup_kind(self, name: str) -> Optional[H.ValueKind]:
		for scope in reversed(self._kinds):
			if name in scope:
				return scope[name]
		return None

	def _infer_kind(self, value: Optional[H.HExpr]) -> H.ValueKind:
		if isinstance(value, (H.HLiteral, H.HBinary, H.HDeref)):
			return H.ValueKind.COPY
		if isinstance(value, H.HBorrow):
			return H.ValueKind.MOVE if value.is_mut else H.ValueKind.COPY
		if isinstance(value, H.HVar):
			return self._lookup_kind(value.name) or H.ValueKind.MOVE
		return H.ValueKind.MOVE

	# Items

	def function(self, tree: Tree) -> H.HFunction:
		name = _tokens(tree, "NAME")[0]
		params = [self.param(c) for c in _subtrees(tree) if _name(c) == "param"]
		self._kinds.append({p.name: p.kind for p in params})
		try:
			body = self.block(tree.children[-1])
		finally:
			self._kinds.pop()
		return H.HFunction(name=name.value, params=params, body=body, loc=self.span(tree))

	def param(self, tree: Tree) -> H.HParam:
		name = _tokens(tree, "NAME")[0]
		mutability = H.Mutability.MUTABLE if _tokens(tree, "MUT") else H.Mutability.IMMUTABLE
		kind_node = _subtrees(tree)[-1]
		ref_mut: Optional[bool] = None
		if _name(kind_node) == "kind_ref":
			ref_mut = bool(_tokens(kind_node, "MUT"))
			# `&T` is copy, `&mut T` is not.
			kind = H.ValueKind.MOVE if ref_mut else H.ValueKind.COPY
		elif _name(kind_node) == "kind_copy":
			kind = H.ValueKind.COPY
		else:
			kind = H.ValueKind.MOVE
		return H.HParam(name=name.value, kind=kind, mutability=mutability, ref_mut=ref_mut, loc=self.span(name))

	def block(self, tree: Tree) -> H.HBlock:
		self._kinds.append({})
		try:
			statements = [self.stmt(c) for c in _subtrees(tree)]
		finally:
			self._kinds.pop()
		closing = _tokens(tree, "RBRACE")
		return H.HBlock(
			statements=statements,
			loc=self.span(_tokens(tree, "LBRACE")[0]),
			end_loc=self.span(closing[0]) if closing else Span(),
		)

	# Statements

	def stmt(self, tree: Tree) -> H.HStmt:
		kind = _name(tree)
		loc = self.span(tree)
		if kind == "block":
			return self.block(tree)
		if kind == "let_stmt":
			return self._let(tree)
		if kind == "assign_var":
			name = _tokens(tree, "NAME")[0]
			return H.HAssign(
				target=H.HVar(name=name.value, loc=self.span(name)),
				value=self.expr(_subtrees(tree)[-1]),
				loc=loc,
			)
		if kind == "assign_deref":
			target, value = _subtrees(tree)
			return H.HAssign(target=H.HDeref(expr=self.expr(target), loc=loc), value=self.expr(value), loc=loc)
		if kind == "expr_stmt":
			return H.HExprStmt(expr=self.expr(_subtrees(tree)[0]), loc=loc)
		if kind == "return_stmt":
			values = _subtrees(tree)
			return H.HReturn(value=self.expr(values[0]) if values else None, loc=loc)
		if kind == "break_stmt":
			return H.HBreak(label=_label(tree), loc=loc)
		if kind == "continue_stmt":
			return H.HContinue(label=_label(tree), loc=loc)
		if kind == "if_stmt":
			return self._if(tree)
		if kind == "loop_stmt":
			return H.HLoop(body=self.block(_subtrees(tree)[-1]), label=_label(tree), loc=loc)
		if kind == "while_stmt":
			cond, body = _subtrees(tree)
			return H.HWhile(cond=self.expr(cond), body=self.block(body), label=_label(tree), loc=loc)
		raise ParseError(f"unsupported statement '{kind}'", loc=loc)

	def _let(self, tree: Tree) -> H.HLet:
		name = _tokens(tree, "NAME")[0]
		annotation: Optional[H.ValueKind] = None
		value: Optional[H.HExpr] = None
		for child in _subtrees(tree):
			if _name(child) == "value_kind":
				annotation = H.ValueKind.COPY if _tokens(child, "COPY") else H.ValueKind.MOVE
			else:
				value = self.expr(child)
		kind = annotation or self._infer_kind(value)
		# Declared after the initializer is built: `let x = x;` reads the outer x.
		self._kinds[-1][name.value] = kind
		return H.HLet(
			name=name.value,
			value=value,
			kind=kind,
			mutability=H.Mutability.MUTABLE if _tokens(tree, "MUT") else H.Mutability.IMMUTABLE,
			loc=self.span(tree),
		)

	def _if(self, tree: Tree) -> H.HIf:
		parts = _subtrees(tree)
		else_block: Optional[H.HBlock] = None
		if len(parts) > 2:
			alt = parts[2]
			if _name(alt) == "if_stmt":
				nested = self._if(alt)
				else_block = H.HBlock(statements=[nested], loc=nested.loc)
			else:
				else_block = self.block(alt)
		return H.HIf(
			cond=self.expr(parts[0]),
			then_block=self.block(parts[1]),
			else_block=else_block,
			loc=self.span(tree),
		)

	# Expressions

	def expr(self, node: Tree | Token) -> H.HExpr:
		if isinstance(node, Token):
			raise ParseError(f"unexpected token {node.value!r}", loc=self.span(node))
		kind = _name(node)
		loc = self.span(node)
		if kind == "var":
			return H.HVar(name=node.children[0].value, loc=loc)
		if kind == "int_lit":
			return H.HLiteral(value=int(node.children[0].value), loc=loc)
		if kind == "str_lit":
			return H.HLiteral(value=node.children[0].value[1:-1], loc=loc)
		if kind in ("true_lit", "false_lit"):
			return H.HLiteral(value=kind == "true_lit", loc=loc)
		if kind == "borrow":
			return H.HBorrow(subject=self.expr(_subtrees(node)[-1]), is_mut=bool(_tokens(node, "MUT")), loc=loc)
		if kind == "deref":
			return H.HDeref(expr=self.expr(_subtrees(node)[0]), loc=loc)
		if kind == "call":
			fn = _tokens(node, "NAME")[0].value
			return H.HCall(
				fn=fn,
				args=[self.expr(arg) for arg in _subtrees(node)],
				ret_borrows_from=self.ref_returning.get(fn, ()),
				loc=loc,
			)
		if kind == "binary":
			left, op, right = node.children
			return H.HBinary(op=str(op), left=self.expr(left), right=self.expr(right), loc=loc)
		raise ParseError(f"unsupported expression '{kind}'", loc=loc)


def _parse(src: str, start: str, filename: Optional[str]) -> Tree:
	try:
		return _PARSER.parse(src, start=start)
	except UnexpectedInput as err:
		loc = Span(file=filename, line=err.line, column=err.column) if err.line > 0 else Span(file=filename)
		raise ParseError(f"syntax error: {err.__class__.__name__} at {err.line}:{err.column}", loc=loc) from err
	except LarkError as err:
		raise ParseError(str(err), loc=Span(file=filename)) from err


def parse_function(
	src: str,
	*,
	filename: Optional[str] = None,
	ref_returning: Optional[Mapping[str, Sequence[int]]] = None,
) -> H.HFunction:
	"""
	Parse one `fn name(...) { ... }` into an `HFunction`.

	`ref_returning` maps a callee name to the argument indices whose
	references flow into its result (`{"first": [0]}` for `fn first(x: &T) -> &T`).
	"""
	tree = _parse(src, "function", filename)
	return _Builder(filename, ref_returning or {}).function(tree)


def parse_block(
	src: str,
	*,
	filename: Optional[str] = None,
	ref_returning: Optional[Mapping[str, Sequence[int]]] = None,
) -> H.HBlock:
	"""Parse a bare `{ ... }` block."""
	tree = _parse(src, "block", filename)
	return _Builder(filename, ref_returning or {}).block(tree)


__all__ = ["ParseError", "parse_block", "parse_function"]
