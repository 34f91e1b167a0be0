# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Parser for Debian relationship fields.

The grammar lives in `depends.lark` next to this module. Parsed relations keep
their architecture lists so `$auto` expansion and architecture filtering can
work on structure instead of regex-matching raw strings.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable

from lark import Lark, Token, Tree
from lark.exceptions import LarkError

from debpack.errors import ConfigError

_GRAMMAR_PATH = Path(__file__).with_name("depends.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

_PARSER = Lark(
	_GRAMMAR_SRC,
	parser="lalr",
	lexer="contextual",
	start="relations",
	maybe_placeholders=False,
)


@dataclass(frozen=True)
class Alternative:
	package: str
	arch_qualifier: str | None = None
	relop: str | None = None
	version: str | None = None
	# e.g. ("amd64", "arm64") or ("!i386",); empty means "any architecture"
	arches: tuple[str, ...] = ()
	restrictions: tuple[tuple[str, ...], ...] = ()

	def render(self, with_arches: bool = False) -> str:
		out = self.package
		if self.arch_qualifier:
			out += f":{self.arch_qualifier}"
		if self.relop is not None:
			out += f" ({self.relop} {self.version})"
		if with_arches and self.arches:
			out += " [" + " ".join(self.arches) + "]"
		for group in self.restrictions:
			out += " <" + " ".join(group) + ">"
		return out


@dataclass(frozen=True)
class Relation:
	alternatives: tuple[Alternative, ...] = ()
	auto: bool = False

	def render(self, with_arches: bool = False) -> str:
		if self.auto:
			return "$auto"
		return " | ".join(a.render(with_arches) for a in self.alternatives)


def _name(node: Tree) -> str:
	return node.data if isinstance(node.data, str) else node.data.value


def _build_alternative(tree: Tree) -> Alternative:
	children = tree.children
	pkg = children[0]
	assert isinstance(pkg, Token)
	alt = Alternative(package=str(pkg))
	restrictions: list[tuple[str, ...]] = []
	for child in children[1:]:
		if not isinstance(child, Tree):
			continue
		kind = _name(child)
		toks = [str(t) for t in child.children if isinstance(t, Token)]
		if kind == "archqual":
			alt = replace(alt, arch_qualifier=toks[0])
		elif kind == "version":
			alt = replace(alt, relop=toks[0], version=toks[1])
		elif kind == "arch_list":
			alt = replace(alt, arches=tuple(toks))
		elif kind == "restriction":
			restrictions.append(tuple(toks))
	return replace(alt, restrictions=tuple(restrictions))


def parse_relations(text: str, field: str = "Depends") -> list[Relation]:
	"""Parse a comma-separated relationship field; empty entries are skipped."""
	try:
		tree = _PARSER.parse(text)
	except LarkError as err:
		raise ConfigError(f"Invalid {field} field {text!r}: {err}") from err
	out: list[Relation] = []
	for node in tree.children:
		if not isinstance(node, Tree):
			continue
		if _name(node) == "auto":
			out.append(Relation(auto=True))
			continue
		alts = tuple(_build_alternative(c) for c in node.children if isinstance(c, Tree))
		out.append(Relation(alternatives=alts))
	return out


def normalize_field(text: str | None, field: str) -> str | None:
	"""Validate and re-render a literal relationship field; blank means absent."""
	if text is None or not text.strip():
		return None
	rels = parse_relations(text, field)
	if any(r.auto for r in rels):
		raise ConfigError(f"$auto is only allowed in Depends, not in {field}")
	return ", ".join(r.render(with_arches=True) for r in rels)


def arch_list_matches(arches: tuple[str, ...], matches: Callable[[str], bool]) -> bool:
	"""
	Evaluate an architecture restriction list.

	`[a b]` keeps the entry when any term matches; `[!a !b]` keeps it when none
	does. `matches(term)` decides a single (unnegated) architecture wildcard.
	"""
	if not arches:
		return True
	negated = [a[1:] for a in arches if a.startswith("!")]
	positive = [a for a in arches if not a.startswith("!")]
	if negated and positive:
		raise ConfigError(f"architecture list mixes negated and plain terms: [{' '.join(arches)}]")
	if positive:
		return any(matches(a) for a in positive)
	return not any(matches(a) for a in negated)
