# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Bounded fork-join over independent items.

Workers only touch their own item; results come back in input order and are
merged by the caller. When items fail, every `DebpackError` is collected and
reported together instead of just the first one joined.
"""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Sequence, TypeVar

from debpack.errors import DebpackError, ParallelFailure

T = TypeVar("T")
R = TypeVar("R")


def default_jobs() -> int:
	return min(32, (os.cpu_count() or 1) + 4)


def fan_out(
	func: Callable[[T], R],
	items: Sequence[T],
	*,
	what: str,
	jobs: int | None = None,
) -> list[R]:
	"""
	Run `func` on every item with at most `jobs` workers.

	A single failure re-raises that error unchanged; several are wrapped in a
	`ParallelFailure` carrying all of them. Exceptions that are not
	`DebpackError` are bugs and propagate as-is.
	"""
	if not items:
		return []
	workers = max(1, min(jobs or default_jobs(), len(items)))
	if workers == 1:
		results: list[R] = []
		errors: list[DebpackError] = []
		for item in items:
			try:
				results.append(func(item))
			except DebpackError as err:
				errors.append(err)
		_raise_collected(what, errors)
		return results

	with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"debpack-{what}") as ex:
		futs = [ex.submit(func, item) for item in items]
	results = []
	errors = []
	for fut in futs:
		try:
			results.append(fut.result())
		except DebpackError as err:
			errors.append(err)
	_raise_collected(what, errors)
	return results


def _raise_collected(what: str, errors: list[DebpackError]) -> None:
	if not errors:
		return
	if len(errors) == 1:
		raise errors[0]
	raise ParallelFailure(what, errors)
