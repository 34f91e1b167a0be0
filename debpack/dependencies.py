# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Runtime dependency resolution.

`$auto` expands to the shared-library dependencies `dpkg-shlibdeps` reports
for every binary in the package. Literal entries pass through unless they carry
an architecture list, which is evaluated with `dpkg-architecture`.
"""

from __future__ import annotations

import logging
import subprocess
import tempfile
from pathlib import Path
from typing import Callable, Iterable

from debpack.assets import Asset
from debpack.depends import Relation, arch_list_matches, parse_relations
from debpack.errors import DebpackError, ToolError
from debpack.listener import Listener
from debpack.parallel import fan_out

log = logging.getLogger(__name__)

DPKG_SHLIBDEPS = "dpkg-shlibdeps"
DPKG_ARCHITECTURE = "dpkg-architecture"

Scanner = Callable[[Path], list[str]]
ArchMatcher = Callable[[str, str], bool]


def parse_shlibdeps_output(stdout: str) -> list[str]:
	for line in stdout.splitlines():
		if line.startswith("shlibs:Depends="):
			deps = (d.strip() for d in line[len("shlibs:Depends=") :].split(","))
			# libgcc is guaranteed to be present on every supported platform
			return [d for d in deps if d and not d.startswith("libgcc")]
	raise ToolError(DPKG_SHLIBDEPS, "Failed to find dependency specification.")


def shlibdeps(path: Path) -> list[str]:
	"""
	Run `dpkg-shlibdeps -O <path>` and return its dependency list.

	The tool insists on a `debian/control` file in its working directory, so
	every call gets its own scratch directory with an empty one.
	"""
	with tempfile.TemporaryDirectory(prefix="debpack-shlibdeps-") as tmp:
		debian_dir = Path(tmp) / "debian"
		debian_dir.mkdir()
		(debian_dir / "control").write_bytes(b"")
		cmd = [DPKG_SHLIBDEPS, "-O", str(path)]
		log.debug("running %s", " ".join(cmd))
		try:
			res = subprocess.run(cmd, cwd=tmp, capture_output=True, check=False)
		except FileNotFoundError as err:
			raise ToolError(
				DPKG_SHLIBDEPS,
				f"unable to run {DPKG_SHLIBDEPS}: {err.strerror}",
				path=str(path),
				hint="install dpkg-dev, or list dependencies explicitly instead of $auto",
			) from err
	if res.returncode != 0:
		raise ToolError(
			DPKG_SHLIBDEPS,
			res.stderr.decode("utf-8", "replace").strip() or f"exit status {res.returncode}",
			path=str(path),
		)
	out = res.stdout.decode("utf-8", "replace")
	log.debug("%s for %s: %s", DPKG_SHLIBDEPS, path, out.strip())
	return parse_shlibdeps_output(out)


def dpkg_architecture_matches(architecture: str, spec: str) -> bool:
	"""True when `architecture` matches the wildcard `spec` (e.g. `linux-any`)."""
	cmd = [DPKG_ARCHITECTURE, "-a", architecture, "-i", spec]
	try:
		res = subprocess.run(cmd, capture_output=True, check=False)
	except FileNotFoundError as err:
		raise ToolError(
			DPKG_ARCHITECTURE,
			f"unable to run {DPKG_ARCHITECTURE}: {err.strerror}",
			hint="install dpkg-dev to evaluate [arch] qualifiers in dependencies",
		) from err
	return res.returncode == 0


def scannable_binaries(assets: Iterable[Asset]) -> list[Path]:
	"""Non-symlink executables and shared libraries that exist on disk."""
	out: list[Path] = []
	for asset in assets:
		if asset.source.is_symlink:
			continue
		path = asset.source.source_path()
		if path is None:
			continue
		if asset.c.is_dynamic_library or asset.is_binary_executable:
			out.append(path)
	return out


def _auto_depends(assets: Iterable[Asset], listener: Listener, scanner: Scanner, jobs: int | None) -> list[str]:
	def _scan(path: Path) -> list[str]:
		try:
			return scanner(path)
		except DebpackError as err:
			listener.warning(f"{err.message} (no auto deps for {path})")
			return []

	out: list[str] = []
	for deps in fan_out(_scan, scannable_binaries(assets), what="shlibdeps", jobs=jobs):
		out.extend(deps)
	return out


def _filter_relation(rel: Relation, architecture: str, matcher: ArchMatcher) -> str | None:
	kept = [a for a in rel.alternatives if arch_list_matches(a.arches, lambda spec: matcher(architecture, spec))]
	if not kept:
		return None
	return " | ".join(a.render() for a in kept)


def resolve_depends(
	depends: str,
	assets: Iterable[Asset],
	architecture: str,
	listener: Listener,
	*,
	scanner: Scanner = shlibdeps,
	arch_matcher: ArchMatcher = dpkg_architecture_matches,
	jobs: int | None = None,
) -> str:
	"""
	Compute the final `Depends` value: a sorted, de-duplicated `", "` list.

	A binary that cannot be scanned only produces a warning.
	"""
	assets = list(assets)
	deps: set[str] = set()
	for rel in parse_relations(depends, "Depends"):
		if rel.auto:
			deps.update(_auto_depends(assets, listener, scanner, jobs))
			continue
		kept = _filter_relation(rel, architecture, arch_matcher)
		if kept is not None:
			deps.add(kept)
	return ", ".join(sorted(deps))
