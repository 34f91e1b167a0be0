# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Asset model and resolution.

An asset is one file, symlink or in-memory blob destined for the data archive.
Configuration produces `UnresolvedAsset`s (paths that may be globs); `resolve`
expands them against the filesystem into concrete `Asset`s. Assets are frozen:
every later pass (doc compression, stripping, multiarch remapping) returns new
values instead of editing shared state.

Rules:
- target paths are package-root-relative; a leading `/` is stripped
- a target ending in `/` gets the source file name appended
- after resolution no two assets share a target path (first declared wins)
"""

from __future__ import annotations

import enum
import glob
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path, PurePosixPath
from typing import Iterable, Union

from debpack.compress import gzipped
from debpack.errors import ArchiveError, AssetFileNotFound
from debpack.listener import Listener
from debpack.parallel import fan_out

log = logging.getLogger(__name__)

ELF_MAGIC = b"\x7fELF"
DLL_SUFFIX = ".so"
_GLOB_CHARS = frozenset("*[]!")


class IsBuilt(enum.Enum):
	NO = "no"
	SAME_PACKAGE = "same"
	# Needs a workspace-wide build to exist.
	WORKSPACE = "workspace"


class AssetKind(enum.Enum):
	ANY = "any"
	EXAMPLE_BINARY = "example"
	SEPARATE_DEBUG_SYMBOLS = "debug-symbols"


@dataclass(frozen=True)
class PathSource:
	"""Copy the file's bytes (binaries may be stripped first)."""

	path: Path

	def source_path(self) -> Path | None:
		return self.path

	def file_size(self) -> int | None:
		try:
			return self.path.stat().st_size
		except OSError:
			return None

	def data(self) -> bytes:
		try:
			return self.path.read_bytes()
		except OSError as err:
			raise ArchiveError(f"Unable to read asset to add to archive: {err.strerror}", path=str(self.path)) from err

	def magic_bytes(self) -> bytes | None:
		return _read_magic(self.path)

	@property
	def is_symlink(self) -> bool:
		return False


@dataclass(frozen=True)
class SymlinkSource:
	"""A symlink kept as a link record; never dereferenced, never sized."""

	path: Path

	def source_path(self) -> Path | None:
		return self.path

	def file_size(self) -> int | None:
		return None

	def data(self) -> bytes:
		try:
			return self.path.read_bytes()
		except OSError as err:
			raise ArchiveError(f"Symlink unexpectedly used to read file data: {err.strerror}", path=str(self.path)) from err

	def magic_bytes(self) -> bytes | None:
		return _read_magic(self.path)

	def link_target(self) -> str:
		try:
			return os.readlink(self.path)
		except OSError as err:
			raise ArchiveError(f"Unable to read symlink asset: {err.strerror}", path=str(self.path)) from err

	@property
	def is_symlink(self) -> bool:
		return True


@dataclass(frozen=True)
class DataSource:
	"""Bytes generated in memory (copyright, compressed docs)."""

	content: bytes

	def source_path(self) -> Path | None:
		return None

	def file_size(self) -> int | None:
		return len(self.content)

	def data(self) -> bytes:
		return self.content

	def magic_bytes(self) -> bytes | None:
		return self.content[:4] if len(self.content) >= 4 else None

	@property
	def is_symlink(self) -> bool:
		return False


AssetSource = Union[PathSource, SymlinkSource, DataSource]


def _read_magic(path: Path) -> bytes | None:
	try:
		with open(path, "rb") as fh:
			head = fh.read(4)
	except OSError:
		return None
	return head if len(head) == 4 else None


def source_from_path(path: Path, preserve_symlinks: bool) -> AssetSource:
	"""
	Pick the source variant for an on-disk path.

	A dangling symlink is always kept as a link, since there is nothing to copy.
	"""
	if preserve_symlinks or not path.exists():
		if path.is_symlink():
			return SymlinkSource(path)
	return PathSource(path)


def is_glob_pattern(s: str) -> bool:
	return any(c in _GLOB_CHARS for c in s)


def is_dynamic_library_filename(path: PurePosixPath) -> bool:
	return path.name.endswith(DLL_SUFFIX)


def debug_filename(path: str) -> str:
	return path + ".debug"


def normalized_target_path(target: str, source_path: Path | None) -> PurePosixPath:
	if target.endswith("/"):
		if source_path is None:
			raise ValueError(f"target {target!r} is a directory but the source has no file name")
		target = target + source_path.name
	out = PurePosixPath(target)
	if out.is_absolute():
		out = out.relative_to("/")
	return out


@dataclass(frozen=True)
class AssetCommon:
	target_path: PurePosixPath
	chmod: int
	is_built: IsBuilt = IsBuilt.NO
	kind: AssetKind = AssetKind.ANY

	@property
	def is_executable(self) -> bool:
		return (self.chmod & 0o111) != 0

	@property
	def is_dynamic_library(self) -> bool:
		return is_dynamic_library_filename(self.target_path)

	@property
	def built(self) -> bool:
		return self.is_built is not IsBuilt.NO

	@property
	def is_same_package(self) -> bool:
		return self.is_built is IsBuilt.SAME_PACKAGE

	def default_debug_target_path(self, lib_dir_base: str) -> PurePosixPath:
		"""`/<lib_dir_base>/debug/<target>.debug`, e.g. `/usr/lib/debug/usr/bin/foo.debug`."""
		rel = str(self.target_path).lstrip("/")
		return PurePosixPath("/") / lib_dir_base / "debug" / debug_filename(rel)


@dataclass(frozen=True)
class ProcessedFrom:
	"""Provenance for display only; never affects archive content."""

	action: str
	original_path: Path | None = None


@dataclass(frozen=True)
class Asset:
	source: AssetSource
	c: AssetCommon
	processed_from: ProcessedFrom | None = None

	@classmethod
	def new(
		cls,
		source: AssetSource,
		target: str | PurePosixPath,
		chmod: int,
		is_built: IsBuilt = IsBuilt.NO,
		kind: AssetKind = AssetKind.ANY,
	) -> "Asset":
		target_path = normalized_target_path(str(target), source.source_path())
		return cls(source=source, c=AssetCommon(target_path, chmod, is_built, kind))

	def processed(self, action: str, original_path: Path | None = None) -> "Asset":
		return replace(self, processed_from=ProcessedFrom(action, original_path))

	def with_target(self, target_path: PurePosixPath) -> "Asset":
		return replace(self, c=replace(self.c, target_path=target_path))

	@property
	def is_binary_executable(self) -> bool:
		return (
			self.c.is_executable
			and self.c.target_path.suffix != ".sh"
			and (self.c.built or self.smells_like_elf())
		)

	def smells_like_elf(self) -> bool:
		return self.source.magic_bytes() == ELF_MAGIC

	def display(self, cwd: Path | None = None) -> str:
		src = self.source.source_path()
		action = None
		if self.processed_from is not None:
			action = self.processed_from.action
			src = self.processed_from.original_path or src
		out = ""
		if src is not None:
			shown = src
			if cwd is not None:
				try:
					shown = src.relative_to(cwd)
				except ValueError:
					pass
			out += f"{shown} "
		if action is not None:
			out += f"({action}{'; built' if self.c.built else ''}) "
		elif self.c.built:
			out += "(built) "
		return out + f"-> {self.c.target_path}"


@dataclass(frozen=True)
class UnresolvedAsset:
	source_path: Path
	c: AssetCommon
	target: str = ""

	@classmethod
	def new(
		cls,
		source_path: Path,
		target: str,
		chmod: int,
		is_built: IsBuilt = IsBuilt.NO,
		kind: AssetKind = AssetKind.ANY,
	) -> "UnresolvedAsset":
		# The raw target is kept so a trailing "/" still means "directory" at resolve time.
		common = AssetCommon(PurePosixPath(target.lstrip("/") or "."), chmod, is_built, kind)
		return cls(source_path=source_path, c=common, target=target)

	def _source_prefix_len(self) -> int | None:
		src = str(self.source_path)
		if not is_glob_pattern(src):
			return None
		parts = self.source_path.parts
		if is_glob_pattern(self.source_path.name):
			parent_parts = self.source_path.parent.parts
			for i, part in enumerate(parent_parts):
				if is_glob_pattern(part):
					return i
			return len(parts)
		return max(len(parts) - 1, 0)

	def resolve(self, preserve_symlinks: bool = False) -> list[Asset]:
		"""
		Expand into concrete assets.

		For globs, the part of each match past the prefix length is appended to
		the target directory, e.g. `src/*/x` -> `bar/` maps `src/a/x` to `bar/a/x`.
		"""
		prefix_len = self._source_prefix_len()
		matches = sorted(glob.glob(str(self.source_path), recursive=True))
		out: list[Asset] = []
		for match in matches:
			source_file = Path(match)
			if source_file.is_dir():
				continue
			if prefix_len is not None:
				suffix = "/".join(source_file.parts[prefix_len:])
				# an empty suffix leaves a trailing "/", so the file name gets appended
				base = self.target if self.target.endswith("/") else self.target + "/"
				target = base + suffix
			else:
				target = self.target
			if log.isEnabledFor(logging.DEBUG):
				log.debug(
					"asset %s -> %s %s %o",
					source_file,
					target,
					"built" if self.c.built else "copy",
					self.c.chmod,
				)
			asset = Asset(
				source=source_from_path(source_file, preserve_symlinks),
				c=replace(self.c, target_path=normalized_target_path(target, source_file)),
			)
			out.append(asset.processed("glob") if prefix_len is not None else asset)
		if not out:
			target_display = normalized_target_path(self.target, self.source_path)
			raise AssetFileNotFound(str(self.source_path), str(target_display), prefix_len is not None, self.c.built)
		return out


def resolve_all(unresolved: Iterable[UnresolvedAsset], listener: Listener, preserve_symlinks: bool = False) -> list[Asset]:
	"""
	Resolve every entry in declaration order, then drop duplicate targets.

	The first declared asset for a target wins; later ones are reported.
	"""
	resolved: list[Asset] = []
	for u in unresolved:
		resolved.extend(u.resolve(preserve_symlinks))
	return dedupe_assets(resolved, listener)


def dedupe_assets(assets: Iterable[Asset], listener: Listener) -> list[Asset]:
	seen: dict[PurePosixPath, Asset] = {}
	out: list[Asset] = []
	for asset in assets:
		prev = seen.get(asset.c.target_path)
		if prev is not None:
			listener.warning(f"Duplicate asset {asset.display()} ignored; already provided by {prev.display()}")
			continue
		seen[asset.c.target_path] = asset
		out.append(asset)
	return out


def add_conf_files(assets: Iterable[Asset], conf_files: list[str]) -> list[str]:
	"""Every asset under etc/ is a conffile unless already declared."""
	existing = {c.lstrip("/") for c in conf_files}
	out = list(conf_files)
	for asset in assets:
		parts = asset.c.target_path.parts
		if not parts or parts[0] != "etc":
			continue
		path_str = str(asset.c.target_path)
		if path_str in existing:
			continue
		log.debug("automatically adding /%s to conffiles", path_str)
		existing.add(path_str)
		out.append("/" + path_str)
	return out


def remap_multiarch(assets: Iterable[Asset], lib_dir: str) -> list[Asset]:
	"""Rewrite `usr/lib/...` targets into the architecture-specific `lib_dir`."""
	generic = PurePosixPath("usr/lib")
	specific = PurePosixPath(lib_dir)
	out: list[Asset] = []
	for asset in assets:
		target = asset.c.target_path
		if specific != generic and _is_under(target, generic) and not _is_under(target, specific):
			target = specific / target.relative_to(generic)
			out.append(asset.with_target(target))
		else:
			out.append(asset)
	return out


def _is_under(path: PurePosixPath, base: PurePosixPath) -> bool:
	return path.parts[: len(base.parts)] == base.parts and len(path.parts) > len(base.parts)


def check_multiarch_contents(assets: Iterable[Asset], listener: Listener) -> None:
	has_lib = False
	has_exe = False
	for asset in assets:
		if asset.c.kind is AssetKind.SEPARATE_DEBUG_SYMBOLS:
			continue
		if asset.c.is_dynamic_library:
			has_lib = True
		elif asset.c.is_executable:
			has_exe = True
	if has_lib and has_exe:
		listener.warning(
			"Multi-Arch: same packages should not contain both libraries and executables; "
			"move executables to a separate package"
		)


def sort_key(asset: Asset) -> tuple:
	action = asset.processed_from.action if asset.processed_from is not None else None
	suffix = asset.c.target_path.suffix
	return (
		asset.c.is_executable,
		asset.c.is_dynamic_library,
		(action is not None, action or ""),
		(bool(suffix), suffix[1:]),
		# component-wise, so `a/b` sorts before `a.b`
		asset.c.target_path.parts,
	)


def sort_assets(assets: Iterable[Asset]) -> list[Asset]:
	"""Similar files next to each other improve tarball compression."""
	return sorted(assets, key=sort_key)


def needs_doc_compression(path: str) -> bool:
	"""
	Debian policy: man pages, info pages and doc NEWS/changelog ship gzipped.
	"""
	if path.endswith(".gz"):
		return False
	if path.startswith("usr/share/man/"):
		return True
	if path.startswith("usr/share/doc/") and (path.endswith("/NEWS") or path.endswith("/changelog")):
		return True
	return path.startswith("usr/share/info/") and path.endswith(".info")


def compress_doc_assets(assets: list[Asset], listener: Listener, jobs: int | None = None) -> list[Asset]:
	"""Replace eligible documentation assets with `.gz` copies held in memory."""
	picked = [
		i
		for i, a in enumerate(assets)
		if not a.c.built and not a.source.is_symlink and needs_doc_compression(str(a.c.target_path))
	]

	def _compress(idx: int) -> tuple[int, Asset]:
		orig = assets[idx]
		new_path = orig.c.target_path.with_name(orig.c.target_path.name + ".gz")
		listener.progress("Compressing", f"'{new_path}'")
		new = Asset.new(DataSource(gzipped(orig.source.data())), new_path, orig.c.chmod)
		original = orig.source.source_path() or Path(str(orig.c.target_path))
		return idx, new.processed("compressed", original)

	out = list(assets)
	for idx, new in fan_out(_compress, picked, what="compress", jobs=jobs):
		out[idx] = new
	return out


@dataclass(frozen=True)
class Assets:
	"""Declared assets before (`unresolved`) and after (`resolved`) resolution."""

	unresolved: tuple[UnresolvedAsset, ...] = ()
	resolved: tuple[Asset, ...] = ()

	def resolve(self, listener: Listener, preserve_symlinks: bool = False) -> "Assets":
		"""Expand every unresolved entry; the result has none left."""
		resolved = resolve_all(self.unresolved, listener, preserve_symlinks)
		return Assets(unresolved=(), resolved=tuple(dedupe_assets([*self.resolved, *resolved], listener)))

	def with_resolved(self, resolved: Iterable[Asset]) -> "Assets":
		return replace(self, resolved=tuple(resolved))
