# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Debug-symbol processing for built binaries.

Per binary (independent, run in the bounded pool):
  1. strip into a private temp file (`--strip-unneeded`, drop .comment/.note)
  2. in `separate` mode, extract debug info from the *original* binary with
     `objcopy --only-keep-debug`, keyed by GNU build-id when available
  3. link the stripped binary to the debug file with `--add-gnu-debuglink`
  4. swap the asset's source for the stripped file; hand back the debug
     asset so the caller adds it to the set
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, replace
from pathlib import Path, PurePosixPath
from typing import Callable

from debpack.arch import debian_tuple
from debpack.assets import Asset, AssetKind, IsBuilt, PathSource, ProcessedFrom
from debpack.elf import ElfParseError, build_id_debug_path, read_build_id
from debpack.errors import StripFailed, ToolError
from debpack.listener import Listener
from debpack.parallel import fan_out

log = logging.getLogger(__name__)

STRIP_ARGS = ("--strip-unneeded", "--remove-section=.comment", "--remove-section=.note")


@dataclass(frozen=True)
class DebugSymbols:
	"""One of `keep`, `strip` or `separate` (optionally compressing the debug file)."""

	mode: str = "strip"
	compress: bool = False

	def __post_init__(self) -> None:
		if self.mode not in ("keep", "strip", "separate"):
			raise ValueError(f"unknown debug symbols mode: {self.mode!r}")
		if self.compress and self.mode != "separate":
			raise ValueError("compressing debug symbols requires separate debug symbols")

	@property
	def separate(self) -> bool:
		return self.mode == "separate"


@dataclass(frozen=True)
class StripOptions:
	debug_symbols: DebugSymbols
	temp_dir: Path
	lib_dir_base: str = "usr/lib"
	target: str | None = None
	strip_cmd: Path = Path("strip")
	objcopy_cmd: Path = Path("objcopy")
	# Optional build-id reader; None always selects the fallback debug path.
	build_id_reader: Callable[[Path], bytes | None] | None = read_build_id
	jobs: int | None = None


class _RunFailed(Exception):
	pass


def target_specific_command(
	command_name: str,
	target: str,
	explicit: Path | None = None,
	linker: Path | None = None,
	usr_bin: Path = Path("/usr/bin"),
) -> Path | None:
	"""
	Locate a cross tool for `target`.

	Order: explicit override, next to the configured linker
	(`<dir>/<tuple>-<cmd>` or `<dir>/<cmd>`), then `/usr/bin/<tuple>-<cmd>`.
	"""
	if explicit is not None:
		return explicit
	tuple_ = debian_tuple(target)
	if linker is not None and str(linker.parent) not in ("", "."):
		if linker.name.startswith(tuple_):
			candidate = linker.with_name(f"{tuple_}-{command_name}")
		else:
			candidate = linker.with_name(command_name)
		if candidate.exists():
			return candidate
	candidate = usr_bin / f"{tuple_}-{command_name}"
	if candidate.exists():
		return candidate
	return None


def _check_call(cmd: list[str], cwd: Path | None = None) -> None:
	if log.isEnabledFor(logging.DEBUG):
		log.debug("running %s", " ".join(cmd))
	res = subprocess.run(cmd, cwd=cwd, capture_output=True, check=False)
	if res.returncode != 0:
		detail = res.stderr.decode("utf-8", "replace").strip()
		raise _RunFailed(f"exit status {res.returncode}" + (f": {detail}" if detail else ""))


def _run_strip(strip_cmd: Path, out_path: Path, path: Path, args: tuple[str, ...]) -> None:
	_check_call([str(strip_cmd), *args, "-o", str(out_path), str(path)])
	if not out_path.exists():
		raise _RunFailed(f"command failed to create output '{out_path}'")


def debug_target_path(asset: Asset, path: Path, opts: StripOptions) -> PurePosixPath:
	if opts.build_id_reader is not None:
		try:
			build_id = opts.build_id_reader(path)
		except (ElfParseError, OSError) as err:
			log.debug("elf: %s in %s", err, path)
			build_id = None
		if build_id:
			target = build_id_debug_path(build_id, opts.lib_dir_base)
			log.debug("got gnu debug-id: %s for %s", target, path)
			return target
		log.debug("debug-id not found in %s", path)
	return asset.c.default_debug_target_path(opts.lib_dir_base)


def _strip_hint(opts: StripOptions) -> str:
	notes: list[str] = []
	if opts.target:
		notes.append(
			f"Target-specific strip commands are configured with `\"tools\": {{\"strip\": ...}}` "
			f"(currently '{opts.strip_cmd}' for {opts.target})"
		)
	if not opts.debug_symbols.separate:
		notes.append('Set "debug_symbols": "keep" or run with --no-strip')
	return "\n".join(notes)


def _objcopy_hint(opts: StripOptions) -> str:
	notes: list[str] = []
	if opts.target:
		notes.append(
			f"Target-specific objcopy commands are configured with `\"tools\": {{\"objcopy\": ...}}` "
			f"(currently '{opts.objcopy_cmd}' for {opts.target})"
		)
	notes.append("Run without --separate-debug-symbols if you don't have objcopy")
	return "\n".join(notes)


def strip_one(index: int, asset: Asset, opts: StripOptions, listener: Listener) -> tuple[Asset, Asset | None]:
	path = asset.source.source_path()
	if path is None:
		listener.warning(f"Found built asset with non-path source '{asset.display()}'")
		return asset, None
	if not path.exists():
		raise StripFailed(str(path), "The file doesn't exist", hint=f"needed for {asset.c.target_path}")

	stripped = opts.temp_dir / f"{path.stem}.stripped-{index}.tmp"
	stripped.unlink(missing_ok=True)
	hint = _strip_hint(opts) or None
	try:
		_run_strip(opts.strip_cmd, stripped, path, STRIP_ARGS)
	except FileNotFoundError as err:
		raise ToolError(str(opts.strip_cmd), f"can't strip binaries: {err.strerror}", path=str(path), hint=hint) from err
	except _RunFailed as first:
		msg = f"{opts.strip_cmd}: {first}"
		try:
			_run_strip(opts.strip_cmd, stripped, path, ())
		except (OSError, _RunFailed) as err:
			raise StripFailed(str(path), msg, hint=hint) from err
		listener.warning(f"strip didn't support additional arguments: {msg}")

	debug_asset = None
	if opts.debug_symbols.separate:
		debug_asset = _separate_debug(asset, path, stripped, opts)
		listener.progress("Split", f"debug info from '{path}'")
	else:
		listener.progress("Stripped", f"'{path}'")

	log.debug("replacing asset %s with stripped asset %s", path, stripped)
	new_asset = replace(asset, source=PathSource(stripped), processed_from=ProcessedFrom("strip", path))
	return new_asset, debug_asset


def _separate_debug(asset: Asset, path: Path, stripped: Path, opts: StripOptions) -> Asset:
	log.debug("extracting debug info with %s from %s", opts.objcopy_cmd, path)
	target = debug_target_path(asset, path, opts)
	# --add-gnu-debuglink records the file name it is given, so the debug file
	# gets its final name inside a directory private to this binary.
	debug_tmp = stripped.with_name(stripped.name + ".d") / target.name
	debug_tmp.parent.mkdir(exist_ok=True)
	debug_tmp.unlink(missing_ok=True)

	cmd = [str(opts.objcopy_cmd), "--only-keep-debug"]
	if opts.debug_symbols.compress:
		cmd.append("--compress-debug-sections=zlib")
	cmd += [str(path), str(debug_tmp)]
	try:
		_check_call(cmd)
	except FileNotFoundError as err:
		raise ToolError(
			str(opts.objcopy_cmd),
			f"can't separate debug symbols: {err.strerror}",
			path=str(path),
			hint=_objcopy_hint(opts),
		) from err
	except _RunFailed as err:
		raise StripFailed(str(path), f"{opts.objcopy_cmd}: {err}", hint=_objcopy_hint(opts)) from err

	log.debug("linking debug info with %s from %s into %s", opts.objcopy_cmd, stripped, debug_tmp.name)
	try:
		_check_call([str(opts.objcopy_cmd), "--add-gnu-debuglink", debug_tmp.name, str(stripped.absolute())], cwd=debug_tmp.parent)
	except FileNotFoundError as err:
		raise ToolError(str(opts.objcopy_cmd), f"can't link debug symbols: {err.strerror}", path=str(stripped)) from err
	except _RunFailed as err:
		raise ToolError(str(opts.objcopy_cmd), f"--add-gnu-debuglink failed: {err}", path=str(stripped)) from err

	debug = Asset.new(
		PathSource(debug_tmp),
		target,
		0o666 & asset.c.chmod,
		IsBuilt.NO,
		AssetKind.SEPARATE_DEBUG_SYMBOLS,
	)
	return debug.processed("compress" if opts.debug_symbols.compress else "separate", path)


def is_strippable(asset: Asset) -> bool:
	"""Built executables and dynamic libraries."""
	return asset.c.built and (asset.c.is_dynamic_library or asset.c.is_executable)


def strip_binaries(assets: list[Asset], opts: StripOptions, listener: Listener) -> list[Asset]:
	"""
	Strip every built binary; returns the new asset list with debug files appended.

	Symlinks are skipped since their data is never archived.
	"""
	if opts.debug_symbols.mode == "keep":
		return list(assets)
	opts.temp_dir.mkdir(parents=True, exist_ok=True)
	built = [i for i, a in enumerate(assets) if is_strippable(a)]
	work = [(n, i) for n, i in enumerate(built) if not assets[i].source.is_symlink]

	def _one(item: tuple[int, int]) -> tuple[int, Asset, Asset | None]:
		n, idx = item
		new_asset, debug_asset = strip_one(n, assets[idx], opts, listener)
		return idx, new_asset, debug_asset

	out = list(assets)
	debug_assets: list[Asset] = []
	for idx, new_asset, debug_asset in fan_out(_one, work, what="strip", jobs=opts.jobs):
		out[idx] = new_asset
		if debug_asset is not None:
			debug_assets.append(debug_asset)
	return out + debug_assets
