# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Package assembly pipeline.

	resolve assets -> generated docs -> doc compression -> strip -> depends
	-> [dbgsym split] -> sort -> {control archive || data archive}
	-> sha256sums -> container

Every stage takes the current `PackageSpec` and returns an updated copy. The
control and data archives are built concurrently; `sha256sums` is only added to
the control archive once both are done, since it needs the data hashes. A
stage that adds or renames targets drops duplicates again, first asset wins.
With `dbgsym`, the separated debug files go into a `<name>-dbgsym` package
written next to the main one.
"""

from __future__ import annotations

import hashlib
import logging
import shutil
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from pathlib import Path

from debpack.assets import (
	AssetKind,
	Assets,
	add_conf_files,
	check_multiarch_contents,
	compress_doc_assets,
	dedupe_assets,
	remap_multiarch,
	sort_assets,
)
from debpack.compress import Compressed, Compressor, select_compressor
from debpack.config import Multiarch, PackageSpec
from debpack.deb.ar import DebArchive
from debpack.deb.control import ControlArchiveBuilder, installed_size
from debpack.deb.data import DataArchiveResult, archive_files, format_hash_sums
from debpack.debuginfo import StripOptions, strip_binaries, target_specific_command
from debpack.dependencies import resolve_depends
from debpack.docs import generated_assets
from debpack.errors import DebpackError
from debpack.listener import Listener, PrefixedListener

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildResult:
	output: Path
	architecture: str
	version: str
	installed_size: int
	depends: str
	sha256: str
	control_size: int
	data_size: int
	dbgsym: "BuildResult | None" = None

	def to_dict(self) -> dict:
		out = {
			"output": str(self.output),
			"architecture": self.architecture,
			"version": self.version,
			"installed_size": self.installed_size,
			"depends": self.depends,
			"sha256": self.sha256,
		}
		if self.dbgsym is not None:
			out["dbgsym"] = self.dbgsym.to_dict()
		return out


def resolve_assets(spec: PackageSpec, listener: Listener) -> PackageSpec:
	assets = spec.assets.resolve(listener, spec.preserve_symlinks)
	resolved = list(assets.resolved)
	if spec.multiarch is not Multiarch.NONE:
		resolved = dedupe_assets(remap_multiarch(resolved, spec.lib_dir_base), listener)
	if spec.multiarch is Multiarch.SAME:
		check_multiarch_contents(resolved, listener)
	conf_files = add_conf_files(resolved, list(spec.conf_files))
	return replace(spec, assets=assets.with_resolved(resolved), conf_files=tuple(conf_files))


def add_generated_docs(spec: PackageSpec, listener: Listener) -> PackageSpec:
	# declared assets come first, so they win over generated ones
	merged = dedupe_assets([*spec.assets.resolved, *generated_assets(spec, listener)], listener)
	return spec.with_assets(spec.assets.with_resolved(merged))


def compress_docs(spec: PackageSpec, listener: Listener, jobs: int | None = None) -> PackageSpec:
	compressed = compress_doc_assets(list(spec.assets.resolved), listener, jobs)
	return spec.with_assets(spec.assets.with_resolved(dedupe_assets(compressed, listener)))


def strip_options(spec: PackageSpec, jobs: int | None = None) -> StripOptions:
	strip_cmd = target_specific_command("strip", spec.target, spec.strip_tool, spec.linker)
	objcopy_cmd = target_specific_command("objcopy", spec.target, spec.objcopy_tool, spec.linker)
	log.debug("using %s and %s for %s", strip_cmd or "strip", objcopy_cmd or "objcopy", spec.target)
	return StripOptions(
		debug_symbols=spec.debug_symbols,
		temp_dir=spec.temp_dir,
		lib_dir_base=spec.lib_dir_base,
		target=spec.target,
		strip_cmd=strip_cmd or Path("strip"),
		objcopy_cmd=objcopy_cmd or Path("objcopy"),
		jobs=jobs,
	)


def strip(spec: PackageSpec, listener: Listener, jobs: int | None = None) -> PackageSpec:
	stripped = strip_binaries(list(spec.assets.resolved), strip_options(spec, jobs), listener)
	return spec.with_assets(spec.assets.with_resolved(dedupe_assets(stripped, listener)))


def resolve_dependencies(spec: PackageSpec, listener: Listener, jobs: int | None = None) -> PackageSpec:
	deps = resolve_depends(spec.depends, spec.assets.resolved, spec.architecture, listener, jobs=jobs)
	return replace(spec, resolved_depends=deps)


def split_dbgsym(spec: PackageSpec) -> tuple[PackageSpec, PackageSpec | None]:
	"""
	Move separated debug files into a `<name>-dbgsym` package.

	Returns the main package without them and the debug package, or None when
	there were no debug files to move.
	"""
	debug = [a for a in spec.assets.resolved if a.c.kind is AssetKind.SEPARATE_DEBUG_SYMBOLS]
	if not debug:
		return spec, None
	rest = [a for a in spec.assets.resolved if a.c.kind is not AssetKind.SEPARATE_DEBUG_SYMBOLS]
	name = f"{spec.name}-dbgsym"
	file_version = spec.deb_version.split(":", 1)[-1]
	dbgsym = replace(
		spec,
		name=name,
		output_path=spec.output_path.with_name(f"{name}_{file_version}_{spec.architecture}.ddeb"),
		description=f"debug symbols for {spec.name}",
		extended_description=None,
		extended_description_file=None,
		section="debug",
		priority="optional",
		depends=f"{spec.name} (= {spec.deb_version})",
		resolved_depends=f"{spec.name} (= {spec.deb_version})",
		pre_depends=None,
		recommends=None,
		suggests=None,
		enhances=None,
		conflicts=None,
		breaks=None,
		replaces=None,
		provides=None,
		conf_files=(),
		triggers_file=None,
		maintainer_scripts=None,
		script_fragments={},
		changelog=None,
		multiarch=Multiarch.SAME if spec.multiarch is Multiarch.SAME else Multiarch.NONE,
		assets=Assets(resolved=tuple(debug)),
		dbgsym=False,
	)
	return spec.with_assets(spec.assets.with_resolved(rest)), dbgsym


def sort_for_compression(spec: PackageSpec) -> PackageSpec:
	return spec.with_assets(spec.assets.with_resolved(sort_assets(spec.assets.resolved)))


def _control_archive(spec: PackageSpec, sink: Compressor, listener: Listener) -> ControlArchiveBuilder:
	builder = ControlArchiveBuilder(sink, spec.default_timestamp, listener)
	builder.generate_archive(spec, spec.assets.resolved)
	return builder


def _data_archive(spec: PackageSpec, sink: Compressor, listener: Listener) -> DataArchiveResult:
	return archive_files(sink, spec.assets.resolved, spec.default_timestamp, listener, rsyncable=spec.compress.rsyncable)


def build_archives(spec: PackageSpec, listener: Listener) -> tuple[Compressed, Compressed, int]:
	"""Returns (control, data, uncompressed data size)."""
	compress = spec.compress
	control_sink = select_compressor(compress.format, compress.use_system, compress.fast)
	try:
		data_sink = select_compressor(compress.format, compress.use_system, compress.fast)
	except DebpackError:
		control_sink.abort()
		raise
	try:
		with ThreadPoolExecutor(max_workers=2, thread_name_prefix="debpack-archive") as pool:
			control_future = pool.submit(_control_archive, spec, control_sink, listener)
			data_future = pool.submit(_data_archive, spec, data_sink, listener)
			# join both before raising so neither thread outlives the build
			errors = [f.exception() for f in (control_future, data_future)]
		for err in errors:
			if err is not None:
				raise err
		builder = control_future.result()
		data_result = data_future.result()
		builder.add_sha256sums(format_hash_sums(spec.assets.resolved, data_result.hashes))
		builder.finish()
		original_size = data_sink.uncompressed_size
		return control_sink.finish(), data_sink.finish(), original_size
	except BaseException:
		# system compressors would otherwise wait on their stdin forever
		control_sink.abort()
		data_sink.abort()
		raise


def _size_report(original: int, compressed: int) -> str:
	saved = 100 - compressed * 100 // original if original else 0
	return f"{original // 1024}KB to {compressed // 1024}KB (by {saved}%)"


def write_package(spec: PackageSpec, listener: Listener) -> BuildResult:
	"""Sort, archive and write one package whose assets are final."""
	spec = sort_for_compression(spec)
	control, data, original_size = build_archives(spec, listener)

	archive = DebArchive(spec.output_path, spec.default_timestamp)
	try:
		archive.add_control(control)
		archive.add_data(data)
		out = archive.finish()
	except DebpackError:
		archive.abort()
		raise
	listener.progress("Compressed", _size_report(original_size, len(data)))

	digest = hashlib.sha256(out.read_bytes()).hexdigest()
	log.debug("wrote %s (sha256 %s)", out, digest)
	return BuildResult(
		output=out,
		architecture=spec.architecture,
		version=spec.deb_version,
		installed_size=installed_size(spec.assets.resolved),
		depends=spec.resolved_depends or "",
		sha256=digest,
		control_size=len(control),
		data_size=len(data),
	)


def build(spec: PackageSpec, listener: Listener, jobs: int | None = None) -> BuildResult:
	"""Run the whole pipeline and write `spec.output_path` (and the dbgsym package when asked)."""
	temp_dir = spec.temp_dir
	spec = resolve_assets(spec, listener)
	spec = add_generated_docs(spec, listener)
	spec = compress_docs(spec, listener, jobs)
	spec = strip(spec, listener, jobs)
	spec = resolve_dependencies(spec, listener, jobs)

	dbgsym = None
	if spec.dbgsym:
		spec, dbgsym = split_dbgsym(spec)
		if dbgsym is None:
			listener.warning("No debug symbols found. Skipping dbgsym.ddeb")

	if dbgsym is None:
		result = write_package(spec, listener)
	else:
		with ThreadPoolExecutor(max_workers=2, thread_name_prefix="debpack-package") as pool:
			main_future = pool.submit(write_package, spec, listener)
			dbgsym_future = pool.submit(write_package, dbgsym, PrefixedListener("ddeb: ", listener))
			errors = [f.exception() for f in (main_future, dbgsym_future)]
		for err in errors:
			if err is not None:
				raise err
		result = replace(main_future.result(), dbgsym=dbgsym_future.result())

	if temp_dir.exists():
		shutil.rmtree(temp_dir)
	return result
