# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Package configuration.

A `PackageSpec` is loaded once from a JSON manifest (`debpack.json`) plus
command-line overrides, then handed through the build stages. Each stage
returns an updated copy (`dataclasses.replace`); nothing mutates a spec that
another stage can still see.

Manifest paths are relative to the manifest's directory.
"""

from __future__ import annotations

import enum
import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

from debpack.arch import debian_architecture, host_triple, library_install_dir
from debpack.assets import AssetKind, Assets, IsBuilt, UnresolvedAsset
from debpack.compress import CompressOptions, Format
from debpack.debuginfo import DebugSymbols
from debpack.depends import normalize_field, parse_relations
from debpack.errors import ConfigError
from debpack.listener import Listener
from debpack.version import check_deb_version, deb_version

SECONDS_PER_DAY = 24 * 3600

_RELATION_FIELDS = (
	("pre_depends", "Pre-Depends"),
	("recommends", "Recommends"),
	("suggests", "Suggests"),
	("enhances", "Enhances"),
	("conflicts", "Conflicts"),
	("breaks", "Breaks"),
	("replaces", "Replaces"),
	("provides", "Provides"),
)

_ALLOWED_KEYS = {
	"name",
	"version",
	"revision",
	"epoch",
	"target",
	"maintainer",
	"copyright",
	"license",
	"license_file",
	"description",
	"extended_description",
	"extended_description_file",
	"homepage",
	"documentation",
	"repository",
	"section",
	"priority",
	"depends",
	"conf_files",
	"triggers_file",
	"maintainer_scripts",
	"script_fragments",
	"changelog",
	"multiarch",
	"preserve_symlinks",
	"assets",
	"debug_symbols",
	"compress_debug_symbols",
	"dbgsym",
	"tools",
	"linker",
	"output",
} | {k for k, _ in _RELATION_FIELDS}

MAINTAINER_SCRIPTS = ("config", "preinst", "postinst", "prerm", "postrm", "templates")


class Multiarch(enum.Enum):
	NONE = "no"
	SAME = "same"
	FOREIGN = "foreign"


@dataclass(frozen=True)
class BuildOverrides:
	"""Command-line values that win over the manifest."""

	deb_version: str | None = None
	deb_revision: str | None = None
	target: str | None = None
	# Resolved once at startup; used when neither manifest nor --target names one.
	default_target: str | None = None
	output: Path | None = None
	strip: bool | None = None
	separate_debug_symbols: bool | None = None
	compress_debug_symbols: bool | None = None
	dbgsym: bool | None = None
	multiarch: Multiarch | None = None
	fast: bool = False
	compress_format: Format | None = None
	compress_system: bool = False
	rsyncable: bool = False


@dataclass(frozen=True)
class PackageSpec:
	name: str
	deb_version: str
	target: str
	architecture: str
	maintainer: str
	manifest_dir: Path
	default_timestamp: int
	output_path: Path
	description: str = ""
	extended_description: str | None = None
	extended_description_file: Path | None = None
	copyright: str = ""
	license: str | None = None
	license_file: Path | None = None
	license_file_skip_lines: int = 0
	homepage: str | None = None
	documentation: str | None = None
	repository: str | None = None
	section: str | None = None
	priority: str = "optional"
	depends: str = "$auto"
	resolved_depends: str | None = None
	pre_depends: str | None = None
	recommends: str | None = None
	suggests: str | None = None
	enhances: str | None = None
	conflicts: str | None = None
	breaks: str | None = None
	replaces: str | None = None
	provides: str | None = None
	conf_files: tuple[str, ...] = ()
	triggers_file: Path | None = None
	maintainer_scripts: Path | None = None
	script_fragments: Mapping[str, str] = field(default_factory=dict)
	changelog: Path | None = None
	multiarch: Multiarch = Multiarch.NONE
	preserve_symlinks: bool = False
	assets: Assets = field(default_factory=Assets)
	debug_symbols: DebugSymbols = field(default_factory=DebugSymbols)
	# also write the separated debug files as a `<name>-dbgsym` package
	dbgsym: bool = False
	strip_tool: Path | None = None
	objcopy_tool: Path | None = None
	linker: Path | None = None
	compress: CompressOptions = field(default_factory=CompressOptions)

	@property
	def lib_dir_base(self) -> str:
		return library_install_dir(self.target, self.multiarch is not Multiarch.NONE)

	@property
	def temp_dir(self) -> Path:
		return self.output_path.parent / f".debpack-tmp-{self.name}"

	def path_in_package(self, rel: Path) -> Path:
		return rel if rel.is_absolute() else self.manifest_dir / rel

	def with_assets(self, assets: Assets) -> "PackageSpec":
		return replace(self, assets=assets)


def default_timestamp(manifest_path: Path, env: Mapping[str, str]) -> int:
	"""SOURCE_DATE_EPOCH when set, else the manifest mtime rounded down to a day."""
	raw = env.get("SOURCE_DATE_EPOCH")
	if raw is not None and raw.strip():
		try:
			return int(raw.strip())
		except ValueError as err:
			raise ConfigError(f"SOURCE_DATE_EPOCH must be an integer, got {raw!r}") from err
	try:
		mtime = int(manifest_path.stat().st_mtime)
	except OSError as err:
		raise ConfigError(f"unable to stat manifest: {err.strerror}", path=str(manifest_path)) from err
	return mtime - mtime % SECONDS_PER_DAY


def package_name(raw: str) -> str:
	name = raw.strip().replace("_", "-").lower()
	if len(name) < 2 or not name[0].isalnum() or not all(c.isalnum() or c in "+-." for c in name):
		raise ConfigError(f"Invalid package name {raw!r}", hint="use lowercase letters, digits and + - .")
	return name


def parse_mode(raw: Any, where: str) -> int:
	if isinstance(raw, int):
		return raw
	if isinstance(raw, str):
		try:
			return int(raw, 8)
		except ValueError:
			pass
	raise ConfigError(f"{where}: mode must be an octal string like \"644\", got {raw!r}")


def _parse_built(raw: Any, where: str) -> IsBuilt:
	if raw in (None, False, "no"):
		return IsBuilt.NO
	if raw in (True, "same"):
		return IsBuilt.SAME_PACKAGE
	if raw == "workspace":
		return IsBuilt.WORKSPACE
	raise ConfigError(f"{where}: built must be true, false, \"same\" or \"workspace\", got {raw!r}")


def parse_asset_entry(entry: Any, manifest_dir: Path, index: int) -> UnresolvedAsset:
	where = f"assets[{index}]"
	if isinstance(entry, list):
		if len(entry) != 3 or not all(isinstance(x, str) for x in entry):
			raise ConfigError(f"{where}: expected [source, dest, mode]")
		source, dest, mode = entry
		built = IsBuilt.NO
		kind = AssetKind.ANY
	elif isinstance(entry, dict):
		unknown = sorted(set(entry) - {"source", "dest", "mode", "built", "kind"})
		if unknown:
			raise ConfigError(f"{where}: unknown fields: {', '.join(unknown)}")
		try:
			source, dest = entry["source"], entry["dest"]
		except KeyError as err:
			raise ConfigError(f"{where}: missing field {err.args[0]!r}") from err
		mode = entry.get("mode", "644")
		built = _parse_built(entry.get("built"), where)
		try:
			kind = AssetKind(entry.get("kind", "any"))
		except ValueError as err:
			raise ConfigError(f"{where}: unknown kind {entry.get('kind')!r}") from err
	else:
		raise ConfigError(f"{where}: expected a list or an object")
	if source == "$auto":
		raise ConfigError(f"{where}: $auto is not allowed here")
	src = Path(source)
	if not src.is_absolute():
		src = manifest_dir / src
	return UnresolvedAsset.new(src, dest, parse_mode(mode, where), built, kind)


def _opt_str(data: Mapping[str, Any], key: str) -> str | None:
	val = data.get(key)
	if val is None:
		return None
	if not isinstance(val, str):
		raise ConfigError(f"{key} must be a string")
	return val


def _opt_path(data: Mapping[str, Any], key: str) -> Path | None:
	val = _opt_str(data, key)
	return Path(val) if val is not None else None


def _debug_symbols(data: Mapping[str, Any], ov: BuildOverrides, dbgsym: bool) -> DebugSymbols:
	mode = data.get("debug_symbols", "strip")
	compress = bool(data.get("compress_debug_symbols", False))
	if dbgsym and mode == "strip":
		mode = "separate"
	if ov.separate_debug_symbols is not None:
		mode = "separate" if ov.separate_debug_symbols else ("strip" if mode == "separate" else mode)
	if ov.compress_debug_symbols is not None:
		compress = ov.compress_debug_symbols
		if compress:
			mode = "separate"
	if ov.strip is False:
		mode = "keep"
	elif ov.strip is True and mode == "keep":
		mode = "strip"
	try:
		return DebugSymbols(mode, compress and mode == "separate")
	except ValueError as err:
		raise ConfigError(str(err)) from err


def load_manifest(path: Path) -> dict[str, Any]:
	try:
		data = json.loads(path.read_text(encoding="utf-8"))
	except OSError as err:
		raise ConfigError(f"unable to read manifest: {err.strerror}", path=str(path)) from err
	except json.JSONDecodeError as err:
		raise ConfigError(f"manifest is not valid JSON: {err}", path=str(path)) from err
	if not isinstance(data, dict):
		raise ConfigError("manifest must be a JSON object", path=str(path))
	unknown = sorted(set(data) - _ALLOWED_KEYS)
	if unknown:
		raise ConfigError(f"manifest has unknown fields: {', '.join(unknown)}", path=str(path))
	return data


def load_package_spec(
	manifest_path: Path,
	listener: Listener,
	overrides: BuildOverrides | None = None,
	env: Mapping[str, str] | None = None,
) -> PackageSpec:
	ov = overrides or BuildOverrides()
	env = os.environ if env is None else env
	manifest_path = manifest_path.resolve()
	manifest_dir = manifest_path.parent
	data = load_manifest(manifest_path)

	if "name" not in data or "version" not in data:
		raise ConfigError("manifest must set name and version", path=str(manifest_path))
	name = package_name(str(data["name"]))
	if ov.deb_version is not None:
		version = check_deb_version(ov.deb_version)
	else:
		revision = ov.deb_revision if ov.deb_revision is not None else _opt_str(data, "revision")
		version = check_deb_version(deb_version(str(data["version"]), "1" if revision is None else revision))
		epoch = data.get("epoch")
		if epoch is not None:
			if not isinstance(epoch, int) or isinstance(epoch, bool) or epoch < 0:
				raise ConfigError(f"epoch must be a non-negative integer, got {epoch!r}")
			version = f"{epoch}:{version}"

	target = ov.target or _opt_str(data, "target") or ov.default_target or host_triple()
	architecture = debian_architecture(target)

	maintainer = _opt_str(data, "maintainer")
	if not maintainer:
		raise ConfigError("Package maintainer must be specified", path=str(manifest_path))

	description = _opt_str(data, "description")
	if not description:
		listener.warning("description field is missing in the manifest")
		description = f"[generated by debpack for {name}]"
	license_ = _opt_str(data, "license")
	license_file = None
	skip_lines = 0
	raw_lf = data.get("license_file")
	if isinstance(raw_lf, list):
		if not raw_lf or len(raw_lf) > 2:
			raise ConfigError("license_file must be a path or [path, skip_lines]")
		license_file = Path(str(raw_lf[0]))
		if len(raw_lf) == 2:
			try:
				skip_lines = int(raw_lf[1])
			except (TypeError, ValueError) as err:
				raise ConfigError(f"license_file skip_lines must be an integer, got {raw_lf[1]!r}") from err
			if skip_lines < 0:
				raise ConfigError(f"license_file skip_lines must not be negative, got {skip_lines}")
	elif isinstance(raw_lf, str):
		license_file = Path(raw_lf)
	elif raw_lf is not None:
		raise ConfigError("license_file must be a path or [path, skip_lines]")
	if license_ is None and license_file is None:
		listener.warning("license field is missing in the manifest")

	try:
		multiarch = ov.multiarch or Multiarch(data.get("multiarch", "no"))
	except ValueError as err:
		raise ConfigError(f"multiarch must be no, same or foreign, got {data.get('multiarch')!r}") from err

	depends = _opt_str(data, "depends")
	depends = "$auto" if depends is None else depends
	# syntax check only; arch lists are evaluated later against the target
	parse_relations(depends, "Depends")
	relations = {key: normalize_field(_opt_str(data, key), label) for key, label in _RELATION_FIELDS}

	conf_files = data.get("conf_files", [])
	if not isinstance(conf_files, list) or not all(isinstance(c, str) for c in conf_files):
		raise ConfigError("conf_files must be a list of paths")

	fragments = data.get("script_fragments", {})
	if not isinstance(fragments, dict) or not all(isinstance(v, str) for v in fragments.values()):
		raise ConfigError("script_fragments must map script names to text")
	unknown_scripts = sorted(set(fragments) - set(MAINTAINER_SCRIPTS))
	if unknown_scripts:
		raise ConfigError(f"script_fragments has unknown scripts: {', '.join(unknown_scripts)}")

	tools = data.get("tools", {})
	if not isinstance(tools, dict) or set(tools) - {"strip", "objcopy"}:
		raise ConfigError("tools may only set strip and objcopy")

	dbgsym = ov.dbgsym if ov.dbgsym is not None else data.get("dbgsym", False)
	if not isinstance(dbgsym, bool):
		raise ConfigError(f"dbgsym must be true or false, got {dbgsym!r}")
	debug_symbols = _debug_symbols(data, ov, dbgsym)
	if dbgsym and not debug_symbols.separate:
		raise ConfigError(
			"a dbgsym package needs separated debug symbols",
			hint="drop --no-strip, or set \"debug_symbols\": \"separate\"",
		)

	raw_assets = data.get("assets", [])
	if not isinstance(raw_assets, list):
		raise ConfigError("assets must be a list")
	unresolved = tuple(parse_asset_entry(e, manifest_dir, i) for i, e in enumerate(raw_assets))

	if ov.output is not None:
		output_path = ov.output
	elif "output" in data:
		output_path = manifest_dir / str(data["output"])
	else:
		file_version = version.split(":", 1)[-1]
		output_path = manifest_dir / "target" / "debian" / f"{name}_{file_version}_{architecture}.deb"
	if output_path.is_dir() or str(output_path).endswith("/"):
		file_version = version.split(":", 1)[-1]
		output_path = output_path / f"{name}_{file_version}_{architecture}.deb"

	return PackageSpec(
		name=name,
		deb_version=version,
		target=target,
		architecture=architecture,
		maintainer=maintainer,
		manifest_dir=manifest_dir,
		default_timestamp=default_timestamp(manifest_path, env),
		output_path=output_path,
		description=description,
		extended_description=_opt_str(data, "extended_description"),
		extended_description_file=_opt_path(data, "extended_description_file"),
		copyright=_opt_str(data, "copyright") or maintainer,
		license=license_,
		license_file=license_file,
		license_file_skip_lines=skip_lines,
		homepage=_opt_str(data, "homepage"),
		documentation=_opt_str(data, "documentation"),
		repository=_opt_str(data, "repository"),
		section=_opt_str(data, "section"),
		priority=_opt_str(data, "priority") or "optional",
		depends=depends,
		conf_files=tuple(conf_files),
		triggers_file=_opt_path(data, "triggers_file"),
		maintainer_scripts=_opt_path(data, "maintainer_scripts"),
		script_fragments=dict(fragments),
		changelog=_opt_path(data, "changelog"),
		multiarch=multiarch,
		preserve_symlinks=bool(data.get("preserve_symlinks", False)),
		assets=Assets(unresolved=unresolved),
		debug_symbols=debug_symbols,
		dbgsym=dbgsym,
		strip_tool=Path(tools["strip"]) if "strip" in tools else None,
		objcopy_tool=Path(tools["objcopy"]) if "objcopy" in tools else None,
		linker=_opt_path(data, "linker"),
		compress=CompressOptions(
			format=ov.compress_format or Format.XZ,
			use_system=ov.compress_system,
			fast=ov.fast,
			rsyncable=ov.rsyncable,
		),
		**relations,
	)
