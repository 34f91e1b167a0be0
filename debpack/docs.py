# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Generated documentation assets: `copyright` and `changelog.Debian.gz`.
"""

from __future__ import annotations

from pathlib import Path, PurePosixPath

from debpack.assets import Asset, DataSource
from debpack.compress import gzipped
from debpack.config import PackageSpec
from debpack.errors import ConfigError
from debpack.listener import Listener

COPYRIGHT_FORMAT = "https://www.debian.org/doc/packaging-manuals/copyright-format/1.0/"
_METADATA_PREFIXES = ("License: ", "Source: ", "Upstream-Name: ", "Format: ")


def _read_text(path: Path, what: str) -> str:
	try:
		return path.read_text(encoding="utf-8")
	except OSError as err:
		raise ConfigError(f"unable to read {what}: {err.strerror}", path=str(path)) from err
	except UnicodeDecodeError as err:
		raise ConfigError(f"{what} is not valid UTF-8", path=str(path)) from err


def generate_copyright(spec: PackageSpec) -> bytes:
	"""
	Machine-readable copyright file.

	A license file that already starts with copyright-format fields is copied
	as is; otherwise the header paragraph is generated in front of it.
	"""
	license_text = None
	if spec.license_file is not None:
		raw = _read_text(spec.path_in_package(spec.license_file), "license file")
		license_text = raw.splitlines()[spec.license_file_skip_lines :]

	out: list[str] = []
	has_metadata = license_text is not None and any(
		line.startswith(_METADATA_PREFIXES) for line in license_text[:10]
	)
	if not has_metadata:
		out.append(f"Format: {COPYRIGHT_FORMAT}")
		out.append(f"Upstream-Name: {spec.name}")
		source = spec.repository or spec.homepage
		if source:
			out.append(f"Source: {source}")
		out.append(f"Copyright: {spec.copyright}")
		if spec.license:
			out.append(f"License: {spec.license}")
	if license_text is not None:
		if not has_metadata:
			out.append("")
		for line in license_text:
			# an empty continuation line must be written as " ."
			out.append(" ." if line == " " else line)
	return ("\n".join(out) + "\n").encode("utf-8")


def generate_changelog(spec: PackageSpec) -> bytes | None:
	if spec.changelog is None:
		return None
	path = spec.path_in_package(spec.changelog)
	try:
		raw = path.read_bytes()
	except OSError as err:
		raise ConfigError(f"unable to read changelog: {err.strerror}", path=str(path)) from err
	return raw if path.suffix == ".gz" else gzipped(raw)


def generated_assets(spec: PackageSpec, listener: Listener) -> list[Asset]:
	"""Copyright and changelog assets for `usr/share/doc/<name>/`."""
	doc_dir = PurePosixPath("usr/share/doc") / spec.name
	out: list[Asset] = []
	license_path = spec.path_in_package(spec.license_file) if spec.license_file is not None else None
	copyright_asset = Asset.new(DataSource(generate_copyright(spec)), doc_dir / "copyright", 0o644)
	out.append(copyright_asset.processed("generated", license_path))
	listener.progress("Generated", str(doc_dir / "copyright"))

	changelog = generate_changelog(spec)
	if changelog is not None:
		target = doc_dir / "changelog.Debian.gz"
		asset = Asset.new(DataSource(changelog), target, 0o644)
		out.append(asset.processed("generated", spec.path_in_package(spec.changelog)))
		listener.progress("Generated", str(target))
	return out
