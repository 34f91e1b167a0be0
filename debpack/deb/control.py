# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Control archive: package metadata, conffiles, maintainer scripts, triggers and
the `sha256sums` manifest of the data archive.
"""

from __future__ import annotations

import logging
import textwrap
from pathlib import Path
from typing import Iterable, Mapping, Sequence

from debpack.assets import Asset
from debpack.config import MAINTAINER_SCRIPTS, Multiarch, PackageSpec
from debpack.deb.tar import Sink, Tarball
from debpack.errors import ArchiveError, ConfigError
from debpack.listener import Listener

log = logging.getLogger(__name__)

WRAP_COLUMNS = 79
DEBHELPER_TOKEN = "#DEBHELPER#"


def repository_type(repo: str) -> str | None:
	"""Guess the `Vcs-*` kind from a repository URL."""
	if (
		repo.startswith("git+")
		or repo.endswith(".git")
		or "git@" in repo
		or "github.com" in repo
		or "gitlab.com" in repo
	):
		return "Git"
	if repo.startswith("cvs+") or "pserver:" in repo or "@cvs." in repo:
		return "Cvs"
	if repo.startswith("hg+") or "hg@" in repo or "/hg." in repo:
		return "Hg"
	if repo.startswith("svn+") or "/svn." in repo:
		return "Svn"
	return None


def wrap_description(text: str) -> list[str]:
	out: list[str] = []
	for line in text.splitlines():
		if not line.strip():
			out.append(".")
			continue
		out.extend(textwrap.wrap(line, WRAP_COLUMNS, break_long_words=False, break_on_hyphens=False))
	return out


def installed_size(assets: Iterable[Asset]) -> int:
	"""KiB estimate with 1KB of filesystem overhead per file."""
	return sum(((a.source.file_size() or 0) + 2047) // 1024 for a in assets if not a.source.is_symlink)


def extended_description(spec: PackageSpec) -> str | None:
	if spec.extended_description is not None:
		return spec.extended_description
	if spec.extended_description_file is None:
		return None
	path = spec.path_in_package(spec.extended_description_file)
	try:
		return path.read_text(encoding="utf-8")
	except OSError as err:
		raise ConfigError(f"unable to read extended description: {err.strerror}", path=str(path)) from err


def generate_control(spec: PackageSpec, assets: Sequence[Asset]) -> bytes:
	lines = [
		f"Package: {spec.name}",
		f"Version: {spec.deb_version}",
		f"Architecture: {spec.architecture}",
	]
	if spec.multiarch is not Multiarch.NONE:
		lines.append(f"Multi-Arch: {spec.multiarch.value}")
	if spec.repository:
		if spec.repository.startswith("http"):
			lines.append(f"Vcs-Browser: {spec.repository}")
		kind = repository_type(spec.repository)
		if kind is not None:
			lines.append(f"Vcs-{kind}: {spec.repository}")
	homepage = spec.homepage or spec.documentation
	if homepage:
		lines.append(f"Homepage: {homepage}")
	if spec.section:
		lines.append(f"Section: {spec.section}")
	lines.append(f"Priority: {spec.priority}")
	lines.append(f"Maintainer: {spec.maintainer}")
	lines.append(f"Installed-Size: {installed_size(assets)}")

	relations = (
		("Depends", spec.resolved_depends),
		("Pre-Depends", spec.pre_depends),
		("Recommends", spec.recommends),
		("Suggests", spec.suggests),
		("Enhances", spec.enhances),
		("Conflicts", spec.conflicts),
		("Breaks", spec.breaks),
		("Replaces", spec.replaces),
		("Provides", spec.provides),
	)
	for name, value in relations:
		if value and value.strip():
			lines.append(f"{name}: {value.strip()}")

	desc = wrap_description(spec.description)
	ext = extended_description(spec)
	if ext is not None:
		desc.extend(wrap_description(ext))
	lines.append(f"Description: {desc[0]}" if desc else "Description:")
	lines.extend(f" {line}" for line in desc[1:])
	# a control paragraph ends with a blank line
	return ("\n".join(lines) + "\n\n").encode("utf-8")


def format_conffiles(files: Iterable[str]) -> str:
	return "".join(("" if f.startswith("/") else "/") + f + "\n" for f in files)


def apply_script_fragment(name: str, script: bytes | None, fragment: str | None) -> bytes | None:
	"""
	Insert a pre-built fragment at the `#DEBHELPER#` token of `script`.

	Without a script, the fragment becomes a whole `/bin/sh` script.
	"""
	if fragment is None:
		return script
	if script is None:
		return f"#!/bin/sh\nset -e\n{fragment}".encode("utf-8")
	text = script.decode("utf-8")
	count = text.count(DEBHELPER_TOKEN)
	if count > 1:
		raise ConfigError(f"maintainer script {name} contains {DEBHELPER_TOKEN} {count} times", hint="keep a single token")
	if count == 0:
		log.debug("%s has no %s token; fragment not inserted", name, DEBHELPER_TOKEN)
		return script
	return text.replace(DEBHELPER_TOKEN, fragment.rstrip("\n")).encode("utf-8")


class ControlArchiveBuilder:
	"""Builds the uncompressed control tarball on `dest`."""

	def __init__(self, dest: Sink, time: int, listener: Listener) -> None:
		self.tar = Tarball(dest, time)
		self.listener = listener

	def generate_archive(self, spec: PackageSpec, assets: Sequence[Asset]) -> None:
		self.tar.file("./control", generate_control(spec, assets), 0o644)
		if spec.conf_files:
			self.tar.file("./conffiles", format_conffiles(spec.conf_files).encode("utf-8"), 0o644)
		scripts_dir = None
		if spec.maintainer_scripts is not None:
			scripts_dir = spec.path_in_package(spec.maintainer_scripts)
		self.generate_scripts(scripts_dir, spec.script_fragments)
		if spec.triggers_file is not None:
			path = spec.path_in_package(spec.triggers_file)
			self.tar.file("./triggers", _read_control_file(path, "triggers file"), 0o644)

	def generate_scripts(self, scripts_dir: Path | None, fragments: Mapping[str, str]) -> None:
		for name in MAINTAINER_SCRIPTS:
			script = None
			if scripts_dir is not None and (scripts_dir / name).is_file():
				script = _read_control_file(scripts_dir / name, f"maintainer script {name}")
			contents = apply_script_fragment(name, script, fragments.get(name))
			if contents is None:
				continue
			# policy 10.9: templates are data, the rest are executables
			mode = 0o644 if name == "templates" else 0o755
			self.tar.file(f"./{name}", contents, mode)
			self.listener.info(f"maintainer script: {name}")

	def add_sha256sums(self, sums: bytes) -> None:
		self.tar.file("./sha256sums", sums, 0o644)

	def finish(self) -> Sink:
		return self.tar.finish()


def _read_control_file(path: Path, what: str) -> bytes:
	try:
		return path.read_bytes()
	except OSError as err:
		raise ArchiveError(f"unable to read {what}: {err.strerror}", path=str(path)) from err
