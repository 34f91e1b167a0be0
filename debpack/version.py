# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

from debpack.errors import ConfigError

_ALLOWED_PUNCT = frozenset(".+-~")


def _version_problem(version: str) -> str | None:
	if not version.strip():
		return "empty string"
	rest = version
	if ":" in version:
		epoch, rest = version.split(":", 1)
		if not epoch or not all("0" <= c <= "9" for c in epoch):
			return "version has unexpected ':' char"
	if not rest or not ("0" <= rest[0] <= "9"):
		return "version must start with a digit"
	for ch in rest:
		if not ((ch.isascii() and ch.isalnum()) or ch in _ALLOWED_PUNCT):
			return "contains characters other than a-z 0-9 . + - ~"
	return None


def check_deb_version(version: str) -> str:
	"""
	Validate a Debian version string and return it unchanged.

	Rules:
	- an optional `epoch:` prefix must be all digits
	- the remainder must start with a digit
	- remaining characters are limited to ASCII alphanumerics and `.+-~`
	"""
	problem = _version_problem(version)
	if problem is not None:
		raise ConfigError(f"Invalid version {version!r}: {problem}", hint="set --deb-version to override")
	return version


def is_valid_deb_version(version: str) -> bool:
	return _version_problem(version) is None


def deb_version(version: str, revision: str | None = "1") -> str:
	"""
	Turn an upstream (semver-style) version into `version[-revision]`.

	`1.0.0-beta.1` sorts after `1.0.0` in dpkg, so a pre-release suffix mixing
	digits and non-digits is joined with `~` instead. Purely numeric suffixes
	(`1.0-2`) are kept as they are. A revision of "" or "0" is not appended.
	"""
	out = version
	if "-" in version:
		main, pre = version.split("-", 1)
		if any(not c.isdigit() for c in pre) and any(c.isdigit() for c in pre):
			out = f"{main}~{pre}"
	if revision and revision != "0":
		out = f"{out}-{revision}"
	return out
