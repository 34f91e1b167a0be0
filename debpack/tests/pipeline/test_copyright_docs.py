# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import gzip
from dataclasses import replace
from pathlib import Path, PurePosixPath

import pytest

from debpack.config import PackageSpec
from debpack.docs import COPYRIGHT_FORMAT, generate_changelog, generate_copyright, generated_assets
from debpack.errors import ConfigError


def _spec(tmp_path: Path, **kw) -> PackageSpec:
	spec = PackageSpec(
		name="hello",
		deb_version="1.0.0-1",
		target="x86_64-unknown-linux-gnu",
		architecture="amd64",
		maintainer="Jane Doe <jane@example.org>",
		manifest_dir=tmp_path,
		default_timestamp=0,
		output_path=tmp_path / "hello.deb",
		copyright="2024 Jane Doe",
	)
	return replace(spec, **kw)


def test_copyright_header_only(tmp_path: Path) -> None:
	spec = _spec(tmp_path, license="MIT", repository="https://github.com/example/hello")
	assert generate_copyright(spec).decode("utf-8") == (
		f"Format: {COPYRIGHT_FORMAT}\n"
		"Upstream-Name: hello\n"
		"Source: https://github.com/example/hello\n"
		"Copyright: 2024 Jane Doe\n"
		"License: MIT\n"
	)


def test_copyright_falls_back_to_homepage_for_source(tmp_path: Path) -> None:
	text = generate_copyright(_spec(tmp_path, homepage="https://example.org")).decode("utf-8")
	assert "Source: https://example.org\n" in text
	assert "License:" not in text


def test_license_file_follows_header(tmp_path: Path) -> None:
	(tmp_path / "LICENSE").write_text("skip me\nMIT License\n \nPermission is granted.\n", encoding="utf-8")
	spec = _spec(tmp_path, license="MIT", license_file=Path("LICENSE"), license_file_skip_lines=1)
	text = generate_copyright(spec).decode("utf-8")
	assert text.endswith("License: MIT\n\nMIT License\n .\nPermission is granted.\n")
	assert "skip me" not in text


def test_license_file_with_own_metadata_is_copied(tmp_path: Path) -> None:
	body = "Format: custom\nUpstream-Name: hello\n\nFiles: *\nLicense: MIT\n"
	(tmp_path / "copyright").write_text(body, encoding="utf-8")
	spec = _spec(tmp_path, license="MIT", license_file=Path("copyright"))
	assert generate_copyright(spec).decode("utf-8") == body


def test_missing_license_file(tmp_path: Path) -> None:
	with pytest.raises(ConfigError) as exc:
		generate_copyright(_spec(tmp_path, license_file=Path("NOPE")))
	assert exc.value.path == str(tmp_path / "NOPE")


def test_changelog_is_gzipped_unless_already(tmp_path: Path) -> None:
	(tmp_path / "CHANGELOG").write_bytes(b"hello (1.0.0-1) unstable; urgency=low\n")
	(tmp_path / "changelog.gz").write_bytes(b"\x1f\x8bpre-compressed")

	assert generate_changelog(_spec(tmp_path)) is None
	plain = generate_changelog(_spec(tmp_path, changelog=Path("CHANGELOG")))
	assert gzip.decompress(plain) == b"hello (1.0.0-1) unstable; urgency=low\n"
	assert plain == generate_changelog(_spec(tmp_path, changelog=Path("CHANGELOG")))
	assert generate_changelog(_spec(tmp_path, changelog=Path("changelog.gz"))) == b"\x1f\x8bpre-compressed"


def test_generated_assets(tmp_path: Path, listener) -> None:
	(tmp_path / "CHANGELOG").write_text("changes\n", encoding="utf-8")
	out = generated_assets(_spec(tmp_path, changelog=Path("CHANGELOG")), listener)
	assert [a.c.target_path for a in out] == [
		PurePosixPath("usr/share/doc/hello/copyright"),
		PurePosixPath("usr/share/doc/hello/changelog.Debian.gz"),
	]
	assert all(a.c.chmod == 0o644 and a.processed_from.action == "generated" for a in out)
	assert [op for op, _ in listener.progresses] == ["Generated", "Generated"]
