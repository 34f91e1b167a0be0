# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import gzip
import hashlib
import json
from dataclasses import replace
from pathlib import Path

import pytest
from debian.debfile import DebFile

from debpack.assets import Asset, PathSource
from debpack.build import build, build_archives
from debpack.compress import CompressOptions, Format
from debpack.config import PackageSpec, load_package_spec
from debpack.deb.ar import read_ar
from debpack.errors import ArchiveError, AssetFileNotFound


@pytest.fixture
def project(tmp_path: Path) -> Path:
	(tmp_path / "bin").mkdir(exist_ok=True)
	(tmp_path / "bin" / "hello").write_text("#!/bin/sh\necho hello\n", encoding="utf-8")
	(tmp_path / "hello.1").write_text(".TH HELLO 1\n", encoding="utf-8")
	(tmp_path / "hello.conf").write_text("greeting = hi\n", encoding="utf-8")
	(tmp_path / "LICENSE").write_text("MIT License\n", encoding="utf-8")
	(tmp_path / "CHANGELOG").write_text("hello (1.0.0-1) unstable; urgency=low\n", encoding="utf-8")
	manifest = {
		"name": "hello",
		"version": "1.0.0",
		"target": "x86_64-unknown-linux-gnu",
		"maintainer": "Jane Doe <jane@example.org>",
		"description": "Greets people",
		"extended_description": "A longer story about greeting.",
		"license": "MIT",
		"license_file": "LICENSE",
		"changelog": "CHANGELOG",
		"section": "utils",
		"depends": "libc6 (>= 2.34), adduser",
		"debug_symbols": "keep",
		"assets": [
			["bin/hello", "usr/bin/", "755"],
			["hello.1", "usr/share/man/man1/", "644"],
			["hello.conf", "etc/hello/", "644"],
		],
	}
	(tmp_path / "debpack.json").write_text(json.dumps(manifest), encoding="utf-8")
	return tmp_path


def _edit_manifest(project: Path, **changes) -> Path:
	path = project / "debpack.json"
	manifest = json.loads(path.read_text(encoding="utf-8"))
	for key, value in changes.items():
		if value is None:
			manifest.pop(key, None)
		else:
			manifest[key] = value
	path.write_text(json.dumps(manifest), encoding="utf-8")
	return path


def test_build_produces_a_valid_package(project: Path, listener) -> None:
	spec = load_package_spec(project / "debpack.json", listener)
	result = build(spec, listener, jobs=2)

	assert result.output == project.resolve() / "target" / "debian" / "hello_1.0.0-1_amd64.deb"
	assert result.depends == "adduser, libc6 (>= 2.34)"
	assert result.version == "1.0.0-1"
	assert not spec.temp_dir.exists()

	blob = result.output.read_bytes()
	assert result.sha256 == hashlib.sha256(blob).hexdigest()
	members = read_ar(blob)
	assert [m.name for m in members] == ["debian-binary", "control.tar.xz", "data.tar.xz"]
	assert members[0].data == b"2.0\n"
	assert all(m.mtime == 1700000000 for m in members)

	deb = DebFile(filename=str(result.output))
	control = deb.debcontrol()
	assert control["Package"] == "hello"
	assert control["Architecture"] == "amd64"
	assert control["Depends"] == "adduser, libc6 (>= 2.34)"
	assert control["Section"] == "utils"
	assert control["Description"].startswith("Greets people\n A longer story")

	names = deb.data.tgz().getnames()
	for name in (
		"./usr/bin/hello",
		"./usr/share/man/man1/hello.1.gz",
		"./etc/hello/hello.conf",
		"./usr/share/doc/hello/copyright",
		"./usr/share/doc/hello/changelog.Debian.gz",
	):
		assert name in names
	man = deb.data.tgz().extractfile("./usr/share/man/man1/hello.1.gz").read()
	assert gzip.decompress(man) == b".TH HELLO 1\n"

	ctl = deb.control.tgz()
	conffiles = ctl.extractfile("./conffiles").read()
	sums = ctl.extractfile("./sha256sums").read().decode("utf-8")
	assert conffiles == b"/etc/hello/hello.conf\n"
	hello_sum = hashlib.sha256(b"#!/bin/sh\necho hello\n").hexdigest()
	assert f"{hello_sum}  usr/bin/hello\n" in sums

	assert "Compressed" in [op for op, _ in listener.progresses]


def test_builds_are_reproducible(project: Path, listener) -> None:
	spec = load_package_spec(project / "debpack.json", listener)
	first = build(spec, listener).sha256
	second = build(spec, listener).sha256
	assert first == second


def test_gzip_inner_archives(project: Path, listener) -> None:
	spec = load_package_spec(project / "debpack.json", listener)
	spec = replace(spec, compress=CompressOptions(format=Format.GZIP, fast=True))
	result = build(spec, listener)
	names = [m.name for m in read_ar(result.output.read_bytes())]
	assert names == ["debian-binary", "control.tar.gz", "data.tar.gz"]
	assert "./usr/bin/hello" in DebFile(filename=str(result.output)).data.tgz().getnames()


def test_missing_asset_fails_without_output(project: Path, listener) -> None:
	(project / "hello.conf").unlink()
	spec = load_package_spec(project / "debpack.json", listener)
	with pytest.raises(AssetFileNotFound):
		build(spec, listener)
	assert not spec.output_path.exists()


def _data_names(path: Path) -> list[str]:
	return DebFile(filename=str(path)).data.tgz().getnames()


def test_declared_copyright_wins_over_generated_one(project: Path, listener) -> None:
	(project / "COPYING").write_text("custom copyright\n", encoding="utf-8")
	manifest = json.loads((project / "debpack.json").read_text(encoding="utf-8"))
	assets = [*manifest["assets"], ["COPYING", "usr/share/doc/hello/copyright", "644"]]
	spec = load_package_spec(_edit_manifest(project, assets=assets), listener)
	result = build(spec, listener)

	names = _data_names(result.output)
	assert names.count("./usr/share/doc/hello/copyright") == 1
	data = DebFile(filename=str(result.output)).data.tgz()
	assert data.extractfile("./usr/share/doc/hello/copyright").read() == b"custom copyright\n"
	assert any("Duplicate asset" in w for w in listener.warnings)
	sums = DebFile(filename=str(result.output)).control.tgz().extractfile("./sha256sums").read().decode("utf-8")
	assert sums.count("usr/share/doc/hello/copyright\n") == 1


def test_compressed_page_collides_with_declared_gz(project: Path, listener) -> None:
	(project / "hello.1.gz").write_bytes(gzip.compress(b"stale page\n"))
	manifest = json.loads((project / "debpack.json").read_text(encoding="utf-8"))
	assets = [*manifest["assets"], ["hello.1.gz", "usr/share/man/man1/", "644"]]
	spec = load_package_spec(_edit_manifest(project, assets=assets), listener)
	result = build(spec, listener)

	assert _data_names(result.output).count("./usr/share/man/man1/hello.1.gz") == 1
	page = DebFile(filename=str(result.output)).data.tgz().extractfile("./usr/share/man/man1/hello.1.gz").read()
	# the page declared first is the one kept
	assert gzip.decompress(page) == b".TH HELLO 1\n"
	assert any("Duplicate asset" in w for w in listener.warnings)


def test_multiarch_remap_collision_keeps_one_library(project: Path, listener) -> None:
	(project / "libfoo.so").write_bytes(b"generic")
	(project / "libfoo-arch.so").write_bytes(b"specific")
	manifest = json.loads((project / "debpack.json").read_text(encoding="utf-8"))
	assets = [
		*manifest["assets"],
		["libfoo.so", "usr/lib/libfoo.so", "644"],
		["libfoo-arch.so", "usr/lib/x86_64-linux-gnu/libfoo.so", "644"],
	]
	spec = load_package_spec(_edit_manifest(project, assets=assets, multiarch="same"), listener)
	result = build(spec, listener)

	names = _data_names(result.output)
	assert names.count("./usr/lib/x86_64-linux-gnu/libfoo.so") == 1
	assert "./usr/lib/libfoo.so" not in names
	assert any("Duplicate asset" in w for w in listener.warnings)


def test_failed_archive_stops_system_compressors(tmp_path: Path, cat_as_xz, listener) -> None:
	spec = PackageSpec(
		name="hello",
		deb_version="1.0.0-1",
		target="x86_64-unknown-linux-gnu",
		architecture="amd64",
		maintainer="Jane Doe <jane@example.org>",
		manifest_dir=tmp_path,
		default_timestamp=0,
		output_path=tmp_path / "hello.deb",
		description="Greets people",
		compress=CompressOptions(use_system=True),
	)
	gone = Asset.new(PathSource(tmp_path / "gone"), "usr/share/hello/gone", 0o644)
	spec = spec.with_assets(spec.assets.with_resolved([gone]))

	with pytest.raises(ArchiveError):
		build_archives(spec, listener)
	assert len(cat_as_xz) == 2
	assert all(proc.poll() is not None for proc in cat_as_xz)


def test_dbgsym_package_holds_the_debug_files(project: Path, tools, listener) -> None:
	(project / "build").mkdir()
	(project / "build" / "hello").write_bytes(b"\x7fELF-original")
	manifest = json.loads((project / "debpack.json").read_text(encoding="utf-8"))
	assets = [
		{"source": "build/hello", "dest": "usr/bin/", "mode": "755", "built": "same"},
		*manifest["assets"][1:],
	]
	path = _edit_manifest(
		project,
		assets=assets,
		debug_symbols=None,
		dbgsym=True,
		tools={"strip": str(tools[0]), "objcopy": str(tools[1])},
	)
	spec = load_package_spec(path, listener)
	result = build(spec, listener)

	assert result.dbgsym is not None
	assert result.dbgsym.output == result.output.parent / "hello-dbgsym_1.0.0-1_amd64.ddeb"
	assert result.to_dict()["dbgsym"]["output"] == str(result.dbgsym.output)

	main_names = _data_names(result.output)
	assert "./usr/bin/hello" in main_names
	assert not any(n.startswith("./usr/lib/debug/") for n in main_names)
	main_bin = DebFile(filename=str(result.output)).data.tgz().extractfile("./usr/bin/hello").read()
	assert main_bin == b"stripped:\x7fELF-original|link=hello.debug"

	ddeb = DebFile(filename=str(result.dbgsym.output))
	assert "./usr/lib/debug/usr/bin/hello.debug" in ddeb.data.tgz().getnames()
	assert "./usr/bin/hello" not in ddeb.data.tgz().getnames()
	control = ddeb.debcontrol()
	assert control["Package"] == "hello-dbgsym"
	assert control["Depends"] == "hello (= 1.0.0-1)"
	assert control["Section"] == "debug"
	assert not spec.temp_dir.exists()


def test_dbgsym_without_debug_files_is_skipped(project: Path, listener) -> None:
	spec = load_package_spec(_edit_manifest(project, debug_symbols=None, dbgsym=True), listener)
	result = build(spec, listener)

	assert result.dbgsym is None
	assert "No debug symbols found. Skipping dbgsym.ddeb" in listener.warnings
	assert "dbgsym" not in result.to_dict()
	assert not list(result.output.parent.glob("*.ddeb"))
