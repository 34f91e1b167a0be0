# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import pytest

from debpack.arch import debian_architecture, debian_tuple, host_triple, library_install_dir


@pytest.mark.parametrize(
	"triple,arch",
	[
		("x86_64-unknown-linux-gnu", "amd64"),
		("x86_64-unknown-linux-musl", "amd64"),
		("x86_64-unknown-linux-gnux32", "x32"),
		("aarch64-unknown-linux-gnu", "arm64"),
		("i686-unknown-linux-gnu", "i386"),
		("armv7-unknown-linux-gnueabihf", "armhf"),
		("arm-unknown-linux-gnueabi", "armel"),
		("thumbv7neon-unknown-linux-gnueabi", "armel"),
		("powerpc64le-unknown-linux-gnu", "ppc64el"),
		("powerpc-unknown-linux-gnuspe", "powerpcspe"),
		("riscv64gc-unknown-linux-gnu", "riscv64"),
		("mips64el-unknown-linux-gnuabi64", "mips64el"),
		("mipsisa64r6el-unknown-linux-gnuabi64", "mips64r6el"),
		("loongarch64-unknown-linux-gnu", "loong64"),
		("s390x-unknown-linux-gnu", "s390x"),
	],
)
def test_debian_architecture(triple: str, arch: str) -> None:
	assert debian_architecture(triple) == arch


@pytest.mark.parametrize(
	"triple,tup",
	[
		("x86_64-unknown-linux-gnu", "x86_64-linux-gnu"),
		("i686-unknown-linux-gnu", "i386-linux-gnu"),
		("armv7-unknown-linux-gnueabihf", "arm-linux-gnueabihf"),
		("armv5te-unknown-linux-gnueabi", "arm-linux-gnueabi"),
		("aarch64-unknown-linux-musl", "aarch64-linux-gnu"),
		("riscv64gc-unknown-linux-gnu", "riscv64-linux-gnu"),
		("mips64el-unknown-linux-muslabi64", "mips64el-linux-gnuabi64"),
	],
)
def test_debian_tuple(triple: str, tup: str) -> None:
	assert debian_tuple(triple) == tup


def test_library_install_dir() -> None:
	assert library_install_dir("aarch64-unknown-linux-gnu", multiarch=False) == "usr/lib"
	assert library_install_dir("aarch64-unknown-linux-gnu", multiarch=True) == "usr/lib/aarch64-linux-gnu"


def test_host_triple_maps_machine_aliases(monkeypatch: pytest.MonkeyPatch) -> None:
	monkeypatch.setattr("platform.machine", lambda: "AMD64")
	assert host_triple() == "x86_64-unknown-linux-gnu"
	monkeypatch.setattr("platform.machine", lambda: "armv7l")
	assert host_triple() == "armv7l-unknown-linux-gnueabihf"
