# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Target triple to Debian naming.

Debian uses two different vocabularies: the architecture name that goes into
the `Architecture:` field (`amd64`, `arm64`, `armhf`) and the multiarch tuple
used for library directories and cross toolchain prefixes
(`x86_64-linux-gnu`, `aarch64-linux-gnu`, `arm-linux-gnueabihf`).
"""

from __future__ import annotations

import platform


def _split_triple(triple: str) -> tuple[str, str]:
	parts = triple.split("-")
	arch = parts[0]
	abi = parts[-1] if len(parts) > 1 else ""
	return arch, abi


def debian_architecture(triple: str) -> str:
	arch, abi = _split_triple(triple)
	if arch in ("aarch64", "aarch64_be"):
		return "arm64"
	if arch == "mips64" and abi == "gnuabi32":
		return "mipsn32"
	if arch == "mips64el" and abi == "gnuabi32":
		return "mipsn32el"
	if arch == "mipsisa32r6":
		return "mipsr6"
	if arch == "mipsisa32r6el":
		return "mipsr6el"
	if arch == "mipsisa64r6":
		if abi == "gnuabi64":
			return "mips64r6"
		if abi == "gnuabi32":
			return "mipsn32r6"
	if arch == "mipsisa64r6el":
		if abi == "gnuabi64":
			return "mips64r6el"
		if abi == "gnuabi32":
			return "mipsn32r6el"
	if arch == "powerpc" and abi in ("gnuspe", "muslspe"):
		return "powerpcspe"
	if arch == "powerpc64":
		return "ppc64"
	if arch == "powerpc64le":
		return "ppc64el"
	if arch == "riscv64gc":
		return "riscv64"
	if arch in ("i586", "i686", "x86"):
		return "i386"
	if arch == "x86_64":
		return "x32" if abi == "gnux32" else "amd64"
	if arch == "loongarch64":
		return "loong64"
	if arch.startswith("arm") and abi.endswith("hf"):
		return "armhf"
	if arch.startswith("arm") or arch.startswith("thumb"):
		return "armel"
	return arch


def debian_tuple(triple: str) -> str:
	"""Multiarch tuple, e.g. `armv7-unknown-linux-gnueabihf` -> `arm-linux-gnueabihf`."""
	arch, abi = _split_triple(triple)
	abi = abi or "gnu"
	if arch in ("i586", "i686"):
		darch, dabi = "i386", "gnu"
	elif arch in ("x86_64", "aarch64", "mipsel", "loongarch64"):
		darch, dabi = arch, "gnu"
	elif arch.startswith("arm") or arch.startswith("thumb"):
		darch, dabi = "arm", ("gnueabihf" if abi.endswith("hf") else "gnueabi")
	elif arch in ("mips64", "mips64el") and abi in ("musl", "muslabi64"):
		darch, dabi = arch, "gnuabi64"
	elif arch.startswith("riscv64"):
		darch, dabi = "riscv64", "gnu"
	elif abi == "muslspe":
		darch, dabi = arch, "gnuspe"
	elif abi in ("musl", "uclibc"):
		darch, dabi = arch, "gnu"
	else:
		darch, dabi = arch, abi
	return f"{darch}-linux-{dabi}"


def host_triple() -> str:
	"""
	Best-effort triple for the machine we run on.

	Used only when neither the manifest nor the command line names a target.
	"""
	machine = platform.machine().lower() or "x86_64"
	aliases = {"amd64": "x86_64", "arm64": "aarch64", "i386": "i686", "ppc64le": "powerpc64le"}
	machine = aliases.get(machine, machine)
	if machine.startswith("arm"):
		return f"{machine}-unknown-linux-gnueabihf"
	return f"{machine}-unknown-linux-gnu"


def library_install_dir(triple: str, multiarch: bool) -> str:
	if multiarch:
		return f"usr/lib/{debian_tuple(triple)}"
	return "usr/lib"
