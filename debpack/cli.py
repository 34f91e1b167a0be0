# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from debpack.arch import debian_architecture, debian_tuple, host_triple
from debpack.build import build
from debpack.compress import Format
from debpack.config import BuildOverrides, Multiarch, load_package_spec
from debpack.errors import DebpackError
from debpack.listener import Listener, LoggingListener, NoOpListener, PrefixedListener


def _build_parser() -> argparse.ArgumentParser:
	p = argparse.ArgumentParser(prog="debpack", description="Assemble Debian binary packages (.deb)")
	p.add_argument("-v", "--verbose", action="store_true", help="Log debug details (tool command lines, paths)")
	p.add_argument("-q", "--quiet", action="store_true", help="Only report errors")
	sub = p.add_subparsers(dest="cmd", required=True)

	b = sub.add_parser("build", help="Build a .deb from a debpack.json manifest")
	b.add_argument(
		"manifest",
		nargs="?",
		type=Path,
		default=Path("debpack.json"),
		help="Path to the package manifest (default: ./debpack.json)",
	)
	b.add_argument("-o", "--output", type=Path, default=None, help="Output .deb path or directory")
	b.add_argument("--target", type=str, default=None, help="Target triple (default: the host)")
	b.add_argument("--deb-version", type=str, default=None, help="Use this exact Debian version string")
	b.add_argument("--deb-revision", type=str, default=None, help="Debian revision appended to the version")
	b.add_argument("--no-strip", action="store_true", help="Keep debug symbols in binaries")
	b.add_argument(
		"--separate-debug-symbols",
		action="store_true",
		help="Move debug symbols into .debug files under the debug directory",
	)
	b.add_argument(
		"--compress-debug-symbols",
		action="store_true",
		help="Compress separated debug symbols (implies --separate-debug-symbols)",
	)
	b.add_argument(
		"--dbgsym",
		action="store_true",
		help="Also write the debug symbols as a <name>-dbgsym .ddeb package (implies --separate-debug-symbols)",
	)
	b.add_argument(
		"--multiarch",
		choices=[m.value for m in Multiarch],
		default=None,
		help="Multi-Arch field value (overrides the manifest)",
	)
	b.add_argument("--fast", action="store_true", help="Faster compression, larger package")
	b.add_argument(
		"-Z",
		"--compress-type",
		choices=["xz", "gz", "gzip"],
		default=None,
		help="Compression for the inner archives (default: xz)",
	)
	b.add_argument("--compress-system", action="store_true", help="Compress with the system xz/gzip binary")
	b.add_argument("--rsyncable", action="store_true", help="Place flush points for rsync-friendly output")
	b.add_argument("-j", "--jobs", type=int, default=None, help="Worker threads for per-file tasks")
	b.add_argument("--json", action="store_true", help="Emit machine-readable JSON report")

	a = sub.add_parser("arch", help="Print the Debian architecture for a target triple")
	a.add_argument("triple", nargs="?", default=None, help="Target triple (default: the host)")
	a.add_argument("--multiarch", action="store_true", help="Print the multiarch tuple instead")
	return p


def _configure_logging(verbose: bool, quiet: bool) -> Listener:
	level = logging.ERROR if quiet else (logging.DEBUG if verbose else logging.INFO)
	logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr)
	if quiet:
		return NoOpListener()
	return LoggingListener()


def _overrides(args: argparse.Namespace) -> BuildOverrides:
	return BuildOverrides(
		deb_version=args.deb_version,
		deb_revision=args.deb_revision,
		target=args.target,
		default_target=host_triple(),
		output=args.output,
		strip=False if args.no_strip else None,
		separate_debug_symbols=True if args.separate_debug_symbols else None,
		compress_debug_symbols=True if args.compress_debug_symbols else None,
		dbgsym=True if args.dbgsym else None,
		multiarch=Multiarch(args.multiarch) if args.multiarch else None,
		fast=bool(args.fast),
		compress_format=Format.parse(args.compress_type) if args.compress_type else None,
		compress_system=bool(args.compress_system),
		rsyncable=bool(args.rsyncable),
	)


def main(argv: list[str] | None = None) -> int:
	p = _build_parser()
	args = p.parse_args(argv)
	listener = _configure_logging(bool(args.verbose), bool(args.quiet))

	if args.cmd == "arch":
		triple = args.triple or host_triple()
		print(debian_tuple(triple) if args.multiarch else debian_architecture(triple))
		return 0

	if args.cmd == "build":
		try:
			spec = load_package_spec(args.manifest, listener, _overrides(args))
			result = build(spec, PrefixedListener(f"{spec.name}: ", listener), jobs=args.jobs)
		except DebpackError as err:
			if args.json:
				print(json.dumps({"ok": False, "error": err.to_dict()}, sort_keys=True, separators=(",", ":")))
				return 2
			p.error(str(err))
			return 2
		if args.json:
			print(json.dumps({"ok": True, **result.to_dict()}, sort_keys=True, separators=(",", ":")))
		else:
			print(result.output)
			if result.dbgsym is not None:
				print(result.dbgsym.output)
		return 0

	raise AssertionError("unreachable")
