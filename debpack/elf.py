# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Minimal ELF reader for the GNU build-id note.

Only what is needed to locate `.note.gnu.build-id` is parsed: the file header,
the section header table and the section-name string table. Both 32/64-bit
classes and both byte orders are supported.
"""

from __future__ import annotations

import struct
from pathlib import Path, PurePosixPath
from typing import BinaryIO

ELF_MAGIC = b"\x7fELF"
NT_GNU_BUILD_ID = 3
BUILD_ID_SECTION = ".note.gnu.build-id"


class ElfParseError(ValueError):
	pass


def _header_struct(elf_class: int, endian: str) -> struct.Struct:
	# e_type .. e_shstrndx, following the 16-byte e_ident
	if elf_class == 1:
		return struct.Struct(endian + "HHIIIIIHHHHHH")
	return struct.Struct(endian + "HHIQQQIHHHHHH")


def _section_struct(elf_class: int, endian: str) -> struct.Struct:
	if elf_class == 1:
		return struct.Struct(endian + "IIIIIIIIII")
	return struct.Struct(endian + "IIQQQQIIQQ")


def _read_at(fh: BinaryIO, offset: int, size: int) -> bytes:
	fh.seek(offset)
	data = fh.read(size)
	if len(data) != size:
		raise ElfParseError(f"truncated ELF file (wanted {size} bytes at {offset})")
	return data


def read_build_id(path: Path) -> bytes | None:
	"""
	Return the raw build-id bytes, or None when the file has no build-id note.

	Raises ElfParseError for files that are not well-formed ELF.
	"""
	with open(path, "rb") as fh:
		ident = fh.read(16)
		if len(ident) != 16 or ident[:4] != ELF_MAGIC:
			raise ElfParseError("not an ELF file")
		elf_class = ident[4]
		if elf_class not in (1, 2):
			raise ElfParseError(f"unknown ELF class {elf_class}")
		if ident[5] == 1:
			endian = "<"
		elif ident[5] == 2:
			endian = ">"
		else:
			raise ElfParseError(f"unknown ELF data encoding {ident[5]}")

		hdr = _header_struct(elf_class, endian)
		fields = hdr.unpack(_read_at(fh, 16, hdr.size))
		e_shoff = fields[5]
		e_shentsize, e_shnum, e_shstrndx = fields[10], fields[11], fields[12]
		if e_shoff == 0 or e_shnum == 0:
			return None

		sec = _section_struct(elf_class, endian)
		if e_shentsize < sec.size:
			raise ElfParseError(f"section header entry too small ({e_shentsize})")
		sections = []
		for i in range(e_shnum):
			raw = _read_at(fh, e_shoff + i * e_shentsize, sec.size)
			sections.append(sec.unpack(raw))
		if e_shstrndx >= len(sections):
			raise ElfParseError("section name table index out of range")
		strtab_hdr = sections[e_shstrndx]
		strtab = _read_at(fh, strtab_hdr[4], strtab_hdr[5])

		for s in sections:
			name_off = s[0]
			end = strtab.find(b"\0", name_off)
			name = strtab[name_off:end if end >= 0 else None].decode("ascii", "replace")
			if name != BUILD_ID_SECTION:
				continue
			return _parse_build_id_notes(_read_at(fh, s[4], s[5]), endian)
	return None


def _parse_build_id_notes(data: bytes, endian: str) -> bytes | None:
	note_hdr = struct.Struct(endian + "III")
	pos = 0
	while pos + note_hdr.size <= len(data):
		namesz, descsz, ntype = note_hdr.unpack_from(data, pos)
		pos += note_hdr.size
		name = data[pos : pos + namesz]
		pos += (namesz + 3) & ~3
		desc = data[pos : pos + descsz]
		pos += (descsz + 3) & ~3
		if ntype == NT_GNU_BUILD_ID and name.rstrip(b"\0") == b"GNU" and desc:
			return desc
	return None


def build_id_debug_path(build_id: bytes, lib_dir_base: str) -> PurePosixPath:
	"""`<lib_dir_base>/debug/.build-id/<first byte>/<rest>.debug`"""
	hexid = build_id.hex()
	return PurePosixPath(lib_dir_base) / "debug" / ".build-id" / hexid[:2] / f"{hexid[2:]}.debug"
