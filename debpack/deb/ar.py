# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Outer `.deb` container (common `ar` format).

Layout:
  "!<arch>\\n"
  then per member a 60-byte header:
    name[16] mtime[12] uid[6] gid[6] mode[8] size[10] "`\\n"
  the member bytes, and a single "\\n" pad byte when the size is odd.

A package holds exactly three members, in this order: `debian-binary`
(b"2.0\\n"), `control.tar.<ext>`, `data.tar.<ext>`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from debpack.compress import Compressed
from debpack.errors import ArchiveError

AR_MAGIC = b"!<arch>\n"
HEADER_SIZE = 60
HEADER_END = b"`\n"
DEBIAN_BINARY = b"2.0\n"
# dpkg writes 100644 for every member
MEMBER_MODE = 0o100644


def ar_header(name: str, size: int, mtime: int) -> bytes:
	raw_name = name.encode("ascii")
	if len(raw_name) > 16 or "/" in name:
		raise ArchiveError(f"invalid ar member name {name!r}")
	hdr = (
		raw_name.ljust(16, b" ")
		+ str(int(mtime)).encode("ascii").ljust(12, b" ")
		+ b"0".ljust(6, b" ")
		+ b"0".ljust(6, b" ")
		+ format(MEMBER_MODE, "o").encode("ascii").ljust(8, b" ")
		+ str(size).encode("ascii").ljust(10, b" ")
		+ HEADER_END
	)
	assert len(hdr) == HEADER_SIZE
	return hdr


class DebArchive:
	"""
	Writes the container to `out_path` via a temp file that is renamed on finish.

	The member order is enforced: control, then data, then finish.
	"""

	def __init__(self, out_path: Path, mtime: int) -> None:
		self.out_path = out_path
		self.mtime = int(mtime)
		self._tmp = out_path.with_name(out_path.name + ".tmp")
		out_path.parent.mkdir(parents=True, exist_ok=True)
		self._fh = open(self._tmp, "wb")
		self._state = "control"
		self._fh.write(AR_MAGIC)
		self._add("debian-binary", DEBIAN_BINARY)

	def _add(self, name: str, data: bytes) -> None:
		self._fh.write(ar_header(name, len(data), self.mtime))
		self._fh.write(data)
		if len(data) % 2:
			self._fh.write(b"\n")

	def add_control(self, control: Compressed) -> None:
		if self._state != "control":
			raise ArchiveError("control archive must be the second member", path=str(self.out_path))
		self._add(f"control.tar.{control.extension}", control.data)
		self._state = "data"

	def add_data(self, data: Compressed) -> None:
		if self._state != "data":
			raise ArchiveError("data archive must follow the control archive", path=str(self.out_path))
		self._add(f"data.tar.{data.extension}", data.data)
		self._state = "done"

	def finish(self) -> Path:
		if self._state != "done":
			self.abort()
			raise ArchiveError("package is missing its control or data archive", path=str(self.out_path))
		self._fh.close()
		os.replace(self._tmp, self.out_path)
		return self.out_path

	def abort(self) -> None:
		self._fh.close()
		self._tmp.unlink(missing_ok=True)


@dataclass(frozen=True)
class ArMember:
	name: str
	mtime: int
	uid: int
	gid: int
	mode: int
	data: bytes


def read_ar(blob: bytes) -> list[ArMember]:
	"""Parse an `ar` archive; used to inspect and verify built packages."""
	if not blob.startswith(AR_MAGIC):
		raise ArchiveError("not an ar archive (bad magic)")
	pos = len(AR_MAGIC)
	out: list[ArMember] = []
	while pos < len(blob):
		hdr = blob[pos : pos + HEADER_SIZE]
		if len(hdr) != HEADER_SIZE or hdr[58:60] != HEADER_END:
			raise ArchiveError(f"truncated or corrupt ar header at offset {pos}")
		try:
			name = hdr[0:16].decode("ascii").rstrip(" ")
			mtime = int(hdr[16:28].decode("ascii").strip() or "0")
			uid = int(hdr[28:34].decode("ascii").strip() or "0")
			gid = int(hdr[34:40].decode("ascii").strip() or "0")
			mode = int(hdr[40:48].decode("ascii").strip() or "0", 8)
			size = int(hdr[48:58].decode("ascii").strip())
		except (UnicodeDecodeError, ValueError) as err:
			raise ArchiveError(f"malformed ar header at offset {pos}: {err}") from err
		pos += HEADER_SIZE
		data = blob[pos : pos + size]
		if len(data) != size:
			raise ArchiveError(f"truncated ar member {name!r}")
		pos += size + (size % 2)
		# GNU ar terminates names with "/"
		out.append(ArMember(name.rstrip("/"), mtime, uid, gid, mode, data))
	return out
