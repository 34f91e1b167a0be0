# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Deterministic tarball writer for the control and data archives.

Headers are produced with `tarfile.TarInfo.tobuf` in GNU format and streamed
straight into the (compressing) sink, so the writer never needs `tell()` and
can place explicit flush boundaries for rsync-friendly output.

Rules:
- every member name starts with `./`; directory names end with `/`
- mtime is the single package timestamp; uid/gid are 0 with empty names
- parent directories are synthesized once each, mode 0755, before any member
- symlinks are mode 0777 with size 0 and carry only a link name
- names or link names that do not fit the 100-byte header field are errors
"""

from __future__ import annotations

import tarfile
from pathlib import PurePosixPath
from typing import Protocol

from debpack.errors import ArchiveError

BLOCK = tarfile.BLOCKSIZE
NAME_FIELD = tarfile.LENGTH_NAME
LINK_FIELD = tarfile.LENGTH_LINK


class Sink(Protocol):
	def write(self, data: bytes) -> int: ...

	def flush(self) -> None: ...


def _member_name(path: str | PurePosixPath) -> str:
	s = str(path)
	if s.startswith("./"):
		return s
	return "./" + s.lstrip("/")


class Tarball:
	def __init__(self, dest: Sink, time: int) -> None:
		self.dest = dest
		self.time = int(time)
		self.added_directories: set[str] = set()
		self._finished = False

	def _info(self, name: str, size: int, mode: int, kind: bytes) -> tarfile.TarInfo:
		if len(name.encode("utf-8")) > NAME_FIELD:
			raise ArchiveError(
				f"path is too long for the tar header ({len(name.encode('utf-8'))} > {NAME_FIELD} bytes)",
				path=name,
			)
		info = tarfile.TarInfo(name)
		info.size = size
		info.mode = mode
		info.mtime = self.time
		info.type = kind
		info.uid = 0
		info.gid = 0
		info.uname = ""
		info.gname = ""
		return info

	def _write_header(self, info: tarfile.TarInfo) -> None:
		self.dest.write(info.tobuf(format=tarfile.GNU_FORMAT, encoding="utf-8", errors="strict"))

	def _write_payload(self, data: bytes) -> None:
		self.dest.write(data)
		rem = len(data) % BLOCK
		if rem:
			self.dest.write(b"\0" * (BLOCK - rem))

	def directory(self, path: str) -> None:
		name = _member_name(path)
		if not name.endswith("/"):
			name += "/"
		self._write_header(self._info(name, 0, 0o755, tarfile.DIRTYPE))

	def add_parent_directories(self, path: str | PurePosixPath) -> None:
		parts = PurePosixPath(str(path).lstrip("/")).parts[:-1]
		current = ""
		for part in parts:
			if part == ".":
				continue
			current = f"{current}{part}/"
			if current not in self.added_directories:
				self.added_directories.add(current)
				self.directory(current)

	def file(self, path: str | PurePosixPath, data: bytes, chmod: int) -> None:
		self.add_parent_directories(path)
		self._write_header(self._info(_member_name(path), len(data), chmod, tarfile.REGTYPE))
		self._write_payload(data)

	def symlink(self, path: str | PurePosixPath, link_name: str) -> None:
		self.add_parent_directories(path)
		if len(link_name.encode("utf-8")) > LINK_FIELD:
			raise ArchiveError(f"symlink target is too long for the tar header: {link_name}", path=str(path))
		info = self._info(_member_name(path), 0, 0o777, tarfile.SYMTYPE)
		info.linkname = link_name
		self._write_header(info)

	def flush(self) -> None:
		self.dest.flush()

	def finish(self) -> Sink:
		"""Write the end-of-archive marker and hand back the sink."""
		if not self._finished:
			self.dest.write(b"\0" * (BLOCK * 2))
			self._finished = True
		return self.dest
