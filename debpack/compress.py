# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Compression engine for the inner archives.

Two formats (xz, gzip), each either encoded in-process (`lzma`, `gzip`) or
piped through the system `xz`/`gzip` binary. The choice is a pure function of
(format, use_system, fast): there is no silent fallback from one strategy to
the other. Every byte written is counted so callers can report the ratio.
"""

from __future__ import annotations

import enum
import gzip
import io
import logging
import lzma
import subprocess
import threading
from dataclasses import dataclass
from typing import IO

from debpack.errors import ToolError

log = logging.getLogger(__name__)


class Format(enum.Enum):
	XZ = "xz"
	GZIP = "gz"

	@property
	def extension(self) -> str:
		return self.value

	@property
	def program(self) -> str:
		return "xz" if self is Format.XZ else "gzip"

	def level(self, fast: bool) -> int:
		if self is Format.XZ:
			return 1 if fast else 6
		return 1 if fast else 9

	@classmethod
	def parse(cls, name: str) -> "Format":
		n = name.strip().lower()
		if n in ("xz", "lzma"):
			return cls.XZ
		if n in ("gz", "gzip"):
			return cls.GZIP
		raise ValueError(f"unknown compression format: {name!r} (expected xz or gz)")


@dataclass(frozen=True)
class CompressOptions:
	format: Format = Format.XZ
	use_system: bool = False
	fast: bool = False
	rsyncable: bool = False


@dataclass(frozen=True)
class Compressed:
	format: Format
	data: bytes

	@property
	def extension(self) -> str:
		return self.format.extension

	def __len__(self) -> int:
		return len(self.data)


class _XzBackend:
	"""
	In-process xz.

	`LZMACompressor` has no sync flush, so a flush point ends the current xz
	stream and starts a new one. Decoders read concatenated streams as one.
	"""

	def __init__(self, level: int) -> None:
		self._level = level
		self._enc = self._new_stream()
		self._pending = False
		self._out = io.BytesIO()

	def _new_stream(self) -> lzma.LZMACompressor:
		return lzma.LZMACompressor(format=lzma.FORMAT_XZ, check=lzma.CHECK_CRC64, preset=self._level)

	def write(self, data: bytes) -> None:
		if data:
			self._out.write(self._enc.compress(data))
			self._pending = True

	def flush(self) -> None:
		if not self._pending:
			return
		self._out.write(self._enc.flush())
		self._enc = self._new_stream()
		self._pending = False

	def finish(self) -> bytes:
		self._out.write(self._enc.flush())
		return self._out.getvalue()

	def abort(self) -> None:
		pass


class _GzipBackend:
	def __init__(self, level: int) -> None:
		self._out = io.BytesIO()
		# mtime=0 and no file name keep the gzip header reproducible.
		self._gz = gzip.GzipFile(filename="", mode="wb", compresslevel=level, fileobj=self._out, mtime=0)

	def write(self, data: bytes) -> None:
		self._gz.write(data)

	def flush(self) -> None:
		self._gz.flush()

	def finish(self) -> bytes:
		self._gz.close()
		return self._out.getvalue()

	def abort(self) -> None:
		self._gz.close()


class _SubprocessBackend:
	"""
	Pipes through an external compressor.

	A reader thread drains stdout while the caller writes stdin, so neither side
	blocks on a full pipe buffer. The thread is joined in `finish` or `abort`.
	"""

	def __init__(self, fmt: Format, level: int) -> None:
		self.format = fmt
		cmd = [fmt.program, f"-{level}"]
		if log.isEnabledFor(logging.DEBUG):
			log.debug("spawning %s", " ".join(cmd))
		try:
			self._proc = subprocess.Popen(cmd, stdin=subprocess.PIPE, stdout=subprocess.PIPE)
		except OSError as err:
			raise ToolError(
				fmt.program,
				f"unable to run {fmt.program}: {err}",
				hint="install it, or drop --compress-system to use the built-in encoder",
			) from err
		self._chunks: list[bytes] = []
		self._read_error: BaseException | None = None
		self._reader = threading.Thread(target=self._drain, args=(self._proc.stdout,), daemon=True)
		self._reader.start()

	def _drain(self, stream: IO[bytes]) -> None:
		try:
			while True:
				chunk = stream.read(1 << 16)
				if not chunk:
					break
				self._chunks.append(chunk)
		except OSError as err:
			self._read_error = err

	def write(self, data: bytes) -> None:
		assert self._proc.stdin is not None
		try:
			self._proc.stdin.write(data)
		except BrokenPipeError as err:
			raise ToolError(self.format.program, f"{self.format.program} exited early") from err

	def flush(self) -> None:
		assert self._proc.stdin is not None
		self._proc.stdin.flush()

	def finish(self) -> bytes:
		assert self._proc.stdin is not None
		self._proc.stdin.close()
		code = self._proc.wait()
		self._reader.join()
		if self._read_error is not None:
			raise ToolError(self.format.program, f"reading {self.format.program} output failed: {self._read_error}")
		if code != 0:
			raise ToolError(self.format.program, f"{self.format.program} exited with status {code}")
		return b"".join(self._chunks)

	def abort(self) -> None:
		"""Stop the child without waiting for its output; safe after `finish`."""
		if self._proc.poll() is None:
			self._proc.kill()
		stdin = self._proc.stdin
		if stdin is not None and not stdin.closed:
			try:
				stdin.close()
			except BrokenPipeError:
				log.debug("%s exited before its input was closed", self.format.program)
		self._proc.wait()
		self._reader.join()


class Compressor:
	"""Writable sink producing a `Compressed` blob; counts uncompressed bytes."""

	def __init__(self, fmt: Format, backend: _XzBackend | _GzipBackend | _SubprocessBackend) -> None:
		self.format = fmt
		self._backend = backend
		self.uncompressed_size = 0

	def write(self, data: bytes) -> int:
		self._backend.write(data)
		self.uncompressed_size += len(data)
		return len(data)

	def flush(self) -> None:
		self._backend.flush()

	def finish(self) -> Compressed:
		return Compressed(self.format, self._backend.finish())

	def abort(self) -> None:
		self._backend.abort()


def system_compressor(fmt: Format, fast: bool) -> Compressor:
	return Compressor(fmt, _SubprocessBackend(fmt, fmt.level(fast)))


def select_compressor(fmt: Format, use_system: bool, fast: bool) -> Compressor:
	if use_system:
		return system_compressor(fmt, fast)
	if fmt is Format.XZ:
		return Compressor(fmt, _XzBackend(fmt.level(fast)))
	return Compressor(fmt, _GzipBackend(fmt.level(fast)))


def gzipped(data: bytes) -> bytes:
	"""Deterministic gzip used for documentation and changelogs."""
	return gzip.compress(data, compresslevel=9, mtime=0)
