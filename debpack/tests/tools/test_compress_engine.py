# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import gzip
import io
import lzma
import shutil
import tarfile

import pytest

from debpack.assets import Asset, DataSource
from debpack.compress import Format, gzipped, select_compressor
from debpack.deb.data import archive_files

XZ_MAGIC = b"\xfd7zXZ\x00"


@pytest.mark.parametrize("fmt", [Format.XZ, Format.GZIP])
@pytest.mark.parametrize("fast", [False, True])
def test_in_process_compressor_counts_input(fmt: Format, fast: bool) -> None:
	c = select_compressor(fmt, use_system=False, fast=fast)
	c.write(b"hello ")
	c.flush()
	c.write(b"world")
	out = c.finish()
	assert c.uncompressed_size == 11
	assert out.format is fmt
	assert out.extension == fmt.value
	decoded = lzma.decompress(out.data) if fmt is Format.XZ else gzip.decompress(out.data)
	assert decoded == b"hello world"


def test_gzip_output_is_reproducible() -> None:
	def once() -> bytes:
		c = select_compressor(Format.GZIP, use_system=False, fast=False)
		c.write(b"payload" * 100)
		return c.finish().data

	assert once() == once()


@pytest.mark.skipif(shutil.which("xz") is None, reason="xz not installed")
def test_system_xz() -> None:
	c = select_compressor(Format.XZ, use_system=True, fast=True)
	c.write(b"abc" * 1000)
	assert lzma.decompress(c.finish().data) == b"abc" * 1000


@pytest.mark.parametrize("name,fmt", [("xz", Format.XZ), ("gz", Format.GZIP), ("gzip", Format.GZIP)])
def test_format_parse(name: str, fmt: Format) -> None:
	assert Format.parse(name) is fmt


def test_format_parse_rejects_unknown() -> None:
	with pytest.raises(ValueError):
		Format.parse("zstd")


def test_gzipped_has_no_timestamp() -> None:
	blob = gzipped(b"x")
	# MTIME field of the gzip member header
	assert blob[4:8] == b"\0\0\0\0"
	assert gzip.decompress(blob) == b"x"


def test_xz_flush_starts_a_new_stream() -> None:
	c = select_compressor(Format.XZ, use_system=False, fast=True)
	c.write(b"first block " * 100)
	c.flush()
	# nothing pending, so no empty stream
	c.flush()
	c.write(b"second block " * 100)
	data = c.finish().data
	assert data.count(XZ_MAGIC) == 2
	assert lzma.decompress(data) == b"first block " * 100 + b"second block " * 100


def test_rsyncable_xz_data_archive_still_reads_as_one_tarball(listener) -> None:
	assets = [
		Asset.new(DataSource(b"x" * 1_000_001), "usr/share/big", 0o644),
		Asset.new(DataSource(b"small\n"), "usr/share/small", 0o644),
	]

	def archive(rsyncable: bool) -> bytes:
		sink = select_compressor(Format.XZ, use_system=False, fast=True)
		archive_files(sink, assets, 0, listener, rsyncable=rsyncable)
		return sink.finish().data

	plain = archive(False)
	synced = archive(True)
	assert plain.count(XZ_MAGIC) == 1
	assert synced.count(XZ_MAGIC) >= 2
	assert lzma.decompress(synced) == lzma.decompress(plain)
	with tarfile.open(fileobj=io.BytesIO(synced), mode="r:xz") as tf:
		assert tf.extractfile("./usr/share/small").read() == b"small\n"


def test_abort_stops_a_system_compressor(cat_as_xz) -> None:
	c = select_compressor(Format.XZ, use_system=True, fast=False)
	c.write(b"never finished")
	assert len(cat_as_xz) == 1
	assert cat_as_xz[0].poll() is None
	c.abort()
	assert cat_as_xz[0].poll() is not None
	# a second abort is harmless
	c.abort()


@pytest.mark.parametrize("fmt", [Format.XZ, Format.GZIP])
def test_abort_in_process_compressor(fmt: Format) -> None:
	c = select_compressor(fmt, use_system=False, fast=True)
	c.write(b"partial")
	c.abort()
