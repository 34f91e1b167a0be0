# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Data archive: every resolved asset at its target path.

File bytes are handed to a hashing thread over a bounded queue while the
archive keeps writing; the queue is closed after the last asset so the hasher
can drain and exit.
"""

from __future__ import annotations

import hashlib
import queue
import threading
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Sequence

from debpack.assets import Asset, SymlinkSource
from debpack.deb.tar import Sink, Tarball
from debpack.listener import Listener

HASH_QUEUE_BOUND = 2
RSYNC_FLUSH_BYTES = 1_000_000
_DONE = object()


def human_size(n: int) -> str:
	if n < 1000:
		return f"{n}B"
	if n < 1_000_000:
		return f"{(n + 999) // 1000}KB"
	return f"{(n + 999_999) // 1_000_000}MB"


@dataclass(frozen=True)
class DataArchiveResult:
	sink: Sink
	# target path -> sha256 hex, in archive order; symlinks are not hashed
	hashes: dict[PurePosixPath, str]


class _Hasher(threading.Thread):
	"""
	Hashes queued file contents until `_DONE` arrives.

	A failure is kept in `error` and the queue is still drained, so the
	producer never blocks on a full queue.
	"""

	def __init__(self, algorithm: str) -> None:
		super().__init__(name="debpack-hasher", daemon=True)
		# unknown algorithms fail here, before any thread is started
		hashlib.new(algorithm)
		self.algorithm = algorithm
		self.queue: queue.Queue = queue.Queue(maxsize=HASH_QUEUE_BOUND)
		self.hashes: dict[PurePosixPath, str] = {}
		self.error: Exception | None = None

	def run(self) -> None:
		while True:
			item = self.queue.get()
			if item is _DONE:
				return
			if self.error is not None:
				continue
			path, data = item
			try:
				self.hashes[path] = hashlib.new(self.algorithm, data).hexdigest()
			except Exception as err:
				self.error = err


def archive_files(
	dest: Sink,
	assets: Sequence[Asset],
	time: int,
	listener: Listener,
	*,
	rsyncable: bool = False,
	hash_algorithm: str = "sha256",
) -> DataArchiveResult:
	"""
	Write `assets` (already sorted) into a tarball on `dest`.

	With `rsyncable`, the stream is flushed after every ~1MB of payload and
	whenever the built/static provenance changes between consecutive assets.
	"""
	tar = Tarball(dest, time)
	hasher = _Hasher(hash_algorithm)
	hasher.start()
	added = 0
	prev_built = False
	try:
		for asset in assets:
			size = asset.source.file_size()
			line = asset.display()
			if size is not None:
				line += f" ({human_size(size)})"
			listener.info(line)

			src = asset.source
			if isinstance(src, SymlinkSource):
				tar.symlink(asset.c.target_path, src.link_target())
				continue
			data = src.data()
			if rsyncable:
				if added > RSYNC_FLUSH_BYTES or prev_built != asset.c.built:
					tar.flush()
					added = 0
				prev_built = asset.c.built
				added += len(data)
			tar.file(asset.c.target_path, data, asset.c.chmod)
			hasher.queue.put((asset.c.target_path, data))
	finally:
		hasher.queue.put(_DONE)
		hasher.join()
	if hasher.error is not None:
		raise hasher.error
	tar.finish()
	return DataArchiveResult(sink=dest, hashes=hasher.hashes)


def format_hash_sums(assets: Sequence[Asset], hashes: dict[PurePosixPath, str]) -> bytes:
	"""`<hex>  <path>` per hashed asset, in archive order."""
	lines = [f"{hashes[a.c.target_path]}  {a.c.target_path}\n" for a in assets if a.c.target_path in hashes]
	return "".join(lines).encode("utf-8")
