# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Progress and diagnostics capability.

Every pipeline stage receives a listener explicitly; nothing in the library
prints or keeps global reporting state. The default concrete listener forwards
to the `debpack` logger so that the CLI decides what reaches the terminal.
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol


class Listener(Protocol):
	def info(self, msg: str) -> None: ...

	def warning(self, msg: str) -> None: ...

	def progress(self, operation: str, detail: str) -> None: ...


class NoOpListener:
	def info(self, msg: str) -> None:
		pass

	def warning(self, msg: str) -> None:
		pass

	def progress(self, operation: str, detail: str) -> None:
		pass


class LoggingListener:
	def __init__(self, logger: logging.Logger | None = None) -> None:
		self.logger = logger or logging.getLogger("debpack")

	def info(self, msg: str) -> None:
		self.logger.info(msg)

	def warning(self, msg: str) -> None:
		self.logger.warning(msg)

	def progress(self, operation: str, detail: str) -> None:
		self.logger.info("%12s %s", operation, detail)


class PrefixedListener:
	"""Prepends a fixed prefix (usually the package name) to every message."""

	def __init__(self, prefix: str, inner: Listener) -> None:
		self.prefix = prefix
		self.inner = inner

	def info(self, msg: str) -> None:
		self.inner.info(f"{self.prefix}{msg}")

	def warning(self, msg: str) -> None:
		self.inner.warning(f"{self.prefix}{msg}")

	def progress(self, operation: str, detail: str) -> None:
		self.inner.progress(operation, f"{self.prefix}{detail}")


class RecordingListener:
	"""Collects messages in memory; safe to share with worker threads."""

	def __init__(self) -> None:
		self._lock = threading.Lock()
		self.infos: list[str] = []
		self.warnings: list[str] = []
		self.progresses: list[tuple[str, str]] = []

	def info(self, msg: str) -> None:
		with self._lock:
			self.infos.append(msg)

	def warning(self, msg: str) -> None:
		with self._lock:
			self.warnings.append(msg)

	def progress(self, operation: str, detail: str) -> None:
		with self._lock:
			self.progresses.append((operation, detail))
