# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class DebpackError(Exception):
	"""
	A structured, serializable error for package assembly.

	Every user-visible failure names the asset, path or tool involved and,
	where one exists, a remediation hint (rendered as a `note:` line).
	"""

	reason_code: str
	message: str
	path: str | None = None
	tool: str | None = None
	asset: str | None = None
	hint: str | None = None
	causes: tuple["DebpackError", ...] = field(default_factory=tuple)

	def __str__(self) -> str:
		return self.format_human()

	def to_dict(self) -> dict[str, Any]:
		return {
			"reason_code": self.reason_code,
			"message": self.message,
			"path": self.path,
			"tool": self.tool,
			"asset": self.asset,
			"hint": self.hint,
			"causes": [c.to_dict() for c in self.causes],
		}

	def format_human(self) -> str:
		parts: list[str] = [f"[{self.reason_code}] {self.message}"]
		if self.path:
			parts.append(f"path={self.path}")
		if self.tool:
			parts.append(f"tool={self.tool}")
		if self.asset:
			parts.append(f"asset={self.asset}")
		out = " ".join(parts)
		for cause in self.causes:
			out += "\n  " + cause.format_human().replace("\n", "\n  ")
		if self.hint:
			out += "\nnote: " + self.hint
		return out


class ConfigError(DebpackError):
	"""Invalid configuration value (version string, manifest field, script fragments)."""

	def __init__(self, message: str, *, path: str | None = None, hint: str | None = None) -> None:
		super().__init__(reason_code="config", message=message, path=path, hint=hint)


class AssetFileNotFound(DebpackError):
	def __init__(self, source: str, target: str, is_glob: bool, is_built: bool) -> None:
		if is_built:
			hint = "the file is expected to be produced by the build; build the project first"
		elif is_glob:
			hint = "the glob pattern did not match any files"
		else:
			hint = None
		super().__init__(
			reason_code="asset-not-found",
			message=f"Static file asset path or glob pattern did not match any existing files ({source} -> {target})",
			path=source,
			asset=target,
			hint=hint,
		)
		object.__setattr__(self, "source", source)
		object.__setattr__(self, "target", target)
		object.__setattr__(self, "is_glob", is_glob)
		object.__setattr__(self, "is_built", is_built)


class ToolError(DebpackError):
	"""An external tool was missing, exited non-zero or did not produce its output."""

	def __init__(self, tool: str, message: str, *, path: str | None = None, hint: str | None = None) -> None:
		super().__init__(reason_code="tool", message=message, tool=tool, path=path, hint=hint)


class StripFailed(DebpackError):
	def __init__(self, path: str, detail: str, *, hint: str | None = None) -> None:
		super().__init__(
			reason_code="strip-failed",
			message=f"Unable to strip binary: {detail}",
			path=path,
			hint=hint,
		)


class ArchiveError(DebpackError):
	"""Filesystem or header-format failure while writing an archive member."""

	def __init__(self, message: str, *, path: str | None = None) -> None:
		super().__init__(reason_code="archive", message=message, path=path)


class ParallelFailure(DebpackError):
	def __init__(self, what: str, causes: list[DebpackError]) -> None:
		super().__init__(
			reason_code="parallel",
			message=f"{len(causes)} of the {what} tasks failed",
			causes=tuple(causes),
		)
