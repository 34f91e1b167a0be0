# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
import os
import subprocess
from pathlib import Path

import pytest

from debpack.listener import RecordingListener

# strip: copy input to the -o output, refusing extra flags when STRIP_NO_FLAGS is set
FAKE_STRIP = """#!/bin/sh
out=""
in=""
while [ $# -gt 0 ]; do
	case "$1" in
		-o) out="$2"; shift 2 ;;
		--*) [ -n "$STRIP_NO_FLAGS" ] && { echo "unknown option $1" >&2; exit 1; }; shift ;;
		*) in="$1"; shift ;;
	esac
done
[ -n "$STRIP_FAIL" ] && exit 1
printf 'stripped:' > "$out"
cat "$in" >> "$out"
"""

# objcopy: --only-keep-debug copies, --add-gnu-debuglink appends the link name
FAKE_OBJCOPY = """#!/bin/sh
case "$1" in
	--only-keep-debug)
		shift
		[ "$1" = "--compress-debug-sections=zlib" ] && shift
		printf 'debug:' > "$2"
		cat "$1" >> "$2"
		;;
	--add-gnu-debuglink)
		test -f "$2" || exit 4
		printf '|link=%s' "$2" >> "$3"
		;;
	*) exit 9 ;;
esac
"""


def _tool(path: Path, body: str) -> Path:
	path.parent.mkdir(parents=True, exist_ok=True)
	path.write_text(body, encoding="utf-8")
	path.chmod(0o755)
	return path


@pytest.fixture
def listener() -> RecordingListener:
	return RecordingListener()


@pytest.fixture(autouse=True)
def _fixed_source_date_epoch(monkeypatch: pytest.MonkeyPatch) -> None:
	"""Keep archive timestamps independent of file mtimes unless a test unsets it."""
	monkeypatch.setenv("SOURCE_DATE_EPOCH", "1700000000")


@pytest.fixture
def make_tool():
	return _tool


@pytest.fixture
def tools(tmp_path: Path) -> tuple[Path, Path]:
	return _tool(tmp_path / "bin" / "strip", FAKE_STRIP), _tool(tmp_path / "bin" / "objcopy", FAKE_OBJCOPY)


@pytest.fixture
def cat_as_xz(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> list:
	"""
	Put an `xz` that only copies its input first on PATH.

	Returns the list every spawned child process is appended to.
	"""
	bin_dir = tmp_path / "fake-bin"
	_tool(bin_dir / "xz", "#!/bin/sh\nexec cat\n")
	monkeypatch.setenv("PATH", f"{bin_dir}:{os.environ.get('PATH', '')}")
	spawned = []
	real_popen = subprocess.Popen

	def recording_popen(*args, **kwargs):
		proc = real_popen(*args, **kwargs)
		spawned.append(proc)
		return proc

	monkeypatch.setattr(subprocess, "Popen", recording_popen)
	return spawned
