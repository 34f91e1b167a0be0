# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
debpack: Debian binary package (.deb) assembly.

Modules:
  assets:        asset model, glob resolution, doc compression
  debuginfo:     strip / separate debug symbols
  dependencies:  $auto shared-library dependencies, arch-qualified entries
  deb:           ar container, tarballs, control archive
  build:         the assembly pipeline

The CLI entrypoint is `debpack.cli:main`.
"""

__all__ = ["assets", "build", "config", "deb", "debuginfo", "dependencies"]
