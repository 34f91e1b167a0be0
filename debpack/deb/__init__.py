# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
On-disk package format: the outer `ar` container and the control/data tarballs.
"""

__all__ = ["ar", "control", "data", "tar"]
