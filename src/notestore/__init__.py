"""
notestore - a versioned, capacity-bounded note storage engine.
Notes are kept as an append-only log of text patches; every edit leaves a
history snapshot, tags are indexed for AND search, and a fixed byte
ceiling bounds what the store may hold.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("notestore")
except PackageNotFoundError:
    __version__ = "1.0.0"
