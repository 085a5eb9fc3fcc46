"""
Pre-copy live migration control plane.

Drives an external checkpoint/restore engine through converging pre-dump
rounds, then hands a running process over from a source to a target host.
"""

__version__ = "1.0.0"
