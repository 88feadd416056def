"""LockDesk: remote lock/unlock/locate/wipe for registered devices."""

__version__ = "0.2.0"
