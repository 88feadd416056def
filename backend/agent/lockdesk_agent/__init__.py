"""Reference executor for LockDesk commands."""
