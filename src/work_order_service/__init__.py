"""Work order lifecycle, settlement and deadline escalation service."""

__version__ = "0.1.0"
