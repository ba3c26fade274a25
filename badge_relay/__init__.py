"""HTTP -> D-Bus relay for badging dock icons."""

__version__ = "0.1.0"
