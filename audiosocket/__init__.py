"""AudioSocket protocol codec and real-time relay."""

__version__ = "0.1.0"
