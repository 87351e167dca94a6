"""Log chunking, run conversion, output formatting, deletion metrics, retention and client settings for pipeline results."""

__version__ = "0.1.0"