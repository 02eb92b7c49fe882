"""Configuration parsing, annotation patches and storage backends for signed build payloads."""

__version__ = "0.1.0"