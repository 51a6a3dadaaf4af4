"""Alpaca device dashboard core: image decoding and device lifecycle control."""

__version__ = "0.1.0"
