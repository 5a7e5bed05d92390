"""Asynchronous smux stream multiplexing over a single asyncio connection."""

__version__ = "0.3.4"