"""Latency-ranked relay selection and tunnel health supervision."""

__version__ = "0.3.0"
