"""Tail nginx access logs and export request histograms for Prometheus."""

__version__ = "1.1.0"
