"""Bulk load newline-delimited JSON into Elasticsearch."""

__version__ = "0.7.26"
