"""Asynchronous AI enrichment pipeline for CRM chat messages."""

__version__ = "0.1.0"
