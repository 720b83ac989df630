"""Continuous Scraper - durable extraction pipeline for historical slavery records.

Drains a persistent work queue of archival URLs, fetches and OCRs each page,
extracts owner/enslaved/official mentions, and resolves names to canonical
persons with a human review queue for ambiguous matches.
"""

__version__ = "0.3.0"
