"""
Core modules for AI Bill Reader.

This package contains the extraction pipeline, the request rate governor,
validation of provider output, and CSV export.
"""
