"""
PDF Render Service - renders web pages and inline HTML to PDF.

Drives a headless Chromium through Playwright for each request: launch,
optional localStorage seeding, navigation or content injection, readiness
wait, DOM post-processing, printing and teardown.
"""

__version__ = "0.1.0"
