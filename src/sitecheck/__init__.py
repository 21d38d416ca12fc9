"""
Website health checker: fetches pages, verifies every hyperlink resolves,
and checks each page has a form and a button.
"""
from sitecheck.core import audit_page, run, PageReport, LinkRecord, FetchResult

__version__ = "1.0.0"
__all__ = ["audit_page", "run", "PageReport", "LinkRecord", "FetchResult"]
