"""
Core page checking logic and data structures.
"""
from __future__ import annotations

import re
import sys
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, Iterator, List, Optional, TextIO, Tuple, Union
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup, SoupStrainer
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

DEFAULT_TIMEOUT = 30.0
DEFAULT_USER_AGENT = "SiteCheck/1.0"

# Statuses worth retrying when a retry policy is enabled
RETRY_STATUSES: frozenset[int] = frozenset((500, 502, 503, 504))

# SoupStrainer to parse only <a> tags (faster link extraction)
LINK_STRAINER = SoupStrainer("a", href=True)

# Characters that may not appear unescaped in a URI reference
_INVALID_URI_CHARS = re.compile(r'[\s<>"{}|\\^`]')

OUTCOME_OK = "ok"
OUTCOME_HTTP_ERROR = "http_error"
OUTCOME_BROKEN_LINKS = "broken_links"
OUTCOME_USER_FLOW = "user_flow_issues"
OUTCOME_EXCEPTION = "exception"

NO_FORMS = "No forms found on the page."
NO_BUTTONS = "No buttons found on the page."


@dataclass(slots=True)
class FetchResult:
    """Outcome of a single GET request."""
    url: str
    status_code: Optional[int] = None
    ok: bool = False
    text: Optional[str] = None
    error: Optional[str] = None


@dataclass(slots=True)
class LinkRecord:
    """A hyperlink found on a page and what happened when it was requested."""
    href: str
    url: str
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def broken(self) -> bool:
        return self.error is not None or not is_success(self.status_code)

    @property
    def issue(self) -> str:
        if self.error is not None:
            return f"{self.url} encountered an error - {self.error}"
        return f"{self.url} returned {self.status_code}"


@dataclass(slots=True)
class PageReport:
    """Result of auditing one page. Exactly one outcome is set."""
    url: str
    outcome: str = OUTCOME_OK
    checked_at: Optional[str] = None
    status_code: Optional[int] = None
    broken_links: List[LinkRecord] = field(default_factory=list)
    issues: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == OUTCOME_OK

    def render(self) -> str:
        """Render the report as the one-line (or multi-line) status string."""
        if self.outcome == OUTCOME_HTTP_ERROR:
            return f"Error: {self.url} returned {self.status_code}"
        if self.outcome == OUTCOME_BROKEN_LINKS:
            lines = "\n".join(link.issue for link in self.broken_links)
            return f"Error: {self.url} has broken links:\n{lines}"
        if self.outcome == OUTCOME_USER_FLOW:
            lines = "\n".join(self.issues)
            return f"Error: {self.url} has user flow issues:\n{lines}"
        if self.outcome == OUTCOME_EXCEPTION:
            return f"Exception: {self.url} encountered an error - {self.error}"
        return f"{self.url} is OK"

    def __str__(self) -> str:
        return self.render()


@dataclass(slots=True)
class AuditStats:
    """Statistics collected during a run for summary output."""
    pages_checked: int = 0
    links_checked: int = 0
    outcome_counts: Dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def record(self, report: PageReport) -> None:
        """Record one finished page audit."""
        self.pages_checked += 1
        self.outcome_counts[report.outcome] += 1

    @property
    def failed(self) -> int:
        return self.pages_checked - self.outcome_counts.get(OUTCOME_OK, 0)


def utc_now_iso() -> str:
    """Return current UTC time in ISO format."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def is_success(status_code: Optional[int]) -> bool:
    """True for 2xx status codes."""
    return status_code is not None and 200 <= status_code < 300


def build_session(
    user_agent: str = DEFAULT_USER_AGENT,
    retries: int = 0,
    backoff: float = 0.5,
) -> requests.Session:
    """
    Create the HTTP session shared by every request of a run.

    With ``retries`` > 0, connection/read failures and 5xx gateway statuses
    are retried with exponential backoff. The last response is returned
    instead of raising once retries are exhausted.
    """
    session = requests.Session()
    session.headers["User-Agent"] = user_agent

    if retries > 0:
        policy = Retry(
            total=retries,
            connect=retries,
            read=retries,
            status=retries,
            backoff_factor=backoff,
            status_forcelist=RETRY_STATUSES,
            allowed_methods=frozenset({"GET"}),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=policy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

    return session


def fetch(
    session: requests.Session,
    url: str,
    timeout_s: float = DEFAULT_TIMEOUT,
    read_body: bool = True,
) -> FetchResult:
    """
    Issue a single GET for ``url``.

    The response is streamed, so a non-2xx body is never downloaded. Request
    level failures (DNS, refused connection, timeout, bad URL) are returned
    as ``FetchResult.error`` rather than raised.
    """
    try:
        with session.get(url, timeout=timeout_s, allow_redirects=True, stream=True) as resp:
            result = FetchResult(url=url, status_code=resp.status_code)
            if not is_success(resp.status_code):
                return result
            result.ok = True
            if read_body:
                result.text = resp.text
            return result
    except (requests.RequestException, ValueError) as e:
        return FetchResult(url=url, error=str(e))


def is_relative_reference(href: str) -> bool:
    """Check if ``href`` is a well-formed relative URI reference."""
    if _INVALID_URI_CHARS.search(href):
        return False
    try:
        parsed = urlparse(href)
    except ValueError:
        return False
    return not parsed.scheme


def resolve_link(base_url: str, href: str) -> str:
    """Resolve a relative href against the page URL; pass anything else through."""
    if is_relative_reference(href):
        return urljoin(base_url, href)
    return href


def find_links(base_url: str, html: str) -> List[Tuple[str, str]]:
    """Return ``(href, resolved_url)`` for every <a href> in document order."""
    soup = BeautifulSoup(html, "lxml", parse_only=LINK_STRAINER)
    return [
        (a["href"], resolve_link(base_url, a["href"]))
        for a in soup.find_all("a", href=True)
        if a["href"]
    ]


def extract_links(base_url: str, html: str) -> List[str]:
    """
    Extract hyperlink targets from <a href> tags in document order.

    Relative references are resolved against ``base_url``; absolute and
    malformed hrefs are returned unchanged.
    """
    return [url for _, url in find_links(base_url, html)]


def check_link(
    session: requests.Session,
    url: str,
    timeout_s: float = DEFAULT_TIMEOUT,
    href: Optional[str] = None,
) -> LinkRecord:
    """
    Request a single link without downloading its body.

    Any failure while requesting the link marks that link as broken; it never
    aborts the rest of the page.
    """
    record = LinkRecord(href=url if href is None else href, url=url)
    try:
        result = fetch(session, url, timeout_s, read_body=False)
    except Exception as e:
        record.error = str(e)
        return record
    record.status_code = result.status_code
    record.error = result.error
    return record


def print_link_line(record: LinkRecord) -> None:
    """Print single link check line."""
    status_str = str(record.status_code) if record.status_code else "ERR"
    sys.stderr.write(f"  → {status_str} {record.url}\n")
    sys.stderr.flush()


def validate_links(
    session: requests.Session,
    links: Iterable[Union[str, Tuple[str, str]]],
    timeout_s: float = DEFAULT_TIMEOUT,
    workers: int = 1,
    verbose: bool = False,
) -> List[LinkRecord]:
    """
    Request every link and return the broken ones in link order.

    Each link is either a URL or an ``(href, url)`` pair from ``find_links``.
    Links are checked one at a time unless ``workers`` > 1, in which case a
    thread pool fans the requests out; ``map`` keeps the results in input
    order either way. Repeated links are checked every time they appear.
    """
    pairs = [(link, link) if isinstance(link, str) else link for link in links]

    def check(pair: Tuple[str, str]) -> LinkRecord:
        href, url = pair
        return check_link(session, url, timeout_s, href=href)

    def collect(results: Iterable[LinkRecord]) -> List[LinkRecord]:
        broken = []
        for record in results:
            if verbose:
                print_link_line(record)
            if record.broken:
                broken.append(record)
        return broken

    if workers > 1 and len(pairs) > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return collect(pool.map(check, pairs))
    return collect(check(pair) for pair in pairs)


def check_structure(html: str) -> List[str]:
    """Report missing interactive elements (form, button)."""
    soup = BeautifulSoup(html, "lxml")
    issues = []
    if soup.find("form") is None:
        issues.append(NO_FORMS)
    if soup.find("button") is None:
        issues.append(NO_BUTTONS)
    return issues


def audit_page(
    session: requests.Session,
    url: str,
    timeout_s: float = DEFAULT_TIMEOUT,
    workers: int = 1,
    verbose: bool = False,
    stats: Optional[AuditStats] = None,
) -> PageReport:
    """
    Run the full check sequence for one page.

    Stops at the first failing category: page fetch, then broken links, then
    user flow structure. Never raises; unexpected errors become an
    ``exception`` report.
    """
    report = PageReport(url=url, checked_at=utc_now_iso())

    try:
        page = fetch(session, url, timeout_s)
        report.status_code = page.status_code

        if page.error is not None:
            report.outcome = OUTCOME_EXCEPTION
            report.error = page.error
            return report
        if not page.ok:
            report.outcome = OUTCOME_HTTP_ERROR
            return report

        html = page.text or ""
        links = find_links(url, html)
        if stats is not None:
            stats.links_checked += len(links)

        broken = validate_links(session, links, timeout_s, workers=workers, verbose=verbose)
        if broken:
            report.outcome = OUTCOME_BROKEN_LINKS
            report.broken_links = broken
            return report

        issues = check_structure(html)
        if issues:
            report.outcome = OUTCOME_USER_FLOW
            report.issues = issues
            return report

    except Exception as e:
        report.outcome = OUTCOME_EXCEPTION
        report.error = str(e)
        report.broken_links = []
        report.issues = []

    return report


def run(
    urls: Iterable[str],
    timeout_s: float = DEFAULT_TIMEOUT,
    user_agent: str = DEFAULT_USER_AGENT,
    retries: int = 0,
    backoff: float = 0.5,
    workers: int = 1,
    verbose: bool = False,
    out: Optional[TextIO] = None,
    session: Optional[requests.Session] = None,
    stats: Optional[AuditStats] = None,
) -> Iterator[Tuple[str, PageReport]]:
    """
    Audit each URL in order, yielding ``(url, report)`` as each page finishes.

    Args:
        urls: Pages to check, in the order they should be reported.
        timeout_s: HTTP request timeout in seconds.
        user_agent: User-Agent header to use for requests.
        retries: Retry attempts per request (0 disables retrying).
        backoff: Retry backoff factor.
        workers: Worker threads used to check the links of one page.
        verbose: Whether to print per-link progress to stderr.
        out: Stream that receives the "Checking" and report lines.
        session: Existing session to use; one is created (and closed) otherwise.
        stats: Collector updated with every finished page.
    """
    owns_session = session is None
    if session is None:
        session = build_session(user_agent, retries, backoff)

    try:
        for url in urls:
            if out is not None:
                out.write(f"Checking {url}\n")
                out.flush()

            report = audit_page(session, url, timeout_s, workers=workers, verbose=verbose, stats=stats)
            if stats is not None:
                stats.record(report)

            if out is not None:
                out.write(f"{report}\n")
                out.flush()

            yield url, report
    finally:
        if owns_session:
            session.close()
