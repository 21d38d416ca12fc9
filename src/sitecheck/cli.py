"""
Command-line interface for the site checker.
"""
from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

from sitecheck.core import (
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
    OUTCOME_OK,
    AuditStats,
    PageReport,
    run,
)


def print_summary(stats: AuditStats) -> None:
    """Print run summary to stderr."""
    sys.stderr.write("=" * 50 + "\n")
    sys.stderr.write("CHECK SUMMARY\n")
    sys.stderr.write("=" * 50 + "\n\n")

    sys.stderr.write(f"Pages checked:          {stats.pages_checked}\n")
    sys.stderr.write(f"Links checked:          {stats.links_checked}\n")
    sys.stderr.write(f"Pages with problems:    {stats.failed}\n\n")

    if stats.failed:
        sys.stderr.write("Problems by type:\n")
        for outcome, count in sorted(stats.outcome_counts.items()):
            if outcome == OUTCOME_OK:
                continue
            label = outcome.replace("_", " ").capitalize()
            sys.stderr.write(f"  {label}: {count}\n")
    else:
        sys.stderr.write("All pages OK.\n")

    sys.stderr.write("\n")


def read_urls_file(path: Path) -> List[str]:
    """Read one URL per line, skipping blank lines and # comments."""
    urls = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        urls.append(line)
    return urls


def report_to_dict(report: PageReport) -> dict:
    """Serialise a report for JSON output, including the rendered message."""
    payload = asdict(report)
    payload["message"] = report.render()
    return payload


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the checker CLI."""
    parser = argparse.ArgumentParser(
        description="Check that pages load, their links resolve, and they contain a form and a button."
    )
    parser.add_argument("urls", nargs="*", help="Page URLs to check (e.g. https://example.com/page1)")
    parser.add_argument("--urls-file", type=Path, help="File with one URL per line ('#' starts a comment)")
    parser.add_argument(
        "--timeout", type=float, default=DEFAULT_TIMEOUT,
        help=f"Request timeout in seconds (default: {DEFAULT_TIMEOUT:g})",
    )
    parser.add_argument("--user-agent", default=DEFAULT_USER_AGENT, help="User-Agent header")
    parser.add_argument("--retries", type=int, default=0, help="Retry failed requests this many times (default: 0)")
    parser.add_argument("--backoff", type=float, default=0.5, help="Retry backoff factor in seconds (default: 0.5)")
    parser.add_argument("--workers", type=int, default=1, help="Threads used to check links of a page (default: 1)")
    parser.add_argument("--out", help="Also write JSON results to this path, or '-' for stdout")
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON")
    parser.add_argument("--verbose", action="store_true", help="Show per-link progress and summary")
    parser.add_argument("--strict", action="store_true", help="Exit with status 1 if any page has problems")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the checker CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.timeout <= 0:
        parser.error("--timeout must be greater than 0")
    if args.retries < 0:
        parser.error("--retries must not be negative")
    if args.backoff < 0:
        parser.error("--backoff must not be negative")
    if args.workers < 1:
        parser.error("--workers must be at least 1")

    urls = list(args.urls)
    if args.urls_file:
        try:
            urls.extend(read_urls_file(args.urls_file))
        except OSError as e:
            parser.error(f"cannot read {args.urls_file}: {e}")
    if not urls:
        parser.error("no URLs given")

    # Keep stdout clean for JSON when it is the JSON destination
    out = sys.stderr if args.out == "-" else sys.stdout
    stats = AuditStats()

    reports = [
        report
        for _, report in run(
            urls,
            timeout_s=args.timeout,
            user_agent=args.user_agent,
            retries=args.retries,
            backoff=args.backoff,
            workers=args.workers,
            verbose=args.verbose,
            out=out,
            stats=stats,
        )
    ]

    if args.verbose:
        print_summary(stats)

    if args.out:
        payload = [report_to_dict(r) for r in reports]
        json_text = json.dumps(payload, ensure_ascii=False, indent=2 if args.pretty else None)

        if args.out == "-":
            print(json_text)
        else:
            output_path = Path(args.out)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_text(json_text, encoding="utf-8")
            if args.verbose:
                sys.stderr.write(f"Results written to: {output_path}\n")

    if args.strict and stats.failed:
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
