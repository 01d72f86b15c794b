#!/usr/bin/env python3
"""
Executive Report Export Script

Builds the executive report for a date range and writes it as JSON, in the
same shape the /api/v1/reports/executive endpoint returns.

Usage:
    python export_executive_report.py --from 2025-03-01 --to 2025-03-31
    python export_executive_report.py --from 2025-03-01 --to 2025-03-31 --output march.json
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import config
from api.dependencies import get_store
from api.models import ExecutiveReportResponse
from api.routers.reports import parse_range_bound
from domain.errors import InvalidRangeError
from services.executive_report_service import build_executive_report


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Export the executive report for a date range as JSON",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Print March's report to stdout
  python export_executive_report.py --from 2025-03-01 --to 2025-03-31

  # Write it to a file
  python export_executive_report.py --from 2025-03-01 --to 2025-03-31 --output march.json
        """
    )

    parser.add_argument(
        "--from",
        dest="date_from",
        required=True,
        help="Range start (YYYY-MM-DD, UTC midnight)"
    )

    parser.add_argument(
        "--to",
        dest="date_to",
        required=True,
        help="Range end, inclusive (YYYY-MM-DD, end of the UTC day)"
    )

    parser.add_argument(
        "--output",
        "-o",
        help="Path to output JSON file (default: stdout)"
    )

    args = parser.parse_args()
    logging.basicConfig(level=config.LOG_LEVEL)

    try:
        start = parse_range_bound(args.date_from, end_of_day=False, error_code="invalid_from_date")
        end = parse_range_bound(args.date_to, end_of_day=True, error_code="invalid_to_date")

        report = build_executive_report(get_store(), start, end)
        payload = ExecutiveReportResponse.from_domain(report).model_dump(mode="json", by_alias=True)
        text = json.dumps(payload, ensure_ascii=False, indent=2)

        if args.output:
            Path(args.output).write_text(text + "\n", encoding="utf-8")
            print("=" * 60, file=sys.stderr)
            print("EXECUTIVE REPORT", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            print(f"Range:          {start.isoformat()} → {end.isoformat()}", file=sys.stderr)
            print(f"Leads created:  {report.summary.leads_created}", file=sys.stderr)
            print(f"Sales closed:   {report.summary.sales_closed}", file=sys.stderr)
            print(f"Sales blocked:  {report.summary.sales_blocked}", file=sys.stderr)
            print(f"Timeline sales: {len(report.sales_timeline)}", file=sys.stderr)
            print(f"Output file:    {args.output}", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
        else:
            print(text)

        return 0

    except InvalidRangeError as e:
        print(f"ERROR: {e.code}", file=sys.stderr)
        return 2

    except KeyboardInterrupt:
        print("\n\nExport interrupted by user", file=sys.stderr)
        return 130

    except Exception as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
