#!/usr/bin/env python3
"""
Sale Steps Backfill Script

Creates the operational steps every in-progress sale is missing for its
region (beneficiary region first, then the sale's service region). Existing
steps are never modified.

Usage:
    python backfill_sale_steps.py --dry-run
    python backfill_sale_steps.py --actor backfill-bot
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import config
from api.dependencies import get_store
from domain.region import compute_required_step_types
from domain.sale import SaleStatus
from repositories.store import SalesStore
from services.sales_service import ensure_sale_steps_for_sale

DEFAULT_ACTOR = "system-backfill"


def missing_steps(store: SalesStore, sale_id: str, service_region: str | None) -> list[str]:
    """Step types that `ensure_sale_steps_for_sale` would create."""
    beneficiary = store.get_beneficiary_by_sale(sale_id)
    region = beneficiary.region if beneficiary is not None else service_region
    existing = {step.type for step in store.list_steps_for_sale(sale_id)}
    return [kind.value for kind in compute_required_step_types(region) if kind not in existing]


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Create missing operational steps for every in-progress sale"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report which steps would be created"
    )

    parser.add_argument(
        "--actor",
        default=DEFAULT_ACTOR,
        help=f"User id recorded on created steps and events (default: {DEFAULT_ACTOR})"
    )

    args = parser.parse_args()
    logging.basicConfig(level=config.LOG_LEVEL)

    try:
        store = get_store()
        sales = store.list_sales_by_status(SaleStatus.IN_PROGRESS)
        print(f"Found {len(sales)} in-progress sales")

        touched = 0
        created_total = 0
        for sale in sales:
            if args.dry_run:
                pending = missing_steps(store, sale.id, sale.service_region)
            else:
                pending = [step.type.value for step in ensure_sale_steps_for_sale(store, sale.id, args.actor)]

            if pending:
                touched += 1
                created_total += len(pending)
                print(f"  {sale.id}: {', '.join(pending)}")

        print()
        print("=" * 60)
        print("BACKFILL SUMMARY" + (" (dry run)" if args.dry_run else ""))
        print("=" * 60)
        print(f"Sales checked:  {len(sales)}")
        print(f"Sales updated:  {touched}")
        print(f"Steps {'to create' if args.dry_run else 'created'}: {created_total}")
        print("=" * 60)
        return 0

    except KeyboardInterrupt:
        print("\n\nBackfill interrupted by user")
        return 130

    except Exception as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
