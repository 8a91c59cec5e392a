"""Command-line entry point for lead ingestion and attribution reporting.

WHAT:
    Runs the lead services against the configured database and prints
    camelCase JSON:
    - report / tracking / realtime: attribution and conversion reports
    - journey / lead-attribution: single-lead views
    - import-meta-leads / process-orders: batch ingestion from JSON files
    - sync-meta-leads / sync-shopify: pull from Meta and Shopify APIs

USAGE:
    python -m app.cli --owner acme report --from 2024-06-01 --to 2024-06-30
    python -m app.cli --owner acme journey 0b7c6d8e-...
    python -m app.cli import-meta-leads leads.json
    python -m app.cli process-orders orders.json
    python -m app.cli sync-meta-leads --form-id 1234567890 --since 1717200000
    python -m app.cli sync-shopify --since 2024-06-01
    python -m app.cli realtime --hours 48

    The owner defaults to DEFAULT_OWNER_UID ("demo") when --owner is omitted.

REFERENCES:
    - app/services/*.py (operations)
    - app/database.py (session), app/deps.py (settings, owner scoping)
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, List, Optional

from app.database import get_sync_session, init_db
from app.deps import resolve_owner_uid
from app.exceptions import LeadAttributionError, LeadNotFoundError
from app.services import attribution_tracking_service, lead_import_service, shopify_conversion_service
from app.services.attribution_engine import parse_date_bound
from app.services.lead_store import SqlLeadStore
from app.services.meta_leads_client import MetaLeadsClient, MetaLeadsClientError
from app.services.shopify_client import ShopifyAPIError, ShopifyClient
from app.telemetry import init_observability, set_owner_context

logger = logging.getLogger(__name__)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _load_json_list(path: str) -> List[Any]:
    """Read a JSON file holding one object or a list of objects."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return data if isinstance(data, list) else [data]


def run_command(args: argparse.Namespace, store: SqlLeadStore) -> Any:
    """Dispatch one parsed command and return its JSON-ready result."""
    owner_uid = resolve_owner_uid(args.owner)
    set_owner_context(owner_uid)

    if args.command == "report":
        report = attribution_tracking_service.generate_attribution_report(
            store, owner_uid, args.date_from, args.date_to
        )
        return report.model_dump(mode="json", by_alias=True)

    if args.command == "journey":
        journey = attribution_tracking_service.get_lead_journey(store, owner_uid, args.lead_id)
        return journey.model_dump(mode="json", by_alias=True, exclude_unset=True)

    if args.command == "lead-attribution":
        attribution = lead_import_service.get_campaign_attribution(store, owner_uid, args.lead_id)
        if attribution is None:
            raise LeadNotFoundError(owner_uid, args.lead_id)
        return attribution.model_dump(mode="json", by_alias=True)

    if args.command == "realtime":
        conversions = attribution_tracking_service.get_real_time_conversions(store, owner_uid, args.hours)
        return conversions.model_dump(mode="json", by_alias=True)

    if args.command == "tracking":
        tracking = shopify_conversion_service.get_conversion_tracking(
            store, owner_uid, args.date_from, args.date_to
        )
        return tracking.model_dump(mode="json", by_alias=True)

    if args.command == "import-meta-leads":
        result = lead_import_service.import_meta_leads(store, owner_uid, _load_json_list(args.file))
        return result.to_dict()

    if args.command == "process-orders":
        result = shopify_conversion_service.process_shopify_orders(store, owner_uid, _load_json_list(args.file))
        return result.to_dict()

    if args.command == "sync-meta-leads":
        client = MetaLeadsClient.from_settings()
        result = lead_import_service.sync_meta_form_leads(
            store, owner_uid, client, args.form_ids, since=args.since
        )
        return result.to_dict()

    if args.command == "sync-shopify":
        client = ShopifyClient.from_settings()
        since = parse_date_bound(args.since, end_of_day=False) if args.since else None
        result = asyncio.run(shopify_conversion_service.sync_shopify_orders(store, owner_uid, client, since=since))
        return result.to_dict()

    raise ValueError(f"Unknown command: {args.command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="app.cli", description="Lead ingestion and attribution reporting")
    parser.add_argument("--owner", default=None, help="Owner/tenant identifier (default: DEFAULT_OWNER_UID)")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    subparsers = parser.add_subparsers(dest="command", help="Command")

    report_parser = subparsers.add_parser("report", help="Attribution report")
    report_parser.add_argument("--from", dest="date_from", default=None, help="Start date (YYYY-MM-DD)")
    report_parser.add_argument("--to", dest="date_to", default=None, help="End date (YYYY-MM-DD)")

    tracking_parser = subparsers.add_parser("tracking", help="Conversion tracking")
    tracking_parser.add_argument("--from", dest="date_from", default=None, help="Start date (YYYY-MM-DD)")
    tracking_parser.add_argument("--to", dest="date_to", default=None, help="End date (YYYY-MM-DD)")

    realtime_parser = subparsers.add_parser("realtime", help="Recent conversions")
    realtime_parser.add_argument("--hours", type=int, default=None, help="Hours to look back (default: 24)")

    journey_parser = subparsers.add_parser("journey", help="Touchpoints for one lead")
    journey_parser.add_argument("lead_id", help="Lead id")

    attribution_parser = subparsers.add_parser("lead-attribution", help="Stored attribution for one lead")
    attribution_parser.add_argument("lead_id", help="Lead id")

    import_parser = subparsers.add_parser("import-meta-leads", help="Import Meta lead-form submissions from JSON")
    import_parser.add_argument("file", help="JSON file with one submission or a list")

    orders_parser = subparsers.add_parser("process-orders", help="Reconcile Shopify orders from JSON")
    orders_parser.add_argument("file", help="JSON file with one order or a list")

    meta_parser = subparsers.add_parser("sync-meta-leads", help="Pull and import Meta lead-form submissions")
    meta_parser.add_argument("--form-id", dest="form_ids", action="append", required=True, help="Lead form id (repeatable)")
    meta_parser.add_argument("--since", type=int, default=None, help="Unix timestamp lower bound")

    shopify_parser = subparsers.add_parser("sync-shopify", help="Pull and reconcile Shopify orders")
    shopify_parser.add_argument("--since", default=None, help="Only orders created after this date")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    init_observability()
    init_db()

    try:
        with get_sync_session() as db:
            output = run_command(args, SqlLeadStore(db))
    except LeadNotFoundError as e:
        _print_json({"success": False, "error": str(e), "leadId": e.lead_id})
        return 1
    except (LeadAttributionError, ShopifyAPIError, MetaLeadsClientError, OSError, json.JSONDecodeError) as e:
        logger.error(f"[CLI] {args.command} failed: {e}")
        _print_json({"success": False, "error": str(e)})
        return 1

    _print_json(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
