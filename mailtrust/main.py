"""Command-line entry points for MailTrust's scheduled jobs."""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from datetime import date
from typing import Optional

from .classification import aggregate_daily_metrics
from .config import Config, load_config, validate_config
from .models import Message
from .runtime import MailTrustRuntime
from .storage import Database

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date (expected YYYY-MM-DD): {value}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mailtrust",
        description="Email trust and classification engine maintenance jobs.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run_rules = sub.add_parser("run-rules", help="Run all active rules for a user.")
    run_rules.add_argument("--user", required=True)

    classify = sub.add_parser("classify", help="Classify stored messages for a user.")
    classify.add_argument("--user", required=True)
    classify.add_argument(
        "--message-id",
        dest="message_ids",
        action="append",
        default=None,
        help="Message to classify (repeatable; default: every unclassified message).",
    )

    aggregate = sub.add_parser("aggregate-metrics", help="Roll one day of classification logs into daily metrics.")
    aggregate.add_argument("--date", type=_parse_date, default=None, help="UTC day (default: yesterday).")

    sub.add_parser("recalculate-reputation", help="Recompute every stored sender confidence.")

    rebuild = sub.add_parser("rebuild-domains", help="Rebuild domain reputation from stored messages.")
    rebuild.add_argument("--user", required=True)

    sub.add_parser("seed", help="Load heuristic patterns and allow/deny lists into the database.")

    stats = sub.add_parser("stats", help="Print realtime classification stats as JSON.")
    stats.add_argument("--user", required=True)
    stats.add_argument("--days", type=int, default=None)

    return parser


async def seed_database(db: Database, config: Config) -> dict:
    """Upsert configured patterns and domain lists; safe to re-run."""
    for pattern in config.phishing_patterns:
        await db.upsert_phishing_pattern(
            pattern["type"],
            pattern["value"],
            pattern["severity"],
            pattern.get("description", ""),
        )
    for domain, tag in sorted(config.allowlist.items()):
        await db.add_legitimate_domain(domain, category=tag)
    for domain in sorted(config.denylist):
        await db.add_blacklisted_domain(domain, reason="denylist")
    return {
        "patterns": len(config.phishing_patterns),
        "legitimate_domains": len(config.allowlist),
        "blacklisted_domains": len(config.denylist),
    }


async def classify_stored(runtime: MailTrustRuntime, user_id: str, message_ids: Optional[list[str]] = None) -> list:
    """Classify stored messages: the given ids, or every unclassified message in the recent window."""
    db = runtime.database
    if message_ids:
        rows = [await db.get_message(message_id) for message_id in message_ids]
        missing = [mid for mid, row in zip(message_ids, rows) if row is None or row.get("user_id") != user_id]
        for message_id in missing:
            logger.warning("Message %s not found for %s", message_id, user_id)
        rows = [row for row in rows if row and row.get("user_id") == user_id]
    else:
        rows = await db.list_recent_messages(user_id, runtime.config.rules_scan_limit)
        rows = [row for row in rows if not row.get("category")]
    return await runtime.pipeline.classify_batch(user_id, [Message.from_row(row) for row in rows])


async def run_command(args: argparse.Namespace, config: Config) -> int:
    """Run one sub-command with a fully wired runtime; returns the exit code."""
    async with MailTrustRuntime(config) as runtime:
        db = runtime.database
        if args.command == "run-rules":
            batch = await runtime.rules.run_all_rules(args.user)
            if batch.error:
                logger.error("Rules run for %s failed: %s", args.user, batch.error)
                return 1
            logger.info(
                "Ran %d rules for %s: %d messages affected, %d failed",
                batch.rules_run,
                args.user,
                batch.total_affected,
                len(batch.failed),
            )
            return 1 if batch.failed else 0

        if args.command == "classify":
            outcomes = await classify_stored(runtime, args.user, args.message_ids)
            print(
                json.dumps(
                    [
                        {
                            "message_id": o.message_id,
                            "category": o.category,
                            "source": o.source,
                            "confidence": round(o.confidence, 4),
                            "phishing_score": o.phishing.score,
                            "error": o.error,
                        }
                        for o in outcomes
                    ],
                    indent=2,
                )
            )
            return 1 if any(not o.success for o in outcomes) else 0

        if args.command == "aggregate-metrics":
            result = await aggregate_daily_metrics(db, args.date)
            return 0 if result.success else 1

        if args.command == "recalculate-reputation":
            summary = await runtime.senders.recalculate_all()
            return 1 if summary["errors"] else 0

        if args.command == "rebuild-domains":
            summary = await runtime.domains.rebuild_domain_reputation(args.user)
            return 0 if summary["success"] else 1

        if args.command == "seed":
            counts = await seed_database(db, config)
            runtime.pattern_cache.invalidate()
            logger.info(
                "Seeded %d patterns, %d legitimate domains, %d blacklisted domains",
                counts["patterns"],
                counts["legitimate_domains"],
                counts["blacklisted_domains"],
            )
            return 0

        if args.command == "stats":
            days = args.days if args.days is not None else config.metrics_window_days
            stats = await runtime.classification_log.get_realtime_stats(args.user, days=days)
            print(json.dumps(asdict(stats), indent=2, sort_keys=True))
            return 1 if stats.error else 0

        logger.error("Unknown command: %s", args.command)
        return 2


def main(argv: Optional[list[str]] = None) -> None:
    """Entry point."""
    args = build_parser().parse_args(argv)
    config = load_config()
    _configure_logging(config.log_level)

    validation_errors = validate_config(config)
    if validation_errors:
        for err in validation_errors:
            logger.error(err)
        sys.exit(1)

    sys.exit(asyncio.run(run_command(args, config)))


if __name__ == "__main__":
    main()
