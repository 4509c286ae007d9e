#!/usr/bin/env python3
"""
Command line entry point for the options decision pipeline.

Usage:
    options-pipeline replay events.ndjson --db data_cache/ledger.db
    options-pipeline query --decision EXECUTE --ticker SPY --limit 20
    options-pipeline stats
    options-pipeline audit --decision EXECUTE --report

Replay files hold one JSON object per line:
    {"kind": "signal" | "phase" | "trend", "payload": {...}, "received_at": "..."}
``received_at`` is optional; without it the line is processed at the
current time. The pipeline evaluates the signal's ticker after every
signal line.

``audit`` exits with 3 when any replayed decision differs from the ledger.
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from config.constants import MAX_QUERY_LIMIT, ExitReason, Verdict
from config.logging_config import LogCategory, setup_logging
from config.settings import load_settings
from core.domain.ledger import LedgerQuery
from data.payloads import PayloadValidationError
from execution.audit import generate_audit_report, replay_batch
from execution.ledger import LedgerError, SQLiteLedger, calculate_aggregates
from execution.pipeline import DecisionPipeline

logger = logging.getLogger(__name__)

INGESTORS = {
    "signal": "ingest_signal",
    "phase": "ingest_phase",
    "trend": "ingest_trend",
}


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _emit(data: Any) -> None:
    print(json.dumps(data, default=str))


def cmd_replay(args: argparse.Namespace, settings) -> int:
    path = Path(args.file)
    if not path.exists():
        logger.error(f"Replay file not found: {path}")
        return 1

    rejected = 0
    with DecisionPipeline(settings) as pipeline, path.open(encoding="utf-8") as handle:
        for line_no, line in enumerate(handle, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
                if not isinstance(record, dict):
                    raise ValueError(f"expected a JSON object, got {type(record).__name__}")
                kind = record["kind"]
                method = getattr(pipeline, INGESTORS[kind])
                now = _parse_time(record.get("received_at"))
                outcome = method(record["payload"], now=now)
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                # PayloadValidationError is a ValueError; TypeError covers a non-string received_at
                rejected += 1
                detail = e.to_dict() if isinstance(e, PayloadValidationError) else str(e)
                logger.warning(f"{LogCategory.INGEST} Line {line_no} rejected: {detail}")
                continue

            if kind != "signal":
                continue
            ticker = outcome.stored.signal.ticker
            try:
                result = pipeline.evaluate(ticker, now=now)
            except LedgerError as e:
                logger.error(f"{LogCategory.LEDGER} Line {line_no}: {e}")
                return 2
            _emit({
                "line": line_no,
                "ticker": result.snapshot.ticker,
                "decision": result.verdict.value,
                "reason": result.entry.decision_reason if result.entry else result.decision.reason,
                "confluence_score": result.decision.confluence_score,
                "final_multiplier": result.decision.breakdown.final_multiplier,
                "contracts": result.execution.filled_contracts if result.execution else 0,
                "entry_id": result.entry.id if result.entry else None,
            })

        flushed = pipeline.flush_pending()
        logger.info(
            f"Replay finished: engine={pipeline.engine.get_statistics()}, "
            f"rejected={rejected}, flushed={flushed}"
        )
    return 0


def _build_query(args: argparse.Namespace, limit: int) -> LedgerQuery:
    yes_no = {"yes": True, "no": False}
    return LedgerQuery(
        decision=Verdict(args.decision) if args.decision else None,
        ticker=args.ticker,
        timeframe=args.timeframe,
        min_confluence=args.min_confluence,
        max_confluence=args.max_confluence,
        exit_reason=ExitReason(args.exit_reason) if args.exit_reason else None,
        has_exit=yes_no.get(args.has_exit),
        has_hypothetical=yes_no.get(args.has_hypothetical),
        from_date=_parse_time(args.from_date),
        to_date=_parse_time(args.to_date),
        limit=limit,
        offset=getattr(args, "offset", 0),
    )


def cmd_query(args: argparse.Namespace, settings) -> int:
    with SQLiteLedger(config=settings.ledger) as ledger:
        entries = ledger.query(_build_query(args, args.limit))
    for entry in entries:
        _emit(entry.to_dict())
    return 0


def _all_entries(ledger: SQLiteLedger, args: argparse.Namespace) -> list:
    entries = []
    offset = 0
    while True:
        page = ledger.query(_build_query(args, MAX_QUERY_LIMIT).model_copy(update={"offset": offset}))
        entries.extend(page)
        if len(page) < MAX_QUERY_LIMIT:
            return entries
        offset += MAX_QUERY_LIMIT


def cmd_stats(args: argparse.Namespace, settings) -> int:
    with SQLiteLedger(config=settings.ledger) as ledger:
        entries = _all_entries(ledger, args)
        storage = ledger.get_statistics()
    _emit({"aggregates": calculate_aggregates(entries), "storage": storage})
    return 0


def cmd_audit(args: argparse.Namespace, settings) -> int:
    with SQLiteLedger(config=settings.ledger) as ledger:
        entries = _all_entries(ledger, args)
    batch = replay_batch(entries)

    for result in batch.results:
        if args.all or not result.is_match:
            _emit(result.to_dict())
    _emit({"audit": batch.summary()})
    if args.report:
        print(generate_audit_report(batch))
    return 3 if batch.mismatches or batch.errors else 0


def _add_filters(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--decision", choices=[v.value for v in Verdict], help="Filter by verdict")
    parser.add_argument("--ticker", type=str, help="Filter by ticker")
    parser.add_argument("--timeframe", type=str, help="Filter by signal timeframe (minutes)")
    parser.add_argument("--has-exit", choices=["yes", "no"], help="Filter on recorded exits")
    parser.add_argument("--exit-reason", choices=[r.value for r in ExitReason], help="Filter by exit reason")
    parser.add_argument("--has-hypothetical", choices=["yes", "no"], help="Filter on hypothetical outcomes")
    parser.add_argument("--min-confluence", type=float, help="Minimum confluence score (0-100)")
    parser.add_argument("--max-confluence", type=float, help="Maximum confluence score (0-100)")
    parser.add_argument("--from-date", type=str, help="ISO start time (inclusive)")
    parser.add_argument("--to-date", type=str, help="ISO end time (inclusive)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="options-pipeline", description="Options decision pipeline (paper trading)"
    )
    parser.add_argument("--db", type=str, default=None, help="Ledger database path (overrides settings)")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides settings)",
    )
    parser.add_argument("--json-logs", action="store_true", help="JSON console logs")
    parser.add_argument("--log-file", type=str, default=None, help="Also write JSON logs to this file")

    sub = parser.add_subparsers(dest="command", required=True)

    replay = sub.add_parser("replay", help="Replay an NDJSON event file through the pipeline")
    replay.add_argument("file", type=str, help="NDJSON file of signal/phase/trend events")
    replay.set_defaults(func=cmd_replay)

    query = sub.add_parser("query", help="List ledger entries as JSON lines")
    _add_filters(query)
    query.add_argument("--limit", type=int, default=100, help=f"Page size (max {MAX_QUERY_LIMIT})")
    query.add_argument("--offset", type=int, default=0, help="Rows to skip")
    query.set_defaults(func=cmd_query)

    stats = sub.add_parser("stats", help="Aggregate statistics over ledger entries")
    _add_filters(stats)
    stats.set_defaults(func=cmd_stats)

    audit = sub.add_parser("audit", help="Replay ledger decisions through the current engine")
    _add_filters(audit)
    audit.add_argument("--all", action="store_true", help="Emit matching entries too")
    audit.add_argument("--report", action="store_true", help="Print a text audit report")
    audit.set_defaults(func=cmd_audit)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings()
    except Exception as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    updates = {}
    if args.db:
        updates["ledger"] = settings.ledger.model_copy(update={"db_path": args.db})
    if args.log_level:
        updates["log_level"] = args.log_level
    if updates:
        settings = settings.model_copy(update=updates)

    setup_logging(level=settings.log_level, json_format=args.json_logs, log_file=args.log_file)

    try:
        return args.func(args, settings)
    except LedgerError as e:
        logger.error(f"{LogCategory.LEDGER} {e}")
        return 2
    except ValueError as e:
        # Bad filter values (pydantic ValidationError is a ValueError)
        logger.error(f"Invalid arguments: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
