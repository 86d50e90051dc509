"""
MAIN ORCHESTRATOR
==================
Command-line entry point for the hotel yield engine.

Usage:
    python main.py init-db                              # Create tables
    python main.py serve                                # Run the job scheduler
    python main.py run-job hourly_price_update          # Run one job now
    python main.py price H1 DELUXE 2026-12-24 --nights 3
    python main.py analyze H1 2026-11-01 2026-11-30
    python main.py report H1 --days 7
"""
import argparse
import json
import logging
import os
import sys
import time
from datetime import datetime

from dotenv import load_dotenv

# Environment must be loaded before config modules read it
load_dotenv()

# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------
LOG_DIR = os.getenv("YIELD_LOG_DIR", "logs")
os.makedirs(LOG_DIR, exist_ok=True)
logging.basicConfig(
    level=os.getenv("YIELD_LOG_LEVEL", "INFO"),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    handlers=[
        logging.FileHandler(
            os.path.join(LOG_DIR, f"yield_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log")
        ),
        logging.StreamHandler(sys.stdout),
    ],
)
logger = logging.getLogger("orchestrator")

PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

from config.scheduler_config import JOB_CONFIG
from utils.db_utils import get_sqlalchemy_engine, test_connection
from utils.events import CollectingEventSink, LoggingEventSink, CallbackEventSink
from utils.repository import YieldRepository
from agents.yield_jobs import YieldJobs
from agents.scheduler_agent import YieldScheduler


def build_jobs(engine):
    """Wire repository, agents and an event sink that both logs and collects.
    Returns (jobs, collected_sink)."""
    repository = YieldRepository(engine)
    collected = CollectingEventSink()
    log_sink = LoggingEventSink()
    sink = CallbackEventSink([collected.deliver, log_sink.deliver])
    return YieldJobs(repository, sink=sink), collected


def _connect():
    engine = get_sqlalchemy_engine()
    if not test_connection(engine):
        logger.error("[ERROR] Database connection failed. Aborting.")
        sys.exit(1)
    return engine


def cmd_init_db(args):
    repository = YieldRepository(_connect())
    repository.create_schema()
    logger.info("[OK] Database schema ready")


def cmd_serve(args):
    jobs, _ = build_jobs(_connect())
    scheduler = YieldScheduler(jobs)
    scheduler.start()
    logger.info("=" * 60)
    logger.info("   YIELD ENGINE -- SCHEDULER RUNNING (Ctrl+C to stop)")
    logger.info("=" * 60)
    for name, when in scheduler.next_run_times().items():
        logger.info(f"  {name:<26} next run {when}")
    try:
        while True:
            time.sleep(60)
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutdown requested")
    finally:
        scheduler.stop()
        stats = scheduler.get_status()["statistics"]
        logger.info(f"  Runs: {stats['total_runs']} "
                    f"({stats['successful_runs']} ok, {stats['failed_runs']} failed)")


def cmd_run_job(args):
    jobs, collected = build_jobs(_connect())
    scheduler = YieldScheduler(jobs)
    run = scheduler.trigger(args.job)
    logger.info("=" * 60)
    logger.info(f"  {args.job}: {run.status} in {run.duration_ms:.0f}ms")
    if run.error:
        logger.info(f"  Error: {run.error}")
    for hotel_id, error in run.result.get("errors", {}).items():
        logger.info(f"  Hotel {hotel_id} failed: {error}")
    events = collected.events
    logger.info(f"  Events emitted: {len(events)}")
    for event in events:
        logger.info(f"    {event.category} hotel={event.hotel_id}")
    logger.info("=" * 60)
    if run.status != "SUCCEEDED":
        sys.exit(1)


def cmd_price(args):
    jobs, _ = build_jobs(_connect())
    stay = jobs.calculator.quote_stay(args.hotel_id, args.room_type, args.date, args.nights,
                                      customer_segment=args.segment)
    logger.info("=" * 60)
    logger.info(f"  Hotel {args.hotel_id} / {args.room_type}, check-in {stay['check_in']}, "
                f"{stay['nights']} nights")
    for quote in stay["quotes"]:
        flag = " (fallback)" if quote.fallback else ""
        logger.info(f"    {quote.date}  base {quote.base_price:>9.2f}  "
                    f"final {quote.final_price:>9.2f}  {quote.demand_level}{flag}")
    logger.info(f"  Total: {stay['total']:.2f}")
    logger.info("=" * 60)
    if args.json:
        print(json.dumps({**stay, "quotes": [q.to_record() for q in stay["quotes"]]}, indent=2))


def cmd_analyze(args):
    jobs, _ = build_jobs(_connect())
    snapshot = jobs.analyzer.analyze(args.hotel_id, args.start, args.end)
    print(json.dumps(snapshot.to_dict(), indent=2, default=str))


def cmd_report(args):
    jobs, _ = build_jobs(_connect())
    summary = jobs.reporter.daily_summary(args.hotel_id, args.date)
    overview = jobs.reporter.history_overview(args.hotel_id, days=args.days)
    logger.info("=" * 60)
    logger.info(f"  Hotel {args.hotel_id} on {summary['date']}: occupancy "
                f"{summary['occupancy_rate']:.1f}%, ADR {summary['adr']:.2f}, "
                f"RevPAR {summary['revpar']:.2f}")
    for rec in summary["recommendations"]:
        logger.info(f"    [{rec['priority']}] {rec['message']}")
    logger.info(f"  Last {args.days} days: {overview['days']} summaries, "
                f"avg occupancy {overview['avg_occupancy_rate']:.1f}%, "
                f"revenue {overview['total_revenue']:.2f}")
    logger.info("=" * 60)


def main():
    parser = argparse.ArgumentParser(
        description="Hotel yield engine -- dynamic pricing and scheduled yield jobs"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create all tables that do not exist yet.")
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser("serve", help="Start the job scheduler and block.")
    p.set_defaults(func=cmd_serve)

    p = sub.add_parser("run-job", help="Run one yield job once, now.")
    p.add_argument("job", choices=sorted(JOB_CONFIG))
    p.set_defaults(func=cmd_run_job)

    p = sub.add_parser("price", help="Quote a stay.")
    p.add_argument("hotel_id")
    p.add_argument("room_type")
    p.add_argument("date", help="Check-in date (YYYY-MM-DD)")
    p.add_argument("--nights", type=int, default=1)
    p.add_argument("--segment", default=None, help="Customer segment, e.g. CORPORATE")
    p.add_argument("--json", action="store_true", help="Also print the quotes as JSON.")
    p.set_defaults(func=cmd_price)

    p = sub.add_parser("analyze", help="Demand analysis for a date window.")
    p.add_argument("hotel_id")
    p.add_argument("start")
    p.add_argument("end")
    p.set_defaults(func=cmd_analyze)

    p = sub.add_parser("report", help="Daily yield summary and recent history.")
    p.add_argument("hotel_id")
    p.add_argument("--date", default=None, help="Day to summarize (default: yesterday)")
    p.add_argument("--days", type=int, default=30)
    p.set_defaults(func=cmd_report)

    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
