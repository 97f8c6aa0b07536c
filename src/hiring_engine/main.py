"""
Main entry point for the Hiring Workflow Engine.

Operator commands: create the schema, run one reminder sweep, or print a
company's free interview slots.
"""

import argparse
import asyncio
import logging
import sys
from datetime import date

from hiring_engine.config import get_settings
from hiring_engine.db.repository import SqlAlchemyHiringStore
from hiring_engine.errors import HiringError
from hiring_engine.integrations.collaborators import (
    HttpChatService,
    HttpCompanyGate,
    HttpJobDirectory,
    HttpNotificationService,
)
from hiring_engine.orchestrator.dispatcher import EventDispatcher
from hiring_engine.orchestrator.hiring_orchestrator import HiringOrchestrator
from hiring_engine.scheduling.reminders import ReminderScheduler


def setup_logging() -> None:
    """Configure application logging."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hiring-engine", description="Hiring workflow engine operator tools")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create database tables")
    commands.add_parser("sweep-reminders", help="Run one reminder sweep and dispatch the events")

    slots = commands.add_parser("slots", help="Print a company's free interview slots for a day")
    slots.add_argument("--company", required=True, help="Company id")
    slots.add_argument("--date", required=True, type=date.fromisoformat, help="Day (YYYY-MM-DD)")
    slots.add_argument("--duration", type=int, default=30, help="Interview length in minutes")
    return parser


async def init_db(store: SqlAlchemyHiringStore) -> None:
    logger = logging.getLogger(__name__)
    await store.create_tables()
    logger.info("Database tables created")


async def sweep_reminders(store: SqlAlchemyHiringStore) -> int:
    """
    Run one reminder sweep.

    Returns:
        Number of events delivered.
    """
    logger = logging.getLogger(__name__)
    notifications = HttpNotificationService()
    try:
        events = await ReminderScheduler(store).sweep()
        report = await EventDispatcher(notifications).dispatch(events)
    finally:
        await notifications.close()
    logger.info(f"Reminder sweep: {report.delivered} delivered, {report.failed} failed")
    return report.delivered


async def print_slots(store: SqlAlchemyHiringStore, company_id: str, on_date: date, duration: int) -> None:
    orchestrator = HiringOrchestrator(
        store=store,
        job_directory=HttpJobDirectory(),
        company_gate=HttpCompanyGate(),
        chat_service=HttpChatService(),
    )
    slots = await orchestrator.get_available_slots(company_id, on_date, duration)
    if not slots:
        print(f"No free {duration}-minute slots for {company_id} on {on_date.isoformat()}")
        return
    for slot in slots:
        print(f"{slot.date.isoformat()} {slot.start_time}-{slot.end_time}")


async def run(argv: list[str] | None = None) -> None:
    """Parse arguments and run the selected command."""
    args = build_parser().parse_args(argv)
    store = SqlAlchemyHiringStore()
    try:
        if args.command == "init-db":
            await init_db(store)
        elif args.command == "sweep-reminders":
            await sweep_reminders(store)
        elif args.command == "slots":
            await print_slots(store, args.company, args.date, args.duration)
    finally:
        await store.close()


def main() -> None:
    """Main entry point for the application."""
    setup_logging()

    try:
        asyncio.run(run(sys.argv[1:]))
    except KeyboardInterrupt:
        sys.exit(0)
    except HiringError as e:
        logging.error(f"{e.code}: {e.message}")
        sys.exit(2)
    except Exception as e:
        logging.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
