"""
Main entry point for the ClearQuest investigative decision engine.
"""

import argparse
import asyncio
import json
import logging
import sys

from clearquest_ide.config import get_settings
from clearquest_ide.db.repository import SqlEntityStore
from clearquest_ide.extraction.base import FactExtractor
from clearquest_ide.extraction.llm import LLMFactExtractor
from clearquest_ide.extraction.rule_based import RuleBasedFactExtractor
from clearquest_ide.models.llm_client import LLMClient
from clearquest_ide.orchestrator.incident_orchestrator import IncidentOrchestrator
from clearquest_ide.selftest import (
    SELFTEST_PACK_ID,
    SELFTEST_PREFIX,
    SELFTEST_SESSION_ID,
    build_selftest_store,
    run_self_test,
)


def setup_logging() -> None:
    """Configure application logging."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser."""
    parser = argparse.ArgumentParser(prog="clearquest-ide")
    commands = parser.add_subparsers(dest="command", required=True)

    selftest = commands.add_parser("selftest", help="Run the readiness self-test")
    selftest.add_argument("--json", action="store_true", help="Print the report as JSON")

    commands.add_parser("init-db", help="Create the entity store tables")

    demo = commands.add_parser("demo", help="Probe one synthetic incident interactively")
    demo.add_argument(
        "--extractor",
        choices=["rules", "llm"],
        default="rules",
        help="Fact extractor to use",
    )
    return parser


async def run_selftest(as_json: bool) -> int:
    """Run the self-test and print the report. Returns the exit code."""
    report = await run_self_test()
    if as_json:
        payload = report.model_dump(mode="json")
        payload["passed"] = report.passed
        payload["summary"] = report.summary
        print(json.dumps(payload, indent=2))
    else:
        for check in report.checks:
            status = "PASS" if check.passed else "FAIL"
            print(f"[{status}] {check.name}: {check.detail}")
        print(report.summary)
    return 0 if report.passed else 1


async def run_init_db() -> int:
    """Create the entity store schema in the configured database."""
    settings = get_settings()
    logger = logging.getLogger(__name__)

    store = SqlEntityStore.from_url(settings.database_url, echo=settings.debug)
    try:
        await store.create_schema()
    finally:
        await store.dispose()
    logger.info("Entity store schema created")
    return 0


async def run_demo(extractor_name: str) -> int:
    """
    Probe a synthetic prior-application incident from the terminal.

    The candidate's answers are read from stdin; clarifiers are printed
    until the discretion engine stops.
    """
    settings = get_settings()
    logger = logging.getLogger(__name__)

    extractor: FactExtractor
    if extractor_name == "llm":
        logger.debug(f"Using LLM model: {settings.llm_model_name}")
        llm_client = LLMClient(
            model=settings.llm_model_name,
            timeout=settings.llm_timeout,
            max_retries=settings.llm_max_retries,
        )
        extractor = LLMFactExtractor(llm_client)
    else:
        extractor = RuleBasedFactExtractor()

    store = build_selftest_store()
    orchestrator = await IncidentOrchestrator.from_store(store, extractor=extractor, settings=settings)
    await orchestrator.ledger.append_welcome_message(SELFTEST_SESSION_ID)

    incident = await orchestrator.open_incident(
        SELFTEST_SESSION_ID, SELFTEST_PACK_ID, f"{SELFTEST_PREFIX}DEMO", instance_number=1
    )
    if incident is None:
        print("AI probing is not enabled for the demo pack.")
        return 1

    print("Tell us about your prior law enforcement application.")
    while True:
        answer = await asyncio.to_thread(input, "> ")
        turn = await orchestrator.process_answer(SELFTEST_SESSION_ID, incident.incident_id, answer)
        if turn.next_question:
            print(turn.next_question)
            continue

        print(f"Done ({turn.decision.stop_reason}), {turn.completion_percent}% of required facts collected.")
        for key, value in turn.incident.fact_state.facts.items():
            print(f"  {key}: {value if value is not None else '-'}")
        return 0


async def run(argv: list[str] | None = None) -> int:
    """Parse arguments and dispatch to a command."""
    args = build_parser().parse_args(argv)

    if args.command == "selftest":
        return await run_selftest(args.json)
    if args.command == "init-db":
        return await run_init_db()
    return await run_demo(args.extractor)


def main() -> None:
    """Main entry point for the application."""
    setup_logging()

    try:
        sys.exit(asyncio.run(run(sys.argv[1:])))
    except KeyboardInterrupt:
        print("\nSession terminated by user.")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
