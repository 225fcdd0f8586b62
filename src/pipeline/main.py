"""Command-line entry point.

Usage:
    python -m src.pipeline.main propose          # proposer loop
    python -m src.pipeline.main review --once    # one reviewer iteration
"""

import argparse
import logging
import sys
import threading
from typing import Optional

from src.analysis.report import ReviewReportWriter
from src.catalog.client import CatalogClient
from src.changes.applier import OperationApplier
from src.changes.queue import FileChangeQueue
from src.changes.stager import ChangeStager
from src.config import PipelineConfig
from src.llm.rotation import MultiKeyUpstreamClient
from src.pipeline.loop import install_signal_handlers, run_loop
from src.pipeline.proposer import ProposerAgent
from src.pipeline.reviewer import ReviewerAgent
from src.store.db import Database

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Keep request-level chatter out of the agent logs
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Course QA pipeline: proposer and reviewer agents")
    parser.add_argument("role", choices=["propose", "review"], help="Which agent loop to run")
    parser.add_argument("--once", action="store_true", help="Run a single iteration and exit")
    parser.add_argument("--init-schema", action="store_true", help="Create tables before starting")
    return parser


def run(role: str, config: PipelineConfig, once: bool = False, init_schema: bool = False) -> None:
    db = Database(config.database_url, config.sqlite_path)
    if init_schema:
        db.init_schema()
    catalog = CatalogClient(config.catalog_api_url, db)
    stop_event = threading.Event()
    install_signal_handlers(stop_event)

    try:
        if role == "propose":
            agent = ProposerAgent(
                config,
                catalog,
                ChangeStager(config.changes_dir),
                MultiKeyUpstreamClient(config.require_api_keys(), config.agent_model),
            )
            sleep_ms = config.loop_sleep_ms
        else:
            agent = ReviewerAgent(
                config,
                catalog,
                OperationApplier(db),
                FileChangeQueue(config.changes_dir),
                MultiKeyUpstreamClient(config.require_api_keys(), config.reviewer_model),
                ReviewReportWriter(config.reviewer_reports_dir),
            )
            sleep_ms = config.reviewer_loop_sleep_ms

        logger.info(f"Starting {role} agent ({db.backend_name}, catalog {config.catalog_api_url})")
        run_loop(agent.run_iteration, sleep_ms, stop_event=stop_event, label=role, once=once)
    finally:
        catalog.close()
        db.close()
        logger.info("Connections closed")


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = PipelineConfig.from_env()
    configure_logging(config.log_level)
    run(args.role, config, once=args.once, init_schema=args.init_schema)
    return 0


if __name__ == "__main__":
    sys.exit(main())
