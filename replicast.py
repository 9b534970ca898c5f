import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

from definitions import DATA_DIR, DEFAULT_CONFIG_FILE, ROOT_DIR
from replication.errors import ConfigurationError, ReplicationError
from replication.identity_map import IdentityMap
from replication.orchestrator import EVENTS, SyncOrchestrator
from stores.json_host import JsonHost
from utils.config import build_destinations, load_config, settings_from_config
from utils.http import Transport
from utils.log import log_startup_info, setup_logging
from utils.status_monitor import StatusMonitor

logger = logging.getLogger("replicast")


def _resolve_path(value, default: Path) -> Path:
    if not value:
        return default
    path = Path(value)
    return path if path.is_absolute() else ROOT_DIR / path


def parse_args(argv=None):
    # fmt: off
    parser = argparse.ArgumentParser(description="Replicate one local entity to its destinations.")
    parser.add_argument("--config", type=str, default=os.getenv("REPLICAST_CONFIG", str(DEFAULT_CONFIG_FILE)), help="Path to the configuration file (default: config/config.yaml or $REPLICAST_CONFIG).")
    parser.add_argument("--event", choices=EVENTS, required=True, help="What happened to the entity.")
    parser.add_argument("--kind", choices=("post", "attachment", "term"), required=True, help="Entity kind.")
    parser.add_argument("--id", type=int, required=True, help="Local id of the entity.")
    parser.add_argument("--taxonomy", type=str, default=None, help="Taxonomy of a term (defaults to the stored one).")
    parser.add_argument("--console", action="store_true", help="Write logs to console instead of a file.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser.add_argument("--dry-run", action="store_true", help="Plan the replication without calling any destination.")
    # fmt: on
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """
    Entry point: load config, build the engine and run one event.

    Returns the process exit code: 0 when every destination succeeded, 1 otherwise.
    """
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        setup_logging({}, console=True)
        logger.critical("Cannot start: %s", e)
        return 1

    setup_logging(config, console=args.console, debug=args.debug)
    log_startup_info(args, config)

    script_cfg = config.get("script", {}) or {}
    settings = settings_from_config(config, dry_run=args.dry_run)
    if settings.dry_run:
        logger.info("Dry run: no destination will be contacted and no replica set will change.")

    monitor = StatusMonitor(_resolve_path(script_cfg.get("status_file"), DATA_DIR / "status.json"))
    monitor.set_status("RUNNING")

    transport = Transport.from_config(config)
    try:
        host = JsonHost(str(_resolve_path(script_cfg.get("data_file"), DATA_DIR / "replicast.json")), settings)
        orchestrator = SyncOrchestrator(
            host,
            build_destinations(config),
            transport,
            settings=settings,
            monitor=monitor,
            identity_map=IdentityMap(host),
        )

        entity = host.entity(args.kind, args.id, args.taxonomy)
        report = asyncio.run(orchestrator.dispatch(args.event, entity))

        logger.info("Report: %s", json.dumps(report.as_dict(), default=str))
        monitor.set_status("IDLE" if report.ok else "ERROR")
        return 0 if report.ok else 1

    except ReplicationError as e:
        logger.error("Replication aborted: %s", e, exc_info=True)
        monitor.record_error(str(e))
        monitor.set_status("ERROR")
        return 1

    finally:
        transport.close()
        monitor.shutdown()


if __name__ == "__main__":
    sys.exit(main())
