"""
Overwatch: react to filesystem changes with ordered shell/SQL actions.

Usage:
    overwatch --config /path/to/overwatch.toml
    overwatch --config /path/to/overwatch.toml --dry-run
"""

import argparse
import json
import logging
import logging.handlers
import signal
import sys
import threading

from overwatch.config import load_config, reactor_params
from overwatch.errors import ConfigurationError
from overwatch.evaluator import RegexEvaluator
from overwatch.monitor import DirectoryMonitor
from overwatch.reactors import build_reactors, reactor_ids
from overwatch.runner import HealthServer, PipelineRunner
from overwatch.shell import ShellPoolHandle
from overwatch.sql import SqlSink

LOG_FORMAT = "%(asctime)s %(name)-20s %(levelname)-5s %(message)s"

# level names accepted in addition to the standard logging ones
LEVEL_ALIASES = {
    "warn": logging.WARNING,
    "verbose": logging.DEBUG,
    "silly": logging.DEBUG,
}


def parse_level(name: str) -> int:
    name = (name or "info").lower()
    if name in LEVEL_ALIASES:
        return LEVEL_ALIASES[name]
    return getattr(logging, name.upper(), logging.INFO)


def configure_logging(log_cfg: dict, level_override: str = None):
    """Console logging, plus a rotating file when ``logging.file`` is set."""
    level = parse_level(level_override or log_cfg.get("level"))
    handlers = [logging.StreamHandler()]
    if log_cfg.get("file"):
        handlers.append(logging.handlers.RotatingFileHandler(
            log_cfg["file"],
            maxBytes=int(log_cfg.get("maxsize", 10485760)),
            backupCount=int(log_cfg.get("maxfiles", 20)),
        ))
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,
    )


def build_pipeline(config: dict, dry_run: bool = False) -> PipelineRunner:
    """Wire evaluator, reactor chain and runner from a validated config."""
    evaluator_cfg = config["evaluator"]
    reactor_cfg = config["reactor"]

    shell_pool = ShellPoolHandle.from_config(reactor_cfg.get("shell", {}))
    reactors = build_reactors(
        evaluator_cfg["reactors"],
        reactor_params(config),
        shell_pool=shell_pool,
        sql_sink_factory=lambda: SqlSink.from_config(reactor_cfg.get("db", {})),
        dry_run=dry_run,
    )
    evaluator = RegexEvaluator(evaluator_cfg["events"], evaluator_cfg["regex"], reactor_ids(reactors))
    return PipelineRunner(
        evaluator,
        reactors,
        workers=int(config["runner"].get("workers", 4)),
        dry_run=dry_run,
    )


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Overwatch: react to filesystem changes",
        epilog="Reactor targets and sqlInsert values may use: "
               "{{ioEvent.context.timestamp}} {{ioEvent.eventType}} {{ioEvent.fullPath}} "
               "{{ioEvent.parentPath}} {{ioEvent.parentName}} {{ioEvent.filename}} "
               "{{ioEvent.uuid}} {{ioEvent.context.<kind>.target}}",
    )
    parser.add_argument("--config", required=True, help="Path to TOML config file")
    parser.add_argument("--dry-run", action="store_true", help="Log commands but don't execute them")
    parser.add_argument("--log-level", default=None, help="Override log level (debug, info, warn, error)")
    parser.add_argument("--print-config", action="store_true", help="Print the merged config and exit")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    if args.print_config:
        print(json.dumps(config, indent=2, default=str))
        return 0

    configure_logging(config["logging"], args.log_level)
    log = logging.getLogger("overwatch")
    dry_run = args.dry_run or bool(config["runner"].get("dry_run"))

    try:
        runner = build_pipeline(config, dry_run=dry_run)
    except ConfigurationError as e:
        log.error("Configuration error: %s", e)
        return 1
    log.info("Reactor chain: %s", " -> ".join(runner.reactor_ids))

    monitor_cfg = config["monitor"]
    monitor = DirectoryMonitor(
        monitor_cfg["dir"],
        runner.submit,
        stability_threshold=int(monitor_cfg.get("stability_threshold", 30000)),
        poll_interval=int(monitor_cfg.get("poll_interval", 1000)),
        recursive=bool(monitor_cfg.get("recursive", True)),
    )

    health = None
    if config["runner"].get("health_port"):
        health = HealthServer(int(config["runner"]["health_port"]), runner)
        health.start()

    stop = threading.Event()

    # Graceful shutdown on SIGTERM/SIGINT
    def handle_signal(signum, frame):
        stop.set()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    try:
        monitor.start()
    except OSError as e:
        log.error("Cannot watch %s: %s", monitor_cfg["dir"], e)
        runner.close(wait=False)
        return 1

    stop.wait()
    log.info("Shutting down...")
    monitor.stop()
    if health:
        health.stop()
    runner.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
