#!/usr/bin/env python3
"""
PyDistrib Worker
Boots a worker identity, discovers the coordinating server on the local
network and completes the handshake with it.

Exit codes: 0 established, 1 retries exhausted, 2 broken environment or
invalid configuration, 130 interrupted.
"""

import argparse
import logging
import sys
from dataclasses import replace

import yaml
from prometheus_client import start_http_server

from pydistrib_worker.controller.config_loader import ConfigLoader, WorkerConfig
from pydistrib_worker.controller.orchestrator import ConnectionOrchestrator
from pydistrib_worker.identity import WorkerIdentity

logger = logging.getLogger("pydistrib_worker")

EXIT_ESTABLISHED = 0
EXIT_RETRIES_EXHAUSTED = 1
EXIT_FATAL = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pydistrib-worker",
        description="Discover a PyDistrib server via multicast and handshake with it"
    )
    parser.add_argument('--config', help="Path to worker YAML config")
    parser.add_argument('--max-retries', type=int, help="Attempts before giving up")
    parser.add_argument('--listen-timeout', type=float, help="Seconds to wait for an announcement")
    parser.add_argument('--handshake-timeout', type=float, help="Seconds to wait for the ack")
    parser.add_argument('--backoff', type=float, help="Initial delay between attempts in seconds")
    parser.add_argument('--metrics-port', type=int, help="Prometheus metrics port (0 disables)")
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    return parser


def apply_args(config: WorkerConfig, args: argparse.Namespace) -> WorkerConfig:
    """Command-line flags take precedence over file and environment"""
    overrides = {}
    if args.max_retries is not None:
        overrides['max_retries'] = args.max_retries
    if args.listen_timeout is not None:
        overrides['listen_timeout'] = args.listen_timeout
    if args.handshake_timeout is not None:
        overrides['handshake_timeout'] = args.handshake_timeout
    if args.metrics_port is not None:
        overrides['metrics_port'] = args.metrics_port
    if args.backoff is not None:
        overrides['backoff'] = replace(config.backoff, initial_delay=args.backoff)
    return replace(config, **overrides) if overrides else config


def main(argv=None, orchestrator_factory=ConnectionOrchestrator) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(levelname)s - [%(name)s] %(message)s'
    )

    try:
        config = apply_args(ConfigLoader.load(args.config), args)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_FATAL

    if not ConfigLoader.validate(config):
        return EXIT_FATAL

    if config.metrics_port:
        try:
            start_http_server(config.metrics_port)
        except OSError as e:
            logger.error(f"Cannot start metrics server on :{config.metrics_port}: {e}")
            return EXIT_FATAL
        logger.info(f"Metrics server listening on :{config.metrics_port}/metrics")

    identity = WorkerIdentity.generate()
    logger.info(f"Booting worker id {identity}")

    orchestrator = orchestrator_factory(config, identity=identity)
    try:
        outcome = orchestrator.connect()
    except OSError as e:
        logger.error(f"Fatal network environment error: {e}", exc_info=True)
        return EXIT_FATAL
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down worker")
        return EXIT_INTERRUPTED

    if outcome.established:
        host, port = outcome.server_address
        logger.info(f"Handshake established with {host}:{port} after {outcome.attempts} attempt(s)")
        return EXIT_ESTABLISHED

    logger.error(f"Failed to reach a server after {outcome.attempts} attempts ({outcome.reason})")
    return EXIT_RETRIES_EXHAUSTED


if __name__ == "__main__":
    sys.exit(main())
