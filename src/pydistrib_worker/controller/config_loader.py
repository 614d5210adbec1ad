#!/usr/bin/env python3
"""
Worker Configuration Loader
Parses an optional worker.yaml, applies PYDISTRIB_* environment overrides
and provides the result to the connection orchestrator
"""

import ipaddress
import logging
import os
from dataclasses import dataclass, field, replace
from typing import Optional

import yaml

from pydistrib_worker.protocol import DISCOVERY_PORT, MULTICAST_GROUP_V4

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackoffPolicy:
    """Delay inserted between a failed attempt and the next one"""
    initial_delay: float = 0.0
    multiplier: float = 2.0
    max_delay: float = 10.0

    def delay_for(self, attempt: int) -> float:
        """Delay after failed ``attempt`` (1-based)"""
        if self.initial_delay <= 0:
            return 0.0
        return min(self.max_delay, self.initial_delay * self.multiplier ** (attempt - 1))


@dataclass(frozen=True)
class WorkerConfig:
    """Complete worker configuration"""
    multicast_group: str = MULTICAST_GROUP_V4
    discovery_port: int = DISCOVERY_PORT
    listen_timeout: float = 30.0
    handshake_timeout: float = 30.0
    max_retries: int = 5
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    metrics_port: int = 0


# env var -> (section, key, type); section None means top level
ENV_OVERRIDES = {
    'PYDISTRIB_MULTICAST_GROUP': (None, 'multicast_group', str),
    'PYDISTRIB_DISCOVERY_PORT': (None, 'discovery_port', int),
    'PYDISTRIB_LISTEN_TIMEOUT': (None, 'listen_timeout', float),
    'PYDISTRIB_HANDSHAKE_TIMEOUT': (None, 'handshake_timeout', float),
    'PYDISTRIB_MAX_RETRIES': (None, 'max_retries', int),
    'PYDISTRIB_METRICS_PORT': (None, 'metrics_port', int),
    'PYDISTRIB_BACKOFF_INITIAL': ('backoff', 'initial_delay', float),
    'PYDISTRIB_BACKOFF_MULTIPLIER': ('backoff', 'multiplier', float),
    'PYDISTRIB_BACKOFF_MAX': ('backoff', 'max_delay', float),
}


class ConfigLoader:
    """Loads and validates worker configuration"""

    @staticmethod
    def load(config_path: Optional[str] = None) -> WorkerConfig:
        """Load configuration from YAML file (if given) with environment overrides"""
        config = WorkerConfig()

        if config_path:
            try:
                with open(config_path, 'r') as f:
                    raw = yaml.safe_load(f) or {}

                logger.info(f"Loaded configuration from {config_path}")
                config = ConfigLoader._parse_config(raw)

            except FileNotFoundError:
                logger.error(f"Config file not found: {config_path}")
                raise
            except yaml.YAMLError as e:
                logger.error(f"YAML parsing error: {e}")
                raise

        return ConfigLoader.from_env(config)

    @staticmethod
    def _parse_config(config: dict) -> WorkerConfig:
        """Parse configuration dictionary, falling back to defaults per key"""
        defaults = WorkerConfig()

        if not isinstance(config, dict):
            raise ValueError(f"Config root must be a mapping, got {type(config).__name__}")

        backoff_raw = config.get('backoff') or {}
        if not isinstance(backoff_raw, dict):
            raise ValueError(f"'backoff' must be a mapping, got {type(backoff_raw).__name__}")

        def value(section, key, cast, default):
            raw = section.get(key, default)
            try:
                return cast(raw)
            except (TypeError, ValueError) as e:
                raise ValueError(f"Invalid value for '{key}': {raw!r}") from e

        backoff = BackoffPolicy(
            initial_delay=value(backoff_raw, 'initial_delay', float, defaults.backoff.initial_delay),
            multiplier=value(backoff_raw, 'multiplier', float, defaults.backoff.multiplier),
            max_delay=value(backoff_raw, 'max_delay', float, defaults.backoff.max_delay)
        )

        return WorkerConfig(
            multicast_group=str(config.get('multicast_group', defaults.multicast_group)),
            discovery_port=value(config, 'discovery_port', int, defaults.discovery_port),
            listen_timeout=value(config, 'listen_timeout', float, defaults.listen_timeout),
            handshake_timeout=value(config, 'handshake_timeout', float, defaults.handshake_timeout),
            max_retries=value(config, 'max_retries', int, defaults.max_retries),
            backoff=backoff,
            metrics_port=value(config, 'metrics_port', int, defaults.metrics_port)
        )

    @staticmethod
    def from_env(config: WorkerConfig, environ=None) -> WorkerConfig:
        """Apply PYDISTRIB_* environment variables on top of ``config``"""
        environ = os.environ if environ is None else environ

        top_level = {}
        backoff_level = {}
        for env_name, (section, key, cast) in ENV_OVERRIDES.items():
            value = environ.get(env_name)
            if value is None or value == '':
                continue
            target = backoff_level if section == 'backoff' else top_level
            target[key] = cast(value)
            logger.debug(f"Override {key}={target[key]} from {env_name}")

        if backoff_level:
            top_level['backoff'] = replace(config.backoff, **backoff_level)

        return replace(config, **top_level) if top_level else config

    @staticmethod
    def validate(config: WorkerConfig) -> bool:
        """Validate configuration consistency"""

        try:
            group = ipaddress.ip_address(config.multicast_group)
        except ValueError:
            logger.error(f"Invalid multicast group address: {config.multicast_group}")
            return False

        if group.version != 4:
            logger.error(f"IPv6 discovery group {config.multicast_group} is not supported")
            return False

        if not group.is_multicast:
            logger.error(f"{config.multicast_group} is not a multicast address")
            return False

        if not 0 < config.discovery_port <= 65535:
            logger.error(f"discovery_port out of range: {config.discovery_port}")
            return False

        if not 0 <= config.metrics_port <= 65535:
            logger.error(f"metrics_port out of range: {config.metrics_port}")
            return False

        if config.listen_timeout <= 0 or config.handshake_timeout <= 0:
            logger.error("Timeouts must be > 0")
            return False

        if config.max_retries < 1:
            logger.error("max_retries must be >= 1")
            return False

        backoff = config.backoff
        if backoff.initial_delay < 0 or backoff.max_delay < 0:
            logger.error("Backoff delays must be >= 0")
            return False

        if backoff.multiplier < 1:
            logger.error("Backoff multiplier must be >= 1")
            return False

        logger.info("Configuration validation passed")
        return True
