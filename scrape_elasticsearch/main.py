"""Main application entry point for the Prometheus to Elasticsearch scrape agent."""

import argparse
import asyncio
import logging
import os
import platform
import sys
from typing import List, Optional

import httpx
import yaml
from pydantic import ValidationError

from .collectors.prometheus_collector import PrometheusCollector
from .config.loader import ConfigLoader
from .config.models import ScrapeAgentConfig
from .services.discovery import DiscoveryError, MongoDiscovery, create_mongo_client
from .services.elasticsearch_client import ElasticsearchSink
from .services.forwarder import Forwarder
from .shutdown import ShutdownCoordinator
from .supervisor import WorkerSupervisor
from .utils.logger import setup_logger
from .utils.metrics import ScrapeTarget

__version__ = "0.1.0"

NAME = "scrape-elasticsearch"

EXIT_CODE_OK = 0
EXIT_CODE_ERROR = 1


class ScrapeAgentApp:
    """
    Main scrape agent application.

    Builds the shared clients, discovers targets, runs one poll worker
    per target and blocks until a termination signal has been fully
    handled.
    """

    def __init__(
        self,
        config_path: str = "config/config.yaml",
        username: Optional[str] = None,
        password: Optional[str] = None,
        worker: Optional[int] = None,
        debug: bool = False,
        logger: logging.Logger = None
    ):
        """
        Initialize scrape agent application.

        Args:
            config_path: Path to configuration file
            username: Elasticsearch username, overrides the config file
            password: Elasticsearch password, overrides the config file
            worker: Number of forwarder writers, overrides the config file
            debug: Log every forwarded document
            logger: Optional logger instance
        """
        self.config_path = config_path
        self.debug = debug
        self.logger = logger or setup_logger("scrape_elasticsearch")

        self.logger.info(f"{NAME} version: {__version__}")
        self.logger.info(
            f"Python version: {platform.python_version()} ({sys.platform}/{platform.machine()})"
        )
        self.logger.info(f"Num of CPU: {os.cpu_count()}")

        self.config = self._apply_overrides(self._load_config(), username, password, worker)

    def _load_config(self) -> ScrapeAgentConfig:
        """
        Load and validate configuration.

        Returns:
            ScrapeAgentConfig: Loaded configuration

        Raises:
            SystemExit: If configuration is missing or invalid
        """
        try:
            self.logger.info(f"Loading configuration from {self.config_path}")
            config = ConfigLoader.load_from_file(self.config_path)
            self.logger.info("Configuration loaded successfully")
            return config

        except FileNotFoundError:
            self.logger.error(
                f"Configuration file not found: {self.config_path}\n"
                "Please create config/config.yaml from config/config.example.yaml"
            )
            sys.exit(EXIT_CODE_ERROR)

        except (yaml.YAMLError, ValidationError, ValueError) as e:
            self.logger.error(f"Failed to load configuration: {e}")
            sys.exit(EXIT_CODE_ERROR)

    @staticmethod
    def _apply_overrides(
        config: ScrapeAgentConfig,
        username: Optional[str],
        password: Optional[str],
        worker: Optional[int]
    ) -> ScrapeAgentConfig:
        es_update = {}
        if username:
            es_update["username"] = username
        if password:
            es_update["password"] = password

        update = {}
        if es_update:
            update["elasticsearch"] = config.elasticsearch.model_copy(update=es_update)
        if worker:
            update["forwarder"] = config.forwarder.model_copy(
                update={"max_concurrency": max(1, worker)}
            )

        return config.model_copy(update=update) if update else config

    async def run(self) -> int:
        """
        Run until a termination signal has been handled.

        Returns:
            int: Process exit code
        """
        config = self.config

        if not config.scrape_endpoints:
            self.logger.error("Could not find any scrape endpoint configuration")

        try:
            sink = ElasticsearchSink(config.elasticsearch, logger=self.logger)
        except Exception as e:
            self.logger.error(f"Failed to create Elasticsearch client: {e}", exc_info=True)
            return EXIT_CODE_ERROR

        mongo_client = None
        http_client = httpx.AsyncClient()

        try:
            mongo_client = create_mongo_client(config.mongodb)
            discovery = MongoDiscovery.from_config(
                mongo_client, config.mongodb, config.scrape_endpoints, self.logger
            )

            try:
                targets, intervals = await discovery.discover_all(config.scrape_endpoints)
            except DiscoveryError as e:
                self.logger.error(f"Failed to load service instances: {e}")
                return EXIT_CODE_ERROR

            if not targets:
                self.logger.warning("No scrape targets discovered, waiting for shutdown")

            forwarder = Forwarder(
                sink,
                max_concurrency=config.forwarder.max_concurrency,
                queue_size=config.forwarder.queue_size,
                write_timeout=config.elasticsearch.timeout_seconds,
                logger=self.logger,
                debug=self.debug
            )
            forwarder.start()

            def collector_factory(target: ScrapeTarget) -> PrometheusCollector:
                return PrometheusCollector(
                    target, http_client, config.scrape.timeout_seconds, self.logger
                )

            supervisor = WorkerSupervisor(
                collector_factory,
                forwarder,
                intervals,
                scrape_config=config.scrape,
                logger=self.logger
            )

            coordinator = ShutdownCoordinator(supervisor, forwarder, self.logger)
            coordinator.install()

            supervisor.start(targets)

            refresher = None
            refresh_interval = config.discovery.refresh_interval_seconds
            if refresh_interval:
                async def rediscover() -> List[ScrapeTarget]:
                    found, _ = await discovery.discover_all(config.scrape_endpoints)
                    return found

                refresher = asyncio.create_task(
                    supervisor.refresh_loop(rediscover, refresh_interval),
                    name="rediscovery"
                )
                self.logger.info(f"Re-discovering targets every {refresh_interval}s")

            await coordinator.wait()
            coordinator.uninstall()

            if refresher is not None:
                await refresher

        finally:
            await http_client.aclose()
            await sink.close()
            if mongo_client is not None:
                await mongo_client.close()

        self.logger.info(f"Finished {NAME}")
        return EXIT_CODE_OK


def main(argv: Optional[List[str]] = None):
    """
    CLI entry point.

    Parses command-line arguments and runs the agent until interrupted.
    """
    parser = argparse.ArgumentParser(
        prog=NAME,
        description='HTTP agent scraping Prometheus endpoints and forwarding the samples to Elasticsearch',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with the default configuration file
  scrape-elasticsearch

  # Use custom config file and sink credentials
  scrape-elasticsearch --config /path/to/config.yaml --username elastic --password secret

  # Log every forwarded document
  scrape-elasticsearch --debug
        """
    )

    parser.add_argument(
        '--config',
        default='config/config.yaml',
        help='Path to configuration file (default: config/config.yaml)'
    )

    parser.add_argument(
        '--username',
        default=None,
        help='Elasticsearch username (overrides the configuration file)'
    )

    parser.add_argument(
        '--password',
        default=None,
        help='Elasticsearch password (overrides the configuration file)'
    )

    parser.add_argument(
        '--worker',
        type=int,
        default=None,
        help='Number of forwarder writers (default: forwarder.max_concurrency from config)'
    )

    parser.add_argument(
        '--log-level',
        default=os.getenv('LOG_LEVEL', 'INFO'),
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: INFO or LOG_LEVEL env var)'
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        help='Log every forwarded document (implies --log-level DEBUG)'
    )

    parser.add_argument(
        '--version',
        action='store_true',
        help='Show version and exit'
    )

    args = parser.parse_args(argv)

    if args.version:
        print(f"{NAME} version {__version__}", file=sys.stderr)
        sys.exit(EXIT_CODE_OK)

    level = 'DEBUG' if args.debug else args.log_level
    logger = setup_logger("scrape_elasticsearch", level)
    logger.info(f"LogLevel: {level}")

    try:
        app = ScrapeAgentApp(
            config_path=args.config,
            username=args.username,
            password=args.password,
            worker=args.worker,
            debug=args.debug,
            logger=logger
        )
        exit_code = asyncio.run(app.run())

    except Exception as e:
        logger.error(f"Application startup failed: {e}", exc_info=True)
        exit_code = EXIT_CODE_ERROR

    sys.exit(exit_code)


if __name__ == '__main__':
    main()
