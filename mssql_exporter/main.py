"""Main application entry point for the SQL Server Prometheus exporter."""

import argparse
import logging
import os
import sys

import uvicorn
from prometheus_client import CollectorRegistry

from .collectors.executor import QueryExecutor
from .collectors.mssql import build_collectors
from .collectors.orchestrator import CollectionOrchestrator
from .config.loader import ConfigLoader
from .config.models import ExporterConfig
from .database.connection import ConnectionFactory
from .server import create_app
from .utils.logger import setup_logger


class ExporterApp:
    """
    Exporter process.

    Validates configuration, wires the collectors, connection factory and
    orchestrator into the HTTP application and serves it with uvicorn.
    """

    def __init__(self, host: str = "0.0.0.0", log_level: str = None):
        """
        Initialize exporter application.

        Args:
            host: Address to bind the HTTP listener to
            log_level: Overrides LOG_LEVEL from the environment

        Raises:
            SystemExit: If configuration is invalid
        """
        self.host = host
        self.logger = setup_logger(
            "mssql_exporter",
            log_level or os.getenv("LOG_LEVEL", "INFO"),
            capture=("uvicorn",)
        )
        self.config = self._load_config()
        if log_level:
            self.config.log_level = log_level

        self.registry = CollectorRegistry()
        self.collectors = build_collectors(self.registry)
        self.factory = ConnectionFactory(self.config.connection, self.logger)
        self.orchestrator = CollectionOrchestrator(
            self.collectors,
            self.factory,
            QueryExecutor(self.logger),
            self.logger
        )
        self.app = create_app(
            self.collectors,
            self.factory,
            self.registry,
            self.logger,
            orchestrator=self.orchestrator
        )
        self.logger.info(f"Registered {len(self.collectors)} collector(s)")

    def _load_config(self) -> ExporterConfig:
        """
        Load and validate configuration from the environment.

        Returns:
            ExporterConfig: Loaded configuration

        Raises:
            SystemExit: If configuration is invalid
        """
        try:
            return ConfigLoader.load_from_env()
        except Exception as e:
            self.logger.error(f"Failed to load configuration: {e}")
            sys.exit(1)

    def run(self) -> None:
        """Serve until SIGINT/SIGTERM; uvicorn closes the listener on shutdown."""
        self.logger.info(
            f"Prometheus-MSSQL Exporter listening on local port {self.config.listen_port} "
            f"monitoring {self.config.connection.address}"
        )
        uvicorn.run(
            self.app,
            host=self.host,
            port=self.config.listen_port,
            log_level=self.config.log_level.lower(),
            log_config=None,
            access_log=False
        )
        if self.orchestrator.pending:
            self.logger.info(f"Exiting with {self.orchestrator.pending} background collection(s) abandoned")


def main():
    """
    CLI entry point.

    Connection settings come from the environment (SERVER, USERNAME,
    PASSWORD, PORT, ENCRYPT, TRUST_SERVER_CERTIFICATE, EXPOSE).
    """
    parser = argparse.ArgumentParser(
        description='Prometheus exporter for Microsoft SQL Server',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve on the port from EXPOSE (default 4000)
  SERVER=db.example.com USERNAME=exporter PASSWORD=secret mssql-exporter

  # Log every query and its rows
  mssql-exporter --log-level DEBUG
        """
    )

    parser.add_argument(
        '--host',
        default='0.0.0.0',
        help='Address to bind the HTTP listener to (default: 0.0.0.0)'
    )

    parser.add_argument(
        '--log-level',
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: LOG_LEVEL env var or INFO)'
    )

    args = parser.parse_args()

    try:
        app = ExporterApp(host=args.host, log_level=args.log_level)
        app.run()
    except Exception as e:
        logging.error(f"Application startup failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
