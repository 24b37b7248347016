"""Configuration loader reading the process environment."""

from .models import ConnectionConfig, ExporterConfig
from .settings import Settings


class ConfigLoader:
    """Load and validate exporter configuration."""

    @staticmethod
    def load_from_env() -> ExporterConfig:
        """
        Build the exporter configuration from environment variables.

        Variables: SERVER, USERNAME, PASSWORD (required), PORT, ENCRYPT,
        TRUST_SERVER_CERTIFICATE, EXPOSE, LOG_LEVEL.

        Returns:
            ExporterConfig: Validated configuration object

        Raises:
            ValueError: If required variables are missing
            pydantic.ValidationError: If configuration validation fails
        """
        Settings.validate_required()

        connection = ConnectionConfig(
            server=Settings.get("SERVER"),
            username=Settings.get("USERNAME"),
            password=Settings.get("PASSWORD"),
            port=Settings.get_int("PORT", 1433),
            encrypt=Settings.get_bool("ENCRYPT", True),
            trust_server_certificate=Settings.get_bool("TRUST_SERVER_CERTIFICATE", True),
        )

        return ExporterConfig(
            connection=connection,
            listen_port=Settings.get_int("EXPOSE", 4000),
            log_level=Settings.get("LOG_LEVEL", "INFO"),
        )
