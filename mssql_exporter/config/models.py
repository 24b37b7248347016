"""Pydantic configuration models for the exporter."""

from pydantic import BaseModel, Field, SecretStr, field_validator


class ConnectionConfig(BaseModel):
    """SQL Server connection parameters."""
    server: str
    username: str
    password: SecretStr
    port: int = Field(default=1433, ge=1, le=65535)
    encrypt: bool = True
    trust_server_certificate: bool = True
    appname: str = "mssql-exporter"
    login_timeout: int = Field(default=15, ge=0)

    @field_validator('server', 'username')
    @classmethod
    def not_blank(cls, v: str) -> str:
        """Reject empty host or login."""
        if not v.strip():
            raise ValueError('must not be empty')
        return v

    @property
    def address(self) -> str:
        """Loggable ``user@server:port`` description without the password."""
        return f"{self.username}@{self.server}:{self.port}"


class ExporterConfig(BaseModel):
    """Root configuration model for the exporter process."""
    connection: ConnectionConfig
    listen_port: int = Field(default=4000, ge=1, le=65535)
    log_level: str = "INFO"

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and check the log level name."""
        level = v.upper()
        if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f'Unknown log level: {v}')
        return level
