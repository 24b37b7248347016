"""Environment settings and validation."""

import os
import re
from typing import List, Optional


class Settings:
    """Application settings from environment variables."""

    REQUIRED_VARS = [
        "SERVER",
        "USERNAME",
        "PASSWORD",
    ]

    @staticmethod
    def get(key: str, default: Optional[str] = None, required: bool = False) -> str:
        """
        Get environment variable value.

        Args:
            key: Environment variable name
            default: Default value if not set
            required: Whether the variable is required

        Returns:
            str: Environment variable value

        Raises:
            ValueError: If required variable is not set
        """
        value = os.getenv(key, default)
        if required and not value:
            raise ValueError(f"Required environment variable not set: {key}")
        return value or ""

    @staticmethod
    def get_bool(key: str, default: bool) -> bool:
        """
        Get a boolean flag. When set, only the exact string "true" is true.

        Args:
            key: Environment variable name
            default: Value used when the variable is unset

        Returns:
            bool: Parsed flag
        """
        value = os.getenv(key)
        if value is None:
            return default
        return value == "true"

    @staticmethod
    def get_int(key: str, default: int) -> int:
        """
        Get an integer from the leading digits of the value.

        Unset, unparsable and zero values fall back to the default, so
        ``PORT=0`` means the default port and ``1433abc`` reads as 1433.

        Args:
            key: Environment variable name
            default: Fallback value

        Returns:
            int: Parsed value
        """
        match = re.match(r"\s*[+-]?\d+", os.getenv(key, ""))
        value = int(match.group()) if match else 0
        return value or default

    @staticmethod
    def missing_required() -> List[str]:
        """Names of required variables that are unset or empty."""
        return [var for var in Settings.REQUIRED_VARS if not os.getenv(var)]

    @staticmethod
    def validate_required() -> None:
        """
        Validate that all required environment variables are set.

        Raises:
            ValueError: If any required variable is missing
        """
        missing = Settings.missing_required()
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")
