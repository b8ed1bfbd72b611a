"""Environment variable validation and service settings."""

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_FORK_TITLE_ATTEMPTS = 50


class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass


@dataclass(frozen=True)
class Settings:
    """Resolved configuration handed to the stores at construction time."""

    assessment_dir: Path
    legacy_assessment_dir: Optional[Path]
    legacy_assessments_enabled: bool
    fork_title_attempts: int = DEFAULT_FORK_TITLE_ATTEMPTS

    @property
    def legacy_dir(self) -> Optional[Path]:
        """Legacy id space, or ``None`` when the toggle is off."""
        if not self.legacy_assessments_enabled:
            return None
        return self.legacy_assessment_dir


def validate_environment() -> None:
    """Validate critical environment variables.

    Raises EnvironmentError if validation fails.
    """
    # Nothing is strictly required; every setting has a usable default.
    required_vars: Dict[str, str] = {}

    defaults = {
        "DB_PATH": os.getenv("DB_PATH") or "data.db",
        "ASSESSMENT_DIR": os.getenv("ASSESSMENT_DIR") or "assessments",
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars = {
        "LEGACY_ASSESSMENT_DIR": "Read-only directory of legacy quiz_<id>.json definitions",
    }

    missing = []
    for var, description in required_vars.items():
        if not os.getenv(var):
            missing.append(f"{var} ({description})")

    if missing:
        raise EnvironmentError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    attempts = os.getenv("FORK_TITLE_ATTEMPTS")
    if attempts is not None:
        try:
            if int(attempts) < 1:
                raise ValueError
        except ValueError:
            raise EnvironmentError(f"Invalid integer for FORK_TITLE_ATTEMPTS: {attempts}")

    if get_env_bool("LEGACY_ASSESSMENTS_ENABLED") and not os.getenv("LEGACY_ASSESSMENT_DIR"):
        raise EnvironmentError(
            "LEGACY_ASSESSMENTS_ENABLED is set but LEGACY_ASSESSMENT_DIR is missing"
        )

    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.warning(f"Optional environment variable not set: {var} ({description})")


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}


def load_settings() -> Settings:
    """Build :class:`Settings` from the current environment."""
    legacy_raw = os.getenv("LEGACY_ASSESSMENT_DIR")
    attempts_raw = os.getenv("FORK_TITLE_ATTEMPTS")
    return Settings(
        assessment_dir=Path(os.getenv("ASSESSMENT_DIR") or "assessments"),
        legacy_assessment_dir=Path(legacy_raw) if legacy_raw else None,
        legacy_assessments_enabled=get_env_bool("LEGACY_ASSESSMENTS_ENABLED"),
        fork_title_attempts=int(attempts_raw) if attempts_raw else DEFAULT_FORK_TITLE_ATTEMPTS,
    )
