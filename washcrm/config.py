"""
Wash CRM Configuration
Loads settings from environment variables with sensible defaults.
"""

import logging
import os
from pathlib import Path
from dotenv import load_dotenv

_logger = logging.getLogger(__name__)

# Load .env file
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(env_path)


class Config:
    """Application configuration."""

    # Database: must be set in .env; never hardcode credentials here
    DATABASE_URL = os.getenv('DATABASE_URL')
    if not DATABASE_URL:
        _logger.critical("DATABASE_URL is not set, cannot start. Copy .env.example to .env and configure it.")
        raise ValueError("DATABASE_URL environment variable is not set. Copy .env.example to .env and configure it.")

    DB_CONNECT_TIMEOUT_SECONDS = int(os.getenv('DB_CONNECT_TIMEOUT_SECONDS', '10'))
    DB_STATEMENT_TIMEOUT_MS = int(os.getenv('DB_STATEMENT_TIMEOUT_MS', '15000'))

    # Timezone
    TIMEZONE = os.getenv('TIMEZONE', 'Europe/Warsaw')

    # Offers
    DEFAULT_VAT_RATE = int(os.getenv('DEFAULT_VAT_RATE', '23'))

    # Actor recorded in completed_by / approved_by when the caller sets none
    DEFAULT_ACTOR_ID = os.getenv('DEFAULT_ACTOR_ID') or None

    # Best-effort secondary writes (reminder batch, event reschedule)
    SECONDARY_WRITE_ATTEMPTS = max(1, int(os.getenv('SECONDARY_WRITE_ATTEMPTS', '2')))


# Singleton instance
config = Config()
