# -*- coding: utf-8 -*-
"""
================================================================================
Common Utility Functions
================================================================================
Purpose:
----------------
This module provides the reusable helpers shared by every part of the trip
tracking service: reading credentials and settings, and configuring logging.

Credentials are looked up in a `secrets.txt` file in the project root first
(one `KEY=VALUE` per line) and then in the process environment, so the same
code works on a developer laptop and inside a container.

Key Functions:
- `get_secret(key_name)`: reads a single secret.
- `get_chorus_credentials()`: returns the service account identity, key id
  and private key used to sign carrier API tokens.
- `get_setting(key_name, default, cast)`: reads a non-secret tunable.
- `setup_logging()`: configures a dated log file plus stdout output.
----------------
"""

# =====================================================================================
# --- Imports and Configuration ---
# =====================================================================================
import os
import sys
import logging
from datetime import datetime

logger = logging.getLogger(__name__)

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
# The secrets file is expected to be in the project root.
SECRETS_FILE = os.path.join(PROJECT_ROOT, 'secrets.txt')
# Directory where the dated log files are written.
LOG_DIR = os.path.join(PROJECT_ROOT, 'logs')

# Defaults for the non-secret settings.
DEFAULT_SETTINGS = {
    'CHORUS_API_BASE_URL': 'https://api.chorussystems.net/',
    'CHORUS_REQUEST_TIMEOUT_SECONDS': 30,
    'TRIP_SETTLE_DELAY_SECONDS': 0.1,
    'TRIP_SERVICE_PORT': 8000,
}


# =====================================================================================
# --- Core Functions ---
# =====================================================================================

def _read_secrets_file(key_name):
    """Returns the value for `key_name` from secrets.txt, or None."""
    try:
        with open(SECRETS_FILE, 'r') as f:
            for line in f:
                if line.startswith(key_name + '='):
                    # Split at the first '=' only, values may contain '='.
                    return line.strip().split('=', 1)[1]
    except FileNotFoundError:
        return None
    return None


def get_secret(key_name):
    """
    Reads a secret, first from `secrets.txt`, then from the environment.

    Args:
        key_name (str): The name of the key to retrieve (e.g. "CHORUS_PRIVATE_KEY_ID").

    Returns:
        str or None: The secret value, or None if it is not configured anywhere.
    """
    value = _read_secrets_file(key_name)
    if value:
        return value
    value = os.getenv(key_name)
    if value:
        return value
    logger.warning(f"Key '{key_name}' not found in {SECRETS_FILE} or the environment.")
    return None


def get_setting(key_name, default=None, cast=str):
    """
    Reads a non-secret setting from the environment, falling back to the
    built-in default.

    Args:
        key_name (str): The setting name.
        default: The value used when the setting is absent. When omitted the
                 entry from `DEFAULT_SETTINGS` is used.
        cast (callable): Converts the raw string (e.g. `int`, `float`).

    Returns:
        The converted value.
    """
    if default is None:
        default = DEFAULT_SETTINGS.get(key_name)
    raw = os.getenv(key_name)
    if raw is None or raw == '':
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError):
        logger.warning(f"Invalid value {raw!r} for {key_name}; using default {default!r}.")
        return default


def get_chorus_credentials():
    """
    Retrieves the service account credentials for the Chorus trip API.

    The private key is often stored with escaped newlines (`\\n`) in `.env`
    style files, so those are turned back into real newlines.

    Returns:
        tuple: (client_email, private_key_id, private_key_pem) if all are found.
        tuple: (None, None, None) if any credential is missing.
    """
    client_email = get_secret('CHORUS_CLIENT_EMAIL')
    private_key_id = get_secret('CHORUS_PRIVATE_KEY_ID')
    private_key = get_secret('CHORUS_PRIVATE_KEY')

    if all([client_email, private_key_id, private_key]):
        logger.info("All Chorus API credentials loaded.")
        return client_email, private_key_id, private_key.replace('\\n', '\n')

    logger.error("Could not find all required Chorus API credentials "
                 "(CHORUS_CLIENT_EMAIL, CHORUS_PRIVATE_KEY_ID, CHORUS_PRIVATE_KEY).")
    return None, None, None


def setup_logging(name='trip_workflow', level=logging.INFO):
    """
    Sets up a dated log file and stdout logging for the whole process.

    Args:
        name (str): Prefix for the log file name.
        level (int): The root log level.

    Returns:
        logging.Logger: The root logger.
    """
    os.makedirs(LOG_DIR, exist_ok=True)
    log_filename = datetime.now().strftime(f"{name}_%Y-%m-%d.log")
    log_path = os.path.join(LOG_DIR, log_filename)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
        handlers=[
            logging.FileHandler(log_path),
            logging.StreamHandler(sys.stdout)
        ]
    )
    return logging.getLogger()
