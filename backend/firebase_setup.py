"""
Firebase credentials setup for multiple deployment environments.

Supports two methods of providing Firebase credentials:
1. Base64-encoded JSON (FIREBASE_CREDENTIALS_BASE64) - for Railway, Heroku, etc.
2. File path (FIREBASE_CREDENTIALS_PATH) - for local development, VPS

The Realtime Database is only needed when STORAGE_BACKEND=firebase; the
perimeter cache and route links then live under /blob_store.
"""

import os
import json
import base64
import binascii
import logging

import firebase_admin
from firebase_admin import credentials

logger = logging.getLogger(__name__)


def get_firebase_credentials():
    """
    Get Firebase credentials from environment.

    Supports two methods:
    1. FIREBASE_CREDENTIALS_BASE64 - base64 encoded service account JSON (for Railway/Heroku)
    2. FIREBASE_CREDENTIALS_PATH - path to service account JSON file (for local/VPS)

    Returns:
        firebase_admin.credentials.Certificate: Firebase credentials object

    Raises:
        ValueError: If no valid credentials are found
    """
    base64_creds = os.getenv('FIREBASE_CREDENTIALS_BASE64')
    if base64_creds:
        try:
            json_str = base64.b64decode(base64_creds).decode('utf-8')
            cred_dict = json.loads(json_str)
        except (binascii.Error, UnicodeDecodeError, ValueError) as e:
            raise ValueError(f"Failed to decode FIREBASE_CREDENTIALS_BASE64: {e}") from e
        return credentials.Certificate(cred_dict)

    cred_path = os.getenv('FIREBASE_CREDENTIALS_PATH')
    if cred_path and os.path.exists(cred_path):
        return credentials.Certificate(cred_path)

    raise ValueError(
        "No Firebase credentials found. Set either:\n"
        "  - FIREBASE_CREDENTIALS_BASE64 (base64-encoded service account JSON)\n"
        "  - FIREBASE_CREDENTIALS_PATH (path to service account JSON file)\n\n"
        "To generate FIREBASE_CREDENTIALS_BASE64:\n"
        "  base64 -i /path/to/serviceAccount.json | tr -d '\\n'"
    )


def initialize_firebase(database_url):
    """
    Initialize the default Firebase app once per process.

    Args:
        database_url: Realtime Database URL (FIREBASE_DATABASE_URL)

    Returns:
        firebase_admin.App

    Raises:
        ValueError: If the database URL or credentials are missing
    """
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    if not database_url:
        raise ValueError("FIREBASE_DATABASE_URL is required when STORAGE_BACKEND=firebase")

    cred = get_firebase_credentials()
    firebase_app = firebase_admin.initialize_app(cred, {'databaseURL': database_url})
    logger.info("Firebase initialized for blob storage")
    return firebase_app
