"""
Firebase configuration.

Initializes the Firebase Admin SDK once per process and hands out the
Firestore client. get_db() returns None when Firestore cannot be reached so
callers can report the service as unavailable.
"""

import logging

import firebase_admin
from firebase_admin import credentials, firestore
from google.auth.exceptions import DefaultCredentialsError

from config.settings import settings

logger = logging.getLogger(__name__)

_db = None


def _initialize_app():
    if firebase_admin._apps:
        return firebase_admin.get_app()

    options = {}
    if settings.FIREBASE_PROJECT_ID:
        options["projectId"] = settings.FIREBASE_PROJECT_ID

    if settings.FIREBASE_CREDENTIALS:
        cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS)
    else:
        # Application default credentials (Cloud Functions, emulator, gcloud login)
        cred = credentials.ApplicationDefault()
    return firebase_admin.initialize_app(cred, options or None)


def get_db():
    """
    Get the Firestore client.

    Returns:
        google.cloud.firestore.Client | None: The client, or None if the
        Firebase app could not be initialized.
    """
    global _db
    if _db is not None:
        return _db

    try:
        app = _initialize_app()
        _db = firestore.client(app)
    except (ValueError, OSError, DefaultCredentialsError) as exc:
        logger.error("Firestore initialization failed: %s", exc)
        return None
    return _db
