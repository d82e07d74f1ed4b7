"""
Firebase Admin app factory.

The notifier never touches the SDK's default global app: callers obtain an
explicit ``firebase_admin.App`` handle here and pass it to the Firestore
directory and FCM sender they construct.
"""

from __future__ import annotations

import logging
from typing import Optional

import firebase_admin
from firebase_admin import credentials

from backend.app.core.config import Settings

logger = logging.getLogger(__name__)

APP_NAME = "emergency-notifier"


def get_firebase_app(settings: Settings, name: str = APP_NAME) -> firebase_admin.App:
    """
    Return the named Firebase app, initialising it on first use.

    Uses a service-account file when FIREBASE_CREDENTIALS_PATH is set,
    otherwise Google application default credentials.
    """
    try:
        return firebase_admin.get_app(name)
    except ValueError:
        pass  # not initialised yet

    if settings.FIREBASE_CREDENTIALS_PATH:
        cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS_PATH)
    else:
        cred = credentials.ApplicationDefault()

    options: Optional[dict] = None
    if settings.FIREBASE_PROJECT_ID:
        options = {"projectId": settings.FIREBASE_PROJECT_ID}

    app = firebase_admin.initialize_app(cred, options, name=name)
    logger.info(
        "Firebase app '%s' initialised (project=%s)",
        name, settings.FIREBASE_PROJECT_ID or "default",
    )
    return app
