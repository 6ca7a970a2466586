from typing import Optional
import logging

import firebase_admin
from firebase_admin import credentials

from ...core.config import Settings, settings as default_settings


logger = logging.getLogger(__name__)


def init_firebase_app(settings: Optional[Settings] = None) -> "firebase_admin.App":
    """Return the default Firebase app, initializing it from settings on first use."""
    settings = settings or default_settings
    if firebase_admin._apps:  # type: ignore[attr-defined]
        return firebase_admin.get_app()
    if not settings.FIREBASE_CLIENT_EMAIL or not settings.FIREBASE_PRIVATE_KEY or not settings.FIREBASE_PROJECT_ID:
        raise RuntimeError("Firebase credentials are not configured")
    cred = credentials.Certificate({
        "type": "service_account",
        "project_id": settings.FIREBASE_PROJECT_ID,
        "private_key": settings.FIREBASE_PRIVATE_KEY,
        "client_email": settings.FIREBASE_CLIENT_EMAIL,
        "token_uri": "https://oauth2.googleapis.com/token",
    })
    app = firebase_admin.initialize_app(cred, {
        "projectId": settings.FIREBASE_PROJECT_ID,
        "storageBucket": settings.FIREBASE_STORAGE_BUCKET or f"{settings.FIREBASE_PROJECT_ID}.appspot.com",
    })
    logger.info("Firebase app initialized")
    return app
