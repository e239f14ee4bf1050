import json
import logging
from typing import Optional

import firebase_admin
from firebase_admin import credentials, firestore, messaging
from firebase_admin.exceptions import FirebaseError

from .config import settings
from .exceptions import DeliveryError, IdentityLookupError
from .schemas import DeliveryPayload, Identity, identity_from_document

logger = logging.getLogger(__name__)


class FirebaseClient:
    """Firebase client used as the user directory and the FCM notifier."""

    def __init__(self, app: Optional[firebase_admin.App] = None, firestore_db=None):
        """
        Initialize the Firebase client.

        Args:
            app: An already initialized Firebase app, borrowed rather than owned
            firestore_db: Firestore client, created from the app when omitted
        """
        self.app = app
        self.firestore_db = firestore_db
        self.initialize()

    def initialize(self) -> None:
        """Borrow the default Firebase app or initialize one from settings."""
        if self.app is None:
            try:
                self.app = firebase_admin.get_app()
                logger.info("Retrieved existing Firebase app")
            except ValueError:
                self.app = self._initialize_app()

        if self.firestore_db is None:
            self.firestore_db = firestore.client(self.app)

    def _initialize_app(self) -> firebase_admin.App:
        credential = self._load_credential()
        try:
            app = firebase_admin.initialize_app(
                credential=credential,
                options={"httpTimeout": settings.fcm_http_timeout},
            )
        except ValueError:
            # Another invocation initialized the default app first
            app = firebase_admin.get_app()
            logger.info("Retrieved Firebase app initialized concurrently")
            return app
        logger.info(f"Firebase app initialized. App name: {app.name}")
        return app

    @staticmethod
    def _load_credential() -> credentials.Base:
        cert_json = settings.firebase_secret
        if not cert_json:
            # Running inside Google Cloud, rely on the runtime service account
            logger.info("Firebase secret not configured, using application default credentials")
            return credentials.ApplicationDefault()

        cert_dict = json.loads(cert_json)
        if isinstance(cert_dict, str):
            cert_dict = json.loads(cert_dict)
        return credentials.Certificate(cert_dict)

    def get(self, user_id: str) -> Optional[Identity]:
        """
        Get a user's display name and FCM token from Firestore.

        Args:
            user_id: The user's ID

        Returns:
            The user's Identity, or None if the user document does not exist
        """
        try:
            user_ref = self.firestore_db.collection(settings.users_collection).document(user_id)
            user = user_ref.get(timeout=settings.firestore_timeout)
        except Exception as e:
            raise IdentityLookupError(f"Error fetching user {user_id}: {str(e)}") from e

        if not user.exists:
            return None
        return identity_from_document(user_id, user.to_dict())

    def send(self, token: str, payload: DeliveryPayload) -> str:
        """
        Send a push notification to a single device.

        Args:
            token: FCM registration token of the device
            payload: Notification content

        Returns:
            The FCM message ID
        """
        message = messaging.Message(
            notification=messaging.Notification(
                title=payload.title,
                body=payload.body
            ),
            data=payload.data(),
            android=messaging.AndroidConfig(
                notification=messaging.AndroidNotification(sound=payload.sound)
            ),
            apns=messaging.APNSConfig(
                payload=messaging.APNSPayload(aps=messaging.Aps(sound=payload.sound))
            ),
            token=token
        )

        try:
            return messaging.send(message, dry_run=settings.fcm_dry_run, app=self.app)
        except FirebaseError as e:
            raise DeliveryError(f"Firebase error sending notification: {str(e)}", code=e.code) from e
        except ValueError as e:
            raise DeliveryError(f"Invalid notification message: {str(e)}") from e
