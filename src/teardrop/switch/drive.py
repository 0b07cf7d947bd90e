# ABOUTME: Google Drive client that shares a protected item with a recipient
# ABOUTME: Creates reader permissions over the Drive v3 REST API with refreshable google-auth credentials

import asyncio
import logging

import google.auth
import google.oauth2.credentials
import httpx
from google.auth.credentials import Credentials
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request

from teardrop.switch.classifier import GrantOutcome, classify_grant
from teardrop.switch.config import DriveConfig

logger = logging.getLogger(__name__)

DRIVE_API_BASE = "https://www.googleapis.com/drive/v3"
DRIVE_SCOPES = ["https://www.googleapis.com/auth/drive"]

# Recipients only ever get to view released items
VIEWER_ROLE = "reader"


def load_credentials(config: DriveConfig) -> Credentials:
    """
    Load Google credentials for the Drive API.

    Order: credentials_file, then a fixed access_token, then application
    default credentials.

    Raises:
        google.auth.exceptions.DefaultCredentialsError: If no credentials can be found
    """
    if config.credentials_file:
        credentials, _ = google.auth.load_credentials_from_file(
            str(config.credentials_file), scopes=DRIVE_SCOPES
        )
        logger.info(f"Loaded Drive credentials from {config.credentials_file}")
        return credentials

    if config.access_token:
        logger.warning("Using a fixed Drive access token, grants will fail once it expires")
        return google.oauth2.credentials.Credentials(token=config.access_token)

    credentials, _ = google.auth.default(scopes=DRIVE_SCOPES)
    logger.info("Using application default credentials for Drive")
    return credentials


class DriveClient:
    """Grants view access on Drive items."""

    def __init__(self, config: DriveConfig):
        self.config = config
        self._http_client: httpx.AsyncClient | None = None
        self._credentials: Credentials | None = None
        # Set after a 401 so the next grant refreshes even if the token looks valid
        self._token_rejected = False

    async def start(self) -> None:
        """Initialize async resources and load credentials."""
        self._credentials = load_credentials(self.config)
        self._http_client = httpx.AsyncClient(timeout=30.0)

    async def stop(self) -> None:
        """Clean up async resources."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            raise RuntimeError("DriveClient not started")
        return self._http_client

    @property
    def credentials(self) -> Credentials:
        if self._credentials is None:
            raise RuntimeError("DriveClient not started")
        return self._credentials

    async def _authorization(self) -> dict[str, str]:
        """
        Bearer header for the current access token, refreshing it first if needed.

        Raises:
            GoogleAuthError: If the credentials cannot be refreshed
        """
        credentials = self.credentials
        if self._token_rejected or not credentials.valid:
            # google-auth refreshes synchronously over requests
            await asyncio.to_thread(credentials.refresh, Request())
            self._token_rejected = False
            logger.info("Refreshed Drive access token")
        return {"Authorization": f"Bearer {credentials.token}"}

    async def grant_access(self, file_id: str, recipient: str, role: str = VIEWER_ROLE) -> GrantOutcome:
        """
        Give a recipient access to a Drive item.

        Transport and credential errors are reported as GrantOutcome.FAILED
        rather than raised, so the caller can decide whether to retry.

        Args:
            file_id: Drive file ID
            recipient: E-mail address to share with
            role: Drive permission role

        Returns:
            GrantOutcome for this call
        """
        url = f"{DRIVE_API_BASE}/files/{file_id}/permissions"
        params = {
            "sendNotificationEmail": str(self.config.send_notification_email).lower(),
            "supportsAllDrives": "true",
        }
        body = {
            "role": role,
            "type": "user",
            "emailAddress": recipient,
        }

        try:
            headers = await self._authorization()
        except GoogleAuthError as e:
            logger.warning(f"Could not refresh Drive credentials to share {file_id}: {e}")
            return GrantOutcome.FAILED

        try:
            response = await self.http_client.post(url, params=params, json=body, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"Sharing {file_id} with {recipient} failed: {e}")
            return GrantOutcome.FAILED

        if response.status_code == 401:
            self._token_rejected = True

        outcome = classify_grant(response.status_code)
        if not outcome.is_success:
            logger.warning(
                f"Sharing {file_id} with {recipient} returned {response.status_code}: {response.text}"
            )
        return outcome
