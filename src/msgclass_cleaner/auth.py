"""Microsoft Graph authentication.

Objective:
    Provide a small authentication layer for Microsoft Graph API requests.
    This module is responsible for acquiring an app-only OAuth2 access token
    that can be attached to HTTP requests against any mailbox in the tenant.

Responsibilities:
    - Manage the MSAL ``ConfidentialClientApplication`` lifecycle.
    - Perform client credentials authentication (application permissions).
    - Provide ready-to-use HTTP headers for Graph API calls.

High-level call tree:
    - :class:`GraphAuthenticator`
        - :meth:`GraphAuthenticator.get_auth_headers`
            - :meth:`GraphAuthenticator.get_access_token`
                - :meth:`GraphAuthenticator._get_app`

Operational notes:
    - The application needs the ``Mail.ReadWrite`` application permission
      with admin consent.
    - MSAL keeps app tokens in its in-memory cache and reuses them until
      they expire, so calling :meth:`get_access_token` per request is cheap.
"""

import logging
from typing import Optional

import msal

from .config import Settings

logger = logging.getLogger(__name__)


class GraphAuthenticator:
    """
    Handles Microsoft Graph API authentication using MSAL.

    Attributes:
        settings: Application settings containing Azure AD credentials.
        _app: MSAL confidential client application instance.
    """

    # Application scopes for client credentials flow
    GRAPH_APP_SCOPES = [
        "https://graph.microsoft.com/.default",
    ]

    def __init__(self, settings: Settings) -> None:
        """
        Initialize the authenticator with settings.

        Args:
            settings: Application settings with Azure AD credentials.
        """
        self.settings = settings
        self._app: Optional[msal.ConfidentialClientApplication] = None

    def _get_app(self) -> msal.ConfidentialClientApplication:
        """
        Get or create the MSAL client application.

        Returns:
            msal.ConfidentialClientApplication: MSAL app instance.

        Raises:
            RuntimeError: If no client secret is configured.
        """
        if self._app is None:
            if not self.settings.azure_client_secret:
                raise RuntimeError("AZURE_CLIENT_SECRET must be set for app-only access")

            authority = f"https://login.microsoftonline.com/{self.settings.azure_tenant_id}"
            self._app = msal.ConfidentialClientApplication(
                client_id=self.settings.azure_client_id,
                client_credential=self.settings.azure_client_secret,
                authority=authority,
            )
            logger.debug("Created MSAL confidential client application")
        return self._app

    def get_access_token(self) -> str:
        """
        Acquire an access token using the client credentials flow.

        Returns:
            str: Valid access token for Graph API.

        Raises:
            RuntimeError: If token acquisition fails.
        """
        app = self._get_app()
        result = app.acquire_token_for_client(scopes=self.GRAPH_APP_SCOPES)

        if "access_token" in result:
            return result["access_token"]

        error_description = result.get("error_description", "Unknown error")
        error = result.get("error", "unknown")
        logger.error(f"Failed to acquire token: {error} - {error_description}")
        raise RuntimeError(f"Failed to acquire access token: {error_description}")

    def get_auth_headers(self) -> dict[str, str]:
        """
        Get HTTP headers with authorization for Graph API requests.

        Returns:
            dict[str, str]: Headers dictionary with Bearer token.
        """
        token = self.get_access_token()
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
