"""Gmail API client for fetching payment notification emails.

Notes:
    The Google API client is synchronous. Calls are wrapped with
    `asyncio.to_thread` and retried with `retry_on_failure`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import structlog

from upi_payment_verifier.config import Settings
from upi_payment_verifier.exceptions import AuthenticationError, ConfigurationError, GmailAPIError
from upi_payment_verifier.gmail.parsing import build_payment_search_query, message_to_email_message
from upi_payment_verifier.models import EmailMessage
from upi_payment_verifier.utils import retry_on_failure

logger = structlog.get_logger()


class GmailClient:
    """Read-only Gmail client for payment emails."""

    def __init__(self, settings: Settings | None = None, *, retry_delay: float = 1.0) -> None:
        """Initialize Gmail client.

        Args:
            settings: Application settings. If None, uses default settings.
            retry_delay: Initial delay between retried API calls, in seconds.
        """
        from upi_payment_verifier.config import get_settings

        self.settings = settings or get_settings()
        self.retry_delay = retry_delay
        self._service: Any | None = None
        logger.info("gmail_client_initialized")

    async def authenticate(self) -> None:
        """Authenticate with Gmail API using OAuth2.

        Raises:
            ConfigurationError: If the credentials file is missing.
            AuthenticationError: If authentication fails.
        """

        if self._service is not None:
            return

        credentials_path = Path(self.settings.gmail_credentials_path)
        token_path = Path(self.settings.gmail_token_path)
        scope = self.settings.gmail_scope

        if not credentials_path.exists():
            raise ConfigurationError(f"Gmail credentials file not found: {credentials_path}")

        logger.info(
            "gmail_authentication_started",
            credentials_path=str(credentials_path),
            token_path=str(token_path),
            scope=scope,
        )

        try:
            self._service = await asyncio.to_thread(
                self._build_service,
                credentials_path,
                token_path,
                scope,
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("gmail_authentication_failed", error=str(exc))
            raise AuthenticationError(str(exc)) from exc

        logger.info("gmail_authentication_completed")

    async def list_messages(
        self,
        max_results: int | None = None,
        query: str | None = None,
    ) -> list[dict[str, Any]]:
        """List message ids matching `query`.

        Raises:
            GmailAPIError: If the API request fails after retries.
        """

        await self._ensure_authenticated()
        logger.info("listing_messages", max_results=max_results, query=query)

        try:
            return await asyncio.to_thread(self._retrying(self._list_messages_sync), max_results, query)
        except Exception as exc:  # noqa: BLE001
            logger.exception("gmail_list_messages_failed", error=str(exc))
            raise GmailAPIError(str(exc)) from exc

    async def get_message(self, message_id: str, *, format: str = "full") -> dict[str, Any]:
        """Get a specific message by ID.

        Raises:
            GmailAPIError: If the API request fails after retries.
        """

        await self._ensure_authenticated()
        logger.info("getting_message", message_id=message_id, format=format)

        try:
            return await asyncio.to_thread(self._retrying(self._get_message_sync), message_id, format)
        except Exception as exc:  # noqa: BLE001
            logger.exception("gmail_get_message_failed", message_id=message_id, error=str(exc))
            raise GmailAPIError(str(exc)) from exc

    async def fetch_payment_emails(
        self,
        domains: Iterable[str],
        *,
        newer_than_minutes: int | None = None,
        max_results: int | None = None,
    ) -> list[EmailMessage]:
        """Fetch recent payment notifications from the given sender domains."""

        query = build_payment_search_query(
            domains,
            newer_than_minutes or self.settings.gmail_search_window_minutes,
        )
        refs = await self.list_messages(
            max_results=max_results or self.settings.gmail_max_results,
            query=query,
        )

        emails: list[EmailMessage] = []
        for ref in refs:
            message_id = ref.get("id")
            if not isinstance(message_id, str) or not message_id:
                continue
            raw = await self.get_message(message_id, format="full")
            emails.append(message_to_email_message(raw))

        logger.info("payment_emails_fetched", count=len(emails))
        return emails

    async def _ensure_authenticated(self) -> None:
        if self._service is None:
            raise AuthenticationError(
                "Gmail client is not authenticated. Call await GmailClient.authenticate() first."
            )

    def _retrying(self, func: Any) -> Any:
        return retry_on_failure(max_retries=self.settings.max_retries, delay=self.retry_delay)(func)

    def _build_service(self, credentials_path: Path, token_path: Path, scope: str) -> Any:
        # Imported lazily to keep import-time cost low and tests fast.
        from google.auth.transport.requests import Request
        from google.oauth2.credentials import Credentials
        from google_auth_oauthlib.flow import InstalledAppFlow
        from googleapiclient.discovery import build

        creds: Credentials | None = None
        if token_path.exists():
            creds = Credentials.from_authorized_user_file(str(token_path), scopes=[scope])

        if creds is not None and creds.expired and creds.refresh_token:
            creds.refresh(Request())

        if creds is None or not creds.valid:
            flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), scopes=[scope])
            creds = flow.run_local_server(port=0)
            token_path.parent.mkdir(parents=True, exist_ok=True)
            token_path.write_text(creds.to_json(), encoding="utf-8")

        return build("gmail", "v1", credentials=creds, cache_discovery=False)

    def _list_messages_sync(self, max_results: int | None, query: str | None) -> list[dict[str, Any]]:
        assert self._service is not None
        messages: list[dict[str, Any]] = []

        page_token: str | None = None
        while True:
            if max_results is not None and len(messages) >= max_results:
                break

            remaining = None if max_results is None else max_results - len(messages)
            per_page = 500 if remaining is None else min(500, remaining)

            response = (
                self._service.users()
                .messages()
                .list(userId="me", maxResults=per_page, q=query, pageToken=page_token)
                .execute()
            )
            messages.extend(response.get("messages", []) or [])
            page_token = response.get("nextPageToken")
            if page_token is None:
                break

        return messages if max_results is None else messages[:max_results]

    def _get_message_sync(self, message_id: str, format: str) -> dict[str, Any]:
        assert self._service is not None
        return (
            self._service.users()
            .messages()
            .get(userId="me", id=message_id, format=format)
            .execute()
        )
