"""
Docketwise OAuth token access.

Tokens are issued during account linking (outside this package) and stored in
the `accounts` table with provider_id 'docketwise'. This module reads them and
refreshes expired access tokens with the refresh-token grant.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

import httpx

from config import (
    DOCKETWISE_ACCESS_TOKEN,
    DOCKETWISE_CLIENT_ID,
    DOCKETWISE_CLIENT_SECRET,
    DOCKETWISE_OAUTH_TOKEN_URL,
    HTTP_TIMEOUT_SECONDS,
)
from db.connection import get_connection

logger = logging.getLogger(__name__)

PROVIDER_ID = "docketwise"


class DocketwiseAuthError(Exception):
    """No usable Docketwise token for a user."""


class TokenStorage:
    """Reads and writes the Docketwise row of the accounts table."""

    def load(self, user_id: str) -> Optional[dict]:
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT id, user_id, access_token, refresh_token, access_token_expires_at
                FROM accounts
                WHERE user_id = %s AND provider_id = %s
                ORDER BY created_at ASC
                LIMIT 1
                """,
                (user_id, PROVIDER_ID),
            )
            row = cur.fetchone()
            return dict(row) if row else None

    def save(self, account_id: str, tokens: dict):
        expires_at = None
        if tokens.get("expires_in"):
            expires_at = datetime.utcnow() + timedelta(seconds=int(tokens["expires_in"]))
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                UPDATE accounts SET
                    access_token = %s,
                    refresh_token = COALESCE(%s, refresh_token),
                    access_token_expires_at = %s,
                    updated_at = NOW()
                WHERE id = %s
                """,
                (tokens["access_token"], tokens.get("refresh_token"), expires_at, account_id),
            )

    def list_linked_users(self) -> list:
        """User ids that have a Docketwise account linked."""
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT DISTINCT user_id FROM accounts WHERE provider_id = %s",
                (PROVIDER_ID,),
            )
            return [row["user_id"] for row in cur.fetchall()]


class DocketwiseAuth:
    """
    Access token provider for one user.

    Usage:
        token = DocketwiseAuth(user_id).get_access_token()
    """

    def __init__(self, user_id: str, storage: TokenStorage = None, http_client: httpx.Client = None):
        self.user_id = user_id
        self.storage = storage or TokenStorage()
        self._http_client = http_client or httpx.Client(timeout=HTTP_TIMEOUT_SECONDS)

    def refresh_access_token(self, account: dict) -> str:
        """Exchange the refresh token for a new access token and persist it."""
        response = self._http_client.post(
            DOCKETWISE_OAUTH_TOKEN_URL,
            data={
                "client_id": DOCKETWISE_CLIENT_ID,
                "client_secret": DOCKETWISE_CLIENT_SECRET,
                "grant_type": "refresh_token",
                "refresh_token": account["refresh_token"],
            },
        )
        if not response.is_success:
            raise DocketwiseAuthError(
                f"Failed to refresh Docketwise token for user {self.user_id}: {response.status_code}"
            )
        tokens = response.json()
        self.storage.save(account["id"], tokens)
        logger.info("Refreshed Docketwise token for user %s", self.user_id)
        return tokens["access_token"]

    def get_access_token(self) -> str:
        """Get a valid access token, refreshing if expired."""
        if DOCKETWISE_ACCESS_TOKEN:
            return DOCKETWISE_ACCESS_TOKEN

        account = self.storage.load(self.user_id)
        if not account or not account.get("access_token"):
            raise DocketwiseAuthError(
                f"No Docketwise account linked for user {self.user_id}. Connect Docketwise first."
            )

        expires_at = account.get("access_token_expires_at")
        if expires_at and expires_at < datetime.utcnow():
            if not account.get("refresh_token"):
                raise DocketwiseAuthError(
                    f"Docketwise token expired for user {self.user_id} and no refresh token is stored"
                )
            return self.refresh_access_token(account)

        return account["access_token"]


def get_access_token(user_id: str) -> str:
    """Convenience function to get a valid access token."""
    return DocketwiseAuth(user_id).get_access_token()


def get_linked_user_ids() -> list:
    return TokenStorage().list_linked_users()
