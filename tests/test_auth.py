"""
Tests for Docketwise token access and refresh.
"""
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import httpx
import pytest

from auth import DocketwiseAuth, DocketwiseAuthError


@pytest.fixture(autouse=True)
def no_env_token():
    with patch("auth.DOCKETWISE_ACCESS_TOKEN", None):
        yield


def _auth(account, handler=None):
    storage = MagicMock()
    storage.load.return_value = account
    http_client = httpx.Client(transport=httpx.MockTransport(handler or (lambda r: httpx.Response(500))))
    return DocketwiseAuth("user-1", storage=storage, http_client=http_client), storage


class TestGetAccessToken:

    def test_valid_token(self):
        auth, _ = _auth({"id": "acc-1", "access_token": "tok",
                         "access_token_expires_at": datetime.utcnow() + timedelta(hours=1)})
        assert auth.get_access_token() == "tok"

    def test_no_account(self):
        auth, _ = _auth(None)
        with pytest.raises(DocketwiseAuthError, match="No Docketwise account linked"):
            auth.get_access_token()

    def test_expired_without_refresh_token(self):
        auth, _ = _auth({"id": "acc-1", "access_token": "tok", "refresh_token": None,
                         "access_token_expires_at": datetime.utcnow() - timedelta(minutes=1)})
        with pytest.raises(DocketwiseAuthError, match="expired"):
            auth.get_access_token()

    def test_expired_token_refreshed_and_saved(self):
        seen = []

        def handler(request):
            seen.append(request.content.decode())
            return httpx.Response(200, json={"access_token": "new", "refresh_token": "r2", "expires_in": 7200})

        auth, storage = _auth({"id": "acc-1", "access_token": "old", "refresh_token": "r1",
                               "access_token_expires_at": datetime.utcnow() - timedelta(minutes=1)}, handler)

        assert auth.get_access_token() == "new"
        assert "grant_type=refresh_token" in seen[0]
        assert "refresh_token=r1" in seen[0]
        storage.save.assert_called_once_with(
            "acc-1", {"access_token": "new", "refresh_token": "r2", "expires_in": 7200}
        )

    def test_refresh_rejected(self):
        auth, storage = _auth({"id": "acc-1", "access_token": "old", "refresh_token": "r1",
                               "access_token_expires_at": datetime.utcnow() - timedelta(minutes=1)},
                              lambda r: httpx.Response(401))
        with pytest.raises(DocketwiseAuthError, match="401"):
            auth.get_access_token()
        storage.save.assert_not_called()
