"""Unit tests for the shared HTTP session and its retry policy."""

from requests.adapters import HTTPAdapter

from marketplace_alerts.http_session import (
    DEFAULT_BACKOFF_FACTOR,
    DEFAULT_RETRIES,
    USER_AGENT,
    build_retry,
    create_session,
)


class TestBuildRetry:
    """Test cases for build_retry()."""

    def test_defaults(self):
        retry = build_retry()

        assert retry.total == DEFAULT_RETRIES
        assert retry.backoff_factor == DEFAULT_BACKOFF_FACTOR
        assert retry.respect_retry_after_header
        assert not retry.raise_on_status

    def test_rate_limit_and_server_errors_are_retried(self):
        retry = build_retry()

        for status in (429, 500, 502, 503, 504):
            assert retry.is_retry("GET", status)
            assert retry.is_retry("POST", status)

    def test_client_errors_are_not_retried(self):
        retry = build_retry()

        for status in (400, 401, 403, 404):
            assert not retry.is_retry("GET", status)
            assert not retry.is_retry("POST", status)

    def test_custom_budget(self):
        retry = build_retry(retries=1, backoff_factor=2)
        assert retry.total == 1
        assert retry.backoff_factor == 2


class TestCreateSession:
    """Test cases for create_session()."""

    def test_retry_adapter_mounted_for_both_schemes(self):
        session = create_session()

        for url in ("https://api.ebay.com/buy", "http://localhost:8080/"):
            adapter = session.get_adapter(url)
            assert isinstance(adapter, HTTPAdapter)
            assert adapter.max_retries.total == DEFAULT_RETRIES
            assert "POST" in adapter.max_retries.allowed_methods

    def test_user_agent(self):
        assert create_session().headers["User-Agent"] == USER_AGENT

    def test_sessions_are_independent(self):
        assert create_session() is not create_session()
