"""Tests for error messages and classification."""

from git_flotilla.errors import (
    RATE_LIMIT_PREFIX,
    ErrorCategory,
    GitTimeoutError,
    classify_error,
    clean_error_message,
    is_rate_limit_error,
    remote_error_message,
    truncate_message,
)


class TestCleanErrorMessage:
    """Tests for clean_error_message."""

    def test_timeout_with_default_duration(self):
        error = GitTimeoutError(["push", "origin", "main"], 180)
        assert clean_error_message(str(error)) == "timeout (180s)"

    def test_timeout_other_duration(self):
        assert clean_error_message("git fetch timed out after 5 seconds") == "timeout"

    def test_repository_moved(self):
        assert clean_error_message("remote: This repository moved. Please use the new location") == "repo moved"

    def test_repository_moved_with_email_privacy(self):
        stderr = "This repository moved.\nPush declined due to email privacy restrictions"
        assert clean_error_message(stderr) == "repo moved + email privacy"

    def test_email_privacy(self):
        assert clean_error_message("push declined due to email privacy") == "email privacy restriction"

    def test_authentication(self):
        assert clean_error_message("git@github.com: Permission denied (publickey).") == "authentication failed"

    def test_conflict(self):
        assert clean_error_message("CONFLICT (content): merge conflict in a.txt") == "merge conflict"

    def test_network(self):
        assert clean_error_message("ssh: Connection refused") == "network error"

    def test_long_message_truncated(self):
        message = clean_error_message("fatal: " + "x" * 100)
        assert len(message) == 40
        assert message.endswith("...")

    def test_whitespace_collapsed(self):
        assert clean_error_message("fatal:\n  bad\r\n ref") == "fatal: bad ref"


def test_truncate_message_short_text_unchanged():
    assert truncate_message("short") == "short"


class TestRateLimits:
    """Tests for rate limit detection."""

    def test_detects_phrases(self):
        assert is_rate_limit_error("API rate limit exceeded")
        assert is_rate_limit_error("HTTP 429 Too Many Requests")
        assert is_rate_limit_error("remote: You have triggered a secondary rate limit")
        assert is_rate_limit_error("The requested URL returned error: 403 (github.com)")

    def test_plain_403_is_not_rate_limit(self):
        assert not is_rate_limit_error("error: 403 forbidden")

    def test_remote_error_message_prefixes_rate_limits(self):
        message = remote_error_message("remote: API rate limit exceeded for user")
        assert message.startswith(RATE_LIMIT_PREFIX)

    def test_remote_error_message_without_rate_limit(self):
        assert remote_error_message("ssh: Connection refused") == "network error"


def test_classify_error():
    assert classify_error("too many requests") == ErrorCategory.RATE_LIMIT
    assert classify_error("git fetch timed out after 180 seconds") == ErrorCategory.TIMEOUT
    assert classify_error("Permission denied (publickey)") == ErrorCategory.AUTHENTICATION
    assert classify_error("Updates were rejected; branches have diverged") == ErrorCategory.MERGE_CONFLICT
    assert classify_error("Connection reset by peer") == ErrorCategory.NETWORK
    assert classify_error("fatal: something else") == ErrorCategory.GENERIC
