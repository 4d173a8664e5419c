"""Tests for notification emails."""

from brandscan.services.notifications import SendGridNotifier, completion_email, failure_email


def test_completion_email():
    body = completion_email(
        "Acme <Tools>",
        "https://app.example.com/user-1/brands/brand-1/dashboard",
        {
            "total_analyses": 12,
            "average_score": 83.4,
            "average_weighted_score": 77.1,
            "completion_time_ms": 125000,
        },
    )

    assert "Acme &lt;Tools&gt;" in body
    assert "Excellent performance!" in body
    assert "2m 5s" in body
    assert "https://app.example.com/user-1/brands/brand-1/dashboard" in body


def test_failure_email():
    body = failure_email("Acme", "Brand brand-1 not found")

    assert "Analysis Failed" in body
    assert "Brand brand-1 not found" in body


def test_notifier_without_api_key_drops_email():
    """Test sending is a logged no-op when SendGrid is not configured."""
    SendGridNotifier(api_key="").send("owner@example.com", "Analysis Complete - Acme", "<p>done</p>")
