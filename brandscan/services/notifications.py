"""Email notifications for finished analyses."""

import html
import logging
from typing import Any, Dict

import httpx

from brandscan.config import settings

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Email could not be delivered to the mail API."""


class SendGridNotifier:
    """Sends HTML email through the SendGrid v3 mail API."""

    def __init__(self, api_key: str = None, url: str = None):
        self.api_key = api_key if api_key is not None else settings.SENDGRID_API_KEY
        self.url = url or settings.SENDGRID_URL

    def send(self, address: str, subject: str, body: str) -> None:
        if not self.api_key:
            logger.warning(f"SENDGRID_API_KEY not set, dropping email '{subject}' to {address}")
            return

        payload = {
            "personalizations": [{"to": [{"email": address}]}],
            "from": {"email": settings.MAIL_FROM_EMAIL, "name": settings.MAIL_FROM_NAME},
            "subject": subject,
            "content": [{"type": "text/html", "value": body}],
        }
        try:
            with httpx.Client(timeout=30.0) as client:
                response = client.post(
                    self.url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=payload,
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationError(f"Failed to send email to {address}: {e}") from e

        logger.info(f"Sent email '{subject}' to {address}")


def _performance_insight(score: float) -> str:
    if score >= 80:
        return "Excellent performance! Your brand visibility is strong across all analyzed areas."
    if score >= 60:
        return "Good performance with room for improvement in specific areas."
    if score >= 40:
        return "Moderate performance. Consider focusing on key optimization opportunities."
    return "Significant opportunities for improvement identified."


def _format_duration(milliseconds: int) -> str:
    seconds = max(milliseconds, 0) // 1000
    minutes, seconds = divmod(seconds, 60)
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def completion_email(brand_name: str, dashboard_link: str, summary: Dict[str, Any]) -> str:
    """
    Build the completion email body.

    Args:
        brand_name: Brand display name
        dashboard_link: Link to the brand dashboard
        summary: Dict with total_analyses, average_score,
            average_weighted_score and completion_time_ms

    Returns:
        HTML string
    """
    name = html.escape(brand_name)
    return f"""<html>
  <body style="font-family: Arial, sans-serif; padding: 20px;">
    <h2>Analysis complete for {name}</h2>
    <p>{_performance_insight(summary["average_score"])}</p>
    <table>
      <tr><td>Analyses completed</td><td>{summary["total_analyses"]}</td></tr>
      <tr><td>Average score</td><td>{summary["average_score"]}</td></tr>
      <tr><td>Average weighted score</td><td>{summary["average_weighted_score"]}</td></tr>
      <tr><td>Completion time</td><td>{_format_duration(summary["completion_time_ms"])}</td></tr>
    </table>
    <p><a href="{html.escape(dashboard_link)}">View dashboard</a></p>
  </body>
</html>
"""


def failure_email(brand_name: str, error_message: str) -> str:
    return f"""<div style="font-family: Arial, sans-serif; padding: 20px;">
  <h2>Analysis Failed</h2>
  <p>Unfortunately, the analysis for <strong>{html.escape(brand_name)}</strong> failed to complete.</p>
  <p>Please try again or contact support if the issue persists.</p>
  <p>Error: {html.escape(error_message)}</p>
</div>
"""
