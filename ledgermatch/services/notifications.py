"""Notification service for reconciliation run summaries."""
from __future__ import annotations

import logging
import os
from typing import Dict, Optional

import httpx

from ledgermatch.models import ResolutionResult


class NotificationService:
    """
    Sends human-readable run summaries.
    Posts to Slack when SLACK_WEBHOOK_URL is configured; otherwise only logs.
    Never required for correctness: delivery failures are logged, not raised.
    """

    def __init__(self, webhook_url: Optional[str] = None, timeout: float = 5.0) -> None:
        self.logger = logging.getLogger("ledgermatch.notifications")
        self.webhook_url = webhook_url if webhook_url is not None else os.getenv("SLACK_WEBHOOK_URL", "")
        self.timeout = timeout

    def send_run_summary(self, run_id: str, result: ResolutionResult) -> Dict:
        summary = {
            "run_id": run_id,
            "matched": len(result.matched),
            "ignored": len(result.ignored_transactions),
            "corrected": result.divergences_corrected,
            "synthesized": result.entries_synthesized,
            "learned": result.learned_matches,
            "duplicates": result.duplicates_resolved,
            "unmatched_transactions": len(result.unmatched_transactions),
            "unmatched_entries": len(result.unmatched_entries),
        }
        self.logger.info("Run summary: %s", summary)
        self._send_slack_blocks(self.build_slack_run_summary(summary))
        return summary

    def build_slack_run_summary(self, summary: Dict) -> Dict:
        return {
            "text": f"Bank reconciliation complete ({summary['run_id']})",
            "blocks": [
                {"type": "header", "text": {"type": "plain_text", "text": "Bank Reconciliation Complete"}},
                {"type": "section", "fields": [
                    {"type": "mrkdwn", "text": f"*Matched*\n{summary['matched']}"},
                    {"type": "mrkdwn", "text": f"*Ignored*\n{summary['ignored']}"},
                    {"type": "mrkdwn", "text": f"*Corrected*\n{summary['corrected']}"},
                    {"type": "mrkdwn", "text": f"*Entries created*\n{summary['synthesized']}"},
                ]},
                {"type": "context", "elements": [
                    {"type": "mrkdwn", "text": (
                        f"{summary['unmatched_transactions']} transactions and "
                        f"{summary['unmatched_entries']} entries left for review"
                    )},
                ]},
            ],
        }

    def _send_slack_blocks(self, payload: Dict) -> None:
        if not self.webhook_url:
            return
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(self.webhook_url, json=payload)
                if resp.is_error:
                    self.logger.warning("Slack webhook answered %s: %s", resp.status_code, resp.text)
        except httpx.HTTPError as exc:
            self.logger.warning("Slack webhook failed: %s", exc)
