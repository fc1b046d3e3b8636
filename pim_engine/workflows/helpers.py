"""
Workflow Helper Functions for the PIM Engine.

Utility functions for building schedule requests: duration and start time
encoding, classification of validation feedback and result summaries.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..models import ActionResult, ActionStatus

logger = logging.getLogger(__name__)

ASK_JUSTIFICATION = "justification"
ASK_TICKET = "ticket"
ASK_BOTH = "both"


def encode_duration(hours: float) -> str:
    """
    Encode a duration in hours as an ISO-8601 duration.

    Whole hours encode as PT<H>H, anything else is converted to minutes
    (rounded to the nearest integer) and encoded as PT<M>M.

    Args:
        hours: Requested duration in hours

    Returns:
        ISO-8601 duration string

    Raises:
        ValueError: if the duration is not positive
    """
    if hours is None or hours <= 0:
        raise ValueError(f"Duration must be greater than zero, got {hours}")

    if float(hours).is_integer():
        return f"PT{int(hours)}H"

    minutes = round(hours * 60)
    if minutes < 1:
        raise ValueError(f"Duration {hours}h is shorter than one minute")
    return f"PT{minutes}M"


def format_start_time(start: Optional[datetime] = None, now: Optional[datetime] = None) -> str:
    """
    Format the start of an activation window as extended ISO-8601 UTC.

    An explicit start in the future is kept (scheduled activation); no start,
    or a start that has already passed, means now.
    """
    now = now or datetime.now(timezone.utc)
    if start is not None:
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        if start <= now:
            logger.warning(f"Start time {start.isoformat()} is in the past, starting now")
            start = None

    moment = (start or now).astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


def classify_validation_error(error_text: Optional[str]) -> str:
    """
    Decide what to ask the user for after a failed validation.

    Returns:
        ASK_JUSTIFICATION when the text mentions a justification or reason,
        ASK_TICKET when it mentions a ticket or reference,
        ASK_BOTH otherwise
    """
    text = (error_text or "").lower()
    if "justification" in text or "reason" in text:
        return ASK_JUSTIFICATION
    if "ticket" in text or "reference" in text:
        return ASK_TICKET
    return ASK_BOTH


def create_result_summary(results: List[ActionResult]) -> Dict[str, Any]:
    """
    Summarize a batch of action results.

    Args:
        results: Results in processing order

    Returns:
        Dictionary with counts per status and the failure messages
    """
    by_status = {status.value: 0 for status in ActionStatus}
    for result in results:
        by_status[result.status.value] += 1

    return {
        'total_actions': len(results),
        'successful_actions': by_status[ActionStatus.SUCCEEDED.value],
        'by_status': by_status,
        'errors': [f"{r.resource_id}: {r.message}" for r in results if not r.success],
    }
