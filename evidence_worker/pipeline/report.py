import re
from typing import Optional, Tuple

from .prompts import INTERNAL_VERDICT_DELIMITER

_VERDICT_RE = re.compile(r"\bverdict\s*:?\s*\**\s*(approve|reject)", re.IGNORECASE)


def partition_report(text: str, delimiter: str = INTERNAL_VERDICT_DELIMITER) -> Tuple[str, str]:
    """
    Split raw model output into (public report, internal verdict context).

    The split happens at the first delimiter; without one the whole text
    is the public report and the internal context is empty.
    """
    text = text or ""
    public, found, internal = text.partition(delimiter)
    if not found:
        return text.strip(), ""
    return public.strip(), internal.strip()


def parse_verdict(internal: str) -> Optional[str]:
    """Best-effort 'approve' / 'reject' from the internal section, for logs and metrics"""
    match = _VERDICT_RE.search(internal or "")
    return match.group(1).lower() if match else None
