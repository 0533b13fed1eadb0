from __future__ import annotations

import base64
import logging
import re
from typing import Any, Optional

from assessment_agent.utils.observability import log_event

logger = logging.getLogger(__name__)

_HTTPS_HOST = re.compile(r"^https://([A-Za-z0-9.-]+)(?:[/?#]|$)")


def is_valid_url(url: Any) -> bool:
    """Only absolute https URLs with a plain host name are fetchable."""
    if not isinstance(url, str):
        return False
    s = url.strip()
    if not s or re.search(r"\s", s):
        return False
    if _HTTPS_HOST.match(s) is None:
        log_event(logger, "invalid_source_url", level="warning", url=s)
        return False
    return True


def normalize_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    s = str(url).strip()
    if not s:
        return None
    # Some export endpoints hand back URLs with a dangling "?".
    return s.rstrip("?")


def to_png_data_url(data: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(data).decode("ascii")
