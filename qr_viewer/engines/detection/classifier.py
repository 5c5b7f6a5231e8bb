"""
Payload classification

Annotates decoded text with a structural type. First matching pattern wins;
anything unmatched is plain text.
"""

import re
from typing import List, Pattern, Tuple

from qr_viewer.modules.uploads.models import CodeType

_PATTERNS: List[Tuple[CodeType, Pattern]] = [
    (CodeType.URL, re.compile(r"^https?://.+", re.IGNORECASE)),
    (CodeType.EMAIL, re.compile(r"^mailto:.+|^[^\s@]+@[^\s@]+\.[^\s@]+$", re.IGNORECASE)),
    (CodeType.PHONE, re.compile(r"^tel:|^\+?[\d\s\-()]+$", re.IGNORECASE)),
    (CodeType.WIFI, re.compile(r"^WIFI:", re.IGNORECASE)),
    (CodeType.VCARD, re.compile(r"^BEGIN:VCARD", re.IGNORECASE)),
    (CodeType.GEO, re.compile(r"^geo:", re.IGNORECASE)),
    (CodeType.SMS, re.compile(r"^sms:", re.IGNORECASE)),
]


def classify_content(content: str) -> CodeType:
    for code_type, pattern in _PATTERNS:
        if pattern.search(content):
            return code_type
    return CodeType.TEXT
