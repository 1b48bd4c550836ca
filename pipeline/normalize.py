"""
Input normalization: domains, websites, destination URLs and form answers.

Everything here is pure. Unusable input comes back as None (or "" inside
Answers) so callers can take the "cannot enrich" path without exceptions.
"""

import re
import uuid
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlsplit

from pipeline.state import Answers, Derived

COMPANY_NAME = "Company Name"
EMAIL_ADDRESS = "Email Address"
COMPANY_SIZE = "Company Size"
NUMBER_OF_SEATS = "Number of Seats"
COMPUTERS = "Computers"
WEBSITE = "Website"
EMAIL_CALENDAR = "Email Calendar"
QUESTIONS = "Questions"

STANDARD_LABELS = (
    COMPANY_NAME,
    EMAIL_ADDRESS,
    COMPANY_SIZE,
    NUMBER_OF_SEATS,
    COMPUTERS,
    WEBSITE,
    EMAIL_CALENDAR,
    QUESTIONS,
)

# Flat payload / query-string keys, first match wins.
FLAT_FIELD_KEYS = {
    COMPANY_NAME: ("company_name", "company"),
    EMAIL_ADDRESS: ("work_email", "email"),
    COMPANY_SIZE: ("company_size",),
    NUMBER_OF_SEATS: ("company_seats", "seats"),
    COMPUTERS: ("computers",),
    WEBSITE: ("website", "company_website", "domain"),
    EMAIL_CALENDAR: ("email_calendar",),
    QUESTIONS: ("questions",),
}

FREE_EMAIL_DOMAINS = frozenset({
    "gmail.com", "googlemail.com", "yahoo.com", "outlook.com", "hotmail.com",
    "live.com", "icloud.com", "me.com", "aol.com", "proton.me",
    "protonmail.com", "gmx.com", "mail.com", "yandex.com",
})

_HOSTNAME_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]*[a-z0-9])?(?:\.[a-z0-9](?:[a-z0-9-]*[a-z0-9])?)+$")


def extract_domain_from_email(email: Optional[str]) -> Optional[str]:
    """
    Return whatever follows the "@" when the address has exactly one "@",
    else None. The result is not validated; "jane@" yields "".
    """
    if not email:
        return None
    parts = email.split("@")
    return parts[1] if len(parts) == 2 else None


def normalize_website(value: Optional[str]) -> Optional[str]:
    """
    Reduce a bare domain or URL to a lowercase hostname.

    Accepts "acme.com", "www.acme.com/pricing", "https://Acme.com:443/x" and
    similar. A leading "www." is dropped so cache keys and host comparisons
    line up with email-derived domains.

    Returns:
        The hostname, or None when the input has no usable host.
    """
    if not value or not isinstance(value, str):
        return None
    candidate = value.strip()
    if not candidate or " " in candidate:
        return None
    if "://" not in candidate:
        candidate = f"https://{candidate}"
    try:
        host = urlsplit(candidate).hostname
    except ValueError:
        return None
    if not host:
        return None
    host = host.rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    if not _HOSTNAME_RE.match(host):
        return None
    return host


def normalize_url(url: Optional[str], fallback: str) -> str:
    """Upgrade a bare destination to https://, pass absolute URLs through."""
    if not url:
        return fallback
    url = url.strip()
    if url.startswith("http://") or url.startswith("https://"):
        return url
    return f"https://{url}"


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return ", ".join(_as_str(v) for v in value if v is not None)
    return str(value)


def _complete(answers: Dict[str, str]) -> Answers:
    for label in STANDARD_LABELS:
        answers.setdefault(label, "")
    return answers


def answers_from_flat(raw: Dict[str, Any]) -> Answers:
    """Map flat keys (work_email, company_name, ...) onto answer labels."""
    answers: Dict[str, str] = {}
    for label, keys in FLAT_FIELD_KEYS.items():
        answers[label] = next((_as_str(raw[k]) for k in keys if raw.get(k) not in (None, "")), "")
    return _complete(answers)


def answers_from_payload(raw: Any) -> Tuple[str, Answers]:
    """
    Build (submission id, Answers) from an inbound webhook body.

    Form-builder webhooks nest a label/value field list under
    event.data.fields or data.fields; anything else is read as a flat body.
    """
    raw = raw if isinstance(raw, dict) else {}
    event = raw.get("event") if isinstance(raw.get("event"), dict) else {}
    root = event.get("data") if isinstance(event.get("data"), dict) else raw.get("data")
    fields = root.get("fields") if isinstance(root, dict) else None

    if isinstance(fields, list):
        sid = _as_str(root.get("responseId")) or str(uuid.uuid4())
        answers: Dict[str, str] = {}
        for field in fields:
            if not isinstance(field, dict):
                continue
            label = _as_str(field.get("label")) or _as_str(field.get("key")) or _as_str(field.get("id"))
            if label:
                answers[label] = _as_str(field.get("value"))
        return sid, _complete(answers)

    sid = _as_str(raw.get("responseId")) or str(uuid.uuid4())
    return sid, answers_from_flat(raw)


def to_int(value: Optional[str]) -> Optional[int]:
    digits = re.sub(r"[^\d]", "", value or "")
    return int(digits) if digits else None


def derive(answers: Answers) -> Derived:
    """Pull the canonical lead facts out of the answers, website before email."""
    email = (answers.get(EMAIL_ADDRESS) or "").strip()
    website = normalize_website(answers.get(WEBSITE))
    email_domain = normalize_website(extract_domain_from_email(email))

    return {
        "email": email,
        "domain": website or email_domain,
        "website": website,
        "company_name": (answers.get(COMPANY_NAME) or "").strip(),
        "seats": to_int(answers.get(NUMBER_OF_SEATS)),
        "company_size": (answers.get(COMPANY_SIZE) or "").strip() or None,
        "computers": (answers.get(COMPUTERS) or "").strip() or None,
        "personal_email": not website and email_domain in FREE_EMAIL_DOMAINS,
    }
