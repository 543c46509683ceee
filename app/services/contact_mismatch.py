"""Build and read back the review comments attached to flagged submissions.

A flagged submission stores a human-readable comment on the survey response and
its validation queue entry; reviewers get the structured form via
``parse_contact_mismatch``.
"""

import logging
import re

logger = logging.getLogger(__name__)

MISMATCH_MARKERS = ("POTENTIAL DUPLICATE", "CONTACT CONFLICT", "different contact info")
HIGH_PRIORITY_MARKER = "HIGH PRIORITY"
CONFLICT_MARKER = "CONTACT CONFLICT"
SHARED_CONTACT_MARKER = "already used by another profile"

_EXISTING_RE = re.compile(r"Existing:\s*([^/\n]+?)\s*/\s*(\S+?)(?=\.\s|\.$|\s+New:|$)", re.IGNORECASE)
_NEW_RE = re.compile(r"New:\s*([^/\n]+?)\s*/\s*(\S+?)(?=\.\s|\.$|$)", re.IGNORECASE)
_ALT_EXISTING_RE = re.compile(r"Existing:\s*([^\n]+?)(?:\s*\.\s|\s+New:|$)", re.IGNORECASE)
_ALT_NEW_RE = re.compile(r"New:\s*([^\n]+?)(?:\s*\.$|\s*\.\s|$)", re.IGNORECASE)
_SHARED_CONTACT_RE = re.compile(r"already used by another profile:\s*([^(]+)\s*\(([^)]+)\)", re.IGNORECASE)


def build_mismatch_comment(
    *,
    youth_id: str,
    existing_contact: str | None,
    existing_email: str | None,
    new_contact: str | None,
    new_email: str | None,
    barangay_differs: bool = False,
) -> str:
    prefix = f"{HIGH_PRIORITY_MARKER} - " if barangay_differs else ""
    barangay_note = " Barangay also differs." if barangay_differs else ""
    return (
        f"{prefix}POTENTIAL DUPLICATE: same name, birth date and gender as {youth_id} "
        f"but different contact info.{barangay_note} "
        f"Existing: {existing_contact or 'none'} / {existing_email or 'none'}. "
        f"New: {new_contact or 'none'} / {new_email or 'none'}."
    )


def is_contact_mismatch(comments: str | None) -> bool:
    if not comments:
        return False
    return any(marker in comments for marker in MISMATCH_MARKERS)


def _side(contact: str | None, email: str | None) -> dict[str, str | None]:
    contact = (contact or "").strip()
    email = (email or "").strip()
    if contact.lower() == "none":
        contact = ""
    if email.lower() == "none":
        email = ""
    return {"contact": contact or None, "email": email or None}


def parse_contact_mismatch(comments: str | None) -> dict | None:
    if not is_contact_mismatch(comments):
        return None

    existing_match = _EXISTING_RE.search(comments)
    new_match = _NEW_RE.search(comments)
    if existing_match and new_match:
        existing = _side(existing_match.group(1), existing_match.group(2))
        new = _side(new_match.group(1), new_match.group(2))
    else:
        alt_existing = _ALT_EXISTING_RE.search(comments)
        alt_new = _ALT_NEW_RE.search(comments)
        if not (alt_existing and alt_new):
            logger.warning("contact_mismatch_parse_failed comments=%s", comments[:200])
            return None
        existing_parts = [part.strip() for part in re.split(r"\s*/\s*", alt_existing.group(1).strip())]
        new_parts = [part.strip() for part in re.split(r"\s*/\s*", alt_new.group(1).strip())]
        existing = _side(existing_parts[0] if existing_parts else None, existing_parts[1] if len(existing_parts) > 1 else None)
        new = _side(new_parts[0] if new_parts else None, new_parts[1] if len(new_parts) > 1 else None)

    return {
        "type": "conflict" if CONFLICT_MARKER in comments else "mismatch",
        "existing": existing,
        "new": new,
        "severity": "high" if HIGH_PRIORITY_MARKER in comments else "medium",
        "has_conflict": SHARED_CONTACT_MARKER in comments,
    }


def parse_conflict_info(comments: str | None) -> dict | None:
    if not comments or SHARED_CONTACT_MARKER not in comments:
        return None
    matched = _SHARED_CONTACT_RE.search(comments)
    if not matched:
        return None
    return {"name": matched.group(1).strip() or None, "youth_id": matched.group(2).strip() or None}
