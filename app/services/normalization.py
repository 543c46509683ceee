import re
from datetime import date
from typing import Any

PH_MOBILE_RE = re.compile(r"^(\+63|0)?(9\d{9})$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

AGE_GROUP_CHILD = "Child Youth (15-17 yrs old)"
AGE_GROUP_CORE = "Core Youth (18-24 yrs old)"
AGE_GROUP_YOUNG_ADULT = "Young Adult (15-30 yrs old)"


def clean_text(value: Any) -> str | None:
    if value is None:
        return None
    text = re.sub(r"\s+", " ", str(value)).strip()
    return text or None


def name_key(value: Any) -> str:
    return (clean_text(value) or "").lower()


def normalize_contact_number(raw: Any) -> str | None:
    text = re.sub(r"[\s\-()]", "", str(raw or ""))
    matched = PH_MOBILE_RE.match(text)
    if not matched:
        return None
    return f"+63{matched.group(2)}"


def normalize_email(raw: Any) -> str | None:
    text = (clean_text(raw) or "").lower()
    return text or None


def is_valid_email(raw: Any) -> bool:
    text = clean_text(raw)
    return bool(text and EMAIL_RE.match(text))


def normalize_gender(raw: Any) -> str | None:
    text = (clean_text(raw) or "").lower()
    if text in {"male", "m"}:
        return "Male"
    if text in {"female", "f"}:
        return "Female"
    # The public form offers "Other"; profiles only store Male/Female.
    if text == "other":
        return "Male"
    return None


def parse_iso_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    text = clean_text(value)
    if not text or not ISO_DATE_RE.match(text):
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


def compute_age(birth_date: date, today: date) -> int:
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


def youth_age_group(age: int | None) -> str:
    if age is not None and 15 <= age <= 17:
        return AGE_GROUP_CHILD
    if age is not None and 18 <= age <= 24:
        return AGE_GROUP_CORE
    return AGE_GROUP_YOUNG_ADULT


def parse_yes_no(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    text = (clean_text(value) or "").lower()
    if text == "yes":
        return True
    if text == "no":
        return False
    return None
