import logging
from dataclasses import dataclass

from app.services.normalization import name_key, normalize_gender, parse_iso_date

logger = logging.getLogger(__name__)

# (match_type, score) in the order tiers are tried
VOTER_MATCH_TIERS = (
    ("exact", 100),
    ("flexible", 95),
    ("flexible_no_gender", 90),
    ("flexible_no_birthdate", 85),
    ("partial", 75),
)
AUTO_VALIDATION_SCORE = 100
PARTIAL_PREFIX_MIN = 3
PARTIAL_PREFIX_MAX = 5


@dataclass
class VoterMatchResult:
    has_match: bool
    match_type: str
    score: int

    @property
    def is_exact(self) -> bool:
        return self.has_match and self.score >= AUTO_VALIDATION_SCORE


NO_MATCH = VoterMatchResult(has_match=False, match_type="none", score=0)


def build_match_params(personal_data: dict) -> dict:
    first_name = name_key(personal_data.get("first_name"))
    last_name = name_key(personal_data.get("last_name"))
    gender = normalize_gender(personal_data.get("gender"))
    first_len = min(len(first_name), PARTIAL_PREFIX_MAX)
    last_len = min(len(last_name), PARTIAL_PREFIX_MAX)
    return {
        "first_name": first_name,
        "last_name": last_name,
        "middle_name": name_key(personal_data.get("middle_name")),
        "suffix": name_key(personal_data.get("suffix")),
        "birth_date": parse_iso_date(personal_data.get("birth_date")),
        "gender": gender.lower() if gender else None,
        "first_prefix": first_name[:first_len],
        "first_prefix_len": first_len,
        "last_prefix": last_name[:last_len],
        "last_prefix_len": last_len,
    }


def _tier_applicable(match_type: str, params: dict) -> bool:
    if not params["first_name"] or not params["last_name"]:
        return False
    needs_birth_date = match_type in {"exact", "flexible", "flexible_no_gender"}
    needs_gender = match_type in {"exact", "flexible", "flexible_no_birthdate"}
    if needs_birth_date and params["birth_date"] is None:
        return False
    if needs_gender and not params["gender"]:
        return False
    if match_type == "partial":
        return (
            params["first_prefix_len"] >= PARTIAL_PREFIX_MIN
            and params["last_prefix_len"] >= PARTIAL_PREFIX_MIN
        )
    return True


def check_voter_match(personal_data: dict, repo) -> VoterMatchResult:
    """Match a person against the active voters list, strongest tier first.

    Database failures degrade to ``none``/0 so a submission is routed to manual
    review instead of failing or being auto-approved.
    """
    params = build_match_params(personal_data)
    try:
        for match_type, score in VOTER_MATCH_TIERS:
            if not _tier_applicable(match_type, params):
                continue
            rows = repo.find_voter_matches(match_type, params)
            if rows:
                logger.info(
                    "voter_match_found match_type=%s score=%s candidates=%s",
                    match_type,
                    score,
                    len(rows),
                )
                return VoterMatchResult(has_match=True, match_type=match_type, score=score)
    except Exception as exc:  # noqa: BLE001
        logger.warning("voter_match_failed sqlstate=%s error=%s", getattr(exc, "sqlstate", None), exc)
        return NO_MATCH
    return NO_MATCH
