from dataclasses import dataclass
from typing import Callable

from app.services.voter_matcher import VoterMatchResult

CONTACT_MISMATCH_MATCH_TYPE = "contact_mismatch"
EXISTING_YOUTH_MATCH_TYPE = "existing_youth"


@dataclass
class ValidationDecision:
    validation_status: str
    validation_tier: str
    voter_match_type: str
    validation_score: int
    enqueue: bool = False
    propagate_to_youth: bool = False


def decide_validation(
    *,
    contact_mismatch: bool,
    youth_validation_status: str | None,
    voter_match: Callable[[], VoterMatchResult],
) -> ValidationDecision:
    """Pick the validation status and tier for a new survey response.

    ``voter_match`` is only called when neither the contact mismatch flag nor an
    already validated profile decides the outcome.
    """
    if contact_mismatch:
        return ValidationDecision(
            validation_status="pending",
            validation_tier="manual",
            voter_match_type=CONTACT_MISMATCH_MATCH_TYPE,
            validation_score=0,
            enqueue=True,
        )

    if youth_validation_status == "validated":
        return ValidationDecision(
            validation_status="validated",
            validation_tier="automatic",
            voter_match_type=EXISTING_YOUTH_MATCH_TYPE,
            validation_score=100,
        )

    match = voter_match()
    if match.is_exact:
        return ValidationDecision(
            validation_status="validated",
            validation_tier="automatic",
            voter_match_type=match.match_type,
            validation_score=match.score,
            propagate_to_youth=True,
        )

    return ValidationDecision(
        validation_status="pending",
        validation_tier="manual",
        voter_match_type=match.match_type,
        validation_score=match.score,
        enqueue=True,
    )
