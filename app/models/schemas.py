from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ValidationStatus = Literal["pending", "validated", "rejected"]
ValidationTier = Literal["automatic", "manual"]
TermStatus = Literal["upcoming", "active", "completed"]


class PersonalDataIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: str | None = Field(default=None, alias="firstName")
    last_name: str | None = Field(default=None, alias="lastName")
    middle_name: str | None = Field(default=None, alias="middleName")
    suffix: str | None = None
    age: int | None = None
    sex_at_birth: str | None = Field(default=None, alias="sexAtBirth")
    contact_number: str | None = Field(default=None, alias="contactNumber")
    email: str | None = None
    barangay_id: str | None = Field(default=None, alias="barangay")
    purok_zone: str | None = Field(default=None, alias="purok")
    birth_date: str | None = Field(default=None, alias="birthday")


class SurveyDataIn(BaseModel):
    demographics: dict[str, Any] = Field(default_factory=dict)
    civic: dict[str, Any] = Field(default_factory=dict)


class DirectSubmissionIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    personal_data: PersonalDataIn
    survey_data: SurveyDataIn = Field(default_factory=SurveyDataIn)
    recaptcha_token: str | None = Field(default=None, alias="recaptchaToken")


class SubmissionOut(BaseModel):
    youth_id: str
    user_id: str | None = None
    response_id: str
    batch_id: str
    is_new_youth: bool
    validation_status: ValidationStatus
    validation_tier: ValidationTier
    voter_match_type: str | None = None
    validation_score: int | None = None
    queue_id: str | None = None
    message: str
    submitted_at: datetime | None = None


class VoterMatchIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: str = Field(alias="firstName")
    last_name: str = Field(alias="lastName")
    middle_name: str | None = Field(default=None, alias="middleName")
    suffix: str | None = None
    birth_date: date = Field(alias="birthday")
    gender: str | None = None


class VoterMatchOut(BaseModel):
    has_match: bool
    match_type: str
    score: int


class ContactMismatchOut(BaseModel):
    type: Literal["conflict", "mismatch"]
    existing: dict[str, str | None]
    new: dict[str, str | None]
    severity: Literal["high", "medium"]
    has_conflict: bool


class ValidationQueueItemOut(BaseModel):
    queue_id: str
    response_id: str
    youth_id: str
    batch_id: str | None = None
    voter_match_type: str | None = None
    validation_score: int | None = None
    validation_comments: str | None = None
    validation_status: ValidationStatus | None = None
    first_name: str | None = None
    last_name: str | None = None
    middle_name: str | None = None
    suffix: str | None = None
    barangay_id: str | None = None
    created_at: datetime | None = None
    contact_mismatch: ContactMismatchOut | None = None


class ValidationDecisionIn(BaseModel):
    action: Literal["approve", "reject"]
    comments: str | None = None


class ValidationDecisionOut(BaseModel):
    queue_id: str
    response_id: str
    youth_id: str
    status: ValidationStatus
    validated_by: str | None = None
    validated_at: datetime


class BulkValidationIn(BaseModel):
    queue_ids: list[str] = Field(min_length=1, max_length=200)
    action: Literal["approve", "reject"]
    comments: str | None = None


class BulkValidationItemOut(BaseModel):
    queue_id: str
    success: bool
    status: ValidationStatus | None = None
    error: str | None = None


class BulkValidationOut(BaseModel):
    processed_count: int
    failed_count: int
    results: list[BulkValidationItemOut] = Field(default_factory=list)


class SKTermCreateIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    term_name: str | None = Field(default=None, alias="termName")
    start_date: date | None = Field(default=None, alias="startDate")
    end_date: date | None = Field(default=None, alias="endDate")
    auto_activate: bool = Field(default=False, alias="autoActivate")


class SKTermUpdateIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    term_name: str | None = Field(default=None, alias="termName")
    start_date: date | None = Field(default=None, alias="startDate")
    end_date: date | None = Field(default=None, alias="endDate")


class TermTransitionIn(BaseModel):
    force: bool = False


class SKTermOut(BaseModel):
    term_id: str
    term_name: str
    start_date: date
    end_date: date
    status: TermStatus
    is_active: bool = True
    completion_type: Literal["manual", "forced", "automatic"] | None = None
    completed_at: datetime | None = None
    completed_by: str | None = None
    status_change_reason: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TermCompletionOut(BaseModel):
    term: SKTermOut
    completion_type: Literal["manual", "forced", "automatic"]
    officials_affected: int


class TermChangeOut(BaseModel):
    term_id: str
    term_name: str
    start_date: date
    end_date: date


class TermSweepOut(BaseModel):
    run_date: date
    skipped: bool = False
    success: bool
    activated: list[TermChangeOut] = Field(default_factory=list)
    completed: list[TermChangeOut] = Field(default_factory=list)
    officials_affected: int = 0
    errors: list[str] = Field(default_factory=list)


class PendingStatusUpdateOut(BaseModel):
    term_id: str
    term_name: str
    status: TermStatus
    start_date: date
    end_date: date
    required_action: Literal["needs_activation", "needs_manual_activation", "needs_completion"]


class SuggestedTermDatesOut(BaseModel):
    start_date: date
    end_date: date
    description: str
