"""Pydantic schemas for every AI contract.

Model answers are untrusted: the persona schema repairs each malformed field
to a safe default instead of rejecting the whole answer, while the routing,
query and sequence schemas are strict and raise ``AIResponseError``.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    model_validator,
)

from ..integrations.openai_client import AIResponseError
from ..utils import clean_email, parse_count

FIT_SCORE_MIN = 1
FIT_SCORE_MAX = 10
DEFAULT_FIT_SCORE = 5


class GeneratedQuery(BaseModel):
    """One structured search directive for the discovery provider."""

    query: str = Field(..., min_length=1, description="Search query text")
    criteria: list[str] = Field(
        default_factory=list, description="Criteria every result must satisfy"
    )
    rationale: str = Field(default="", description="Why this query was chosen")


def _text(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _string_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if isinstance(item, (str, int, float)) and str(item).strip()]


def _fit_score(value: Any) -> int:
    if isinstance(value, bool):
        return DEFAULT_FIT_SCORE
    try:
        score = round(float(value))
    except (TypeError, ValueError):
        return DEFAULT_FIT_SCORE
    return max(FIT_SCORE_MIN, min(FIT_SCORE_MAX, score))


class LeadPersona(BaseModel):
    """Structured persona derived for a lead.

    Every field has a fallback: a missing or malformed value is replaced by
    the field default (``other`` category, ``Unknown`` name, zero audience,
    fit score 5) so one bad field never aborts an enrichment.
    """

    model_config = ConfigDict(populate_by_name=True)

    category: str = Field(default="other")
    full_name: str = Field(default="Unknown")
    title: str = Field(default="")
    bio: str = Field(default="")
    expertise: list[str] = Field(default_factory=list)
    social_links: dict[str, Any] = Field(default_factory=dict)
    total_audience: int = Field(default=0, ge=0)
    content_types: list[str] = Field(default_factory=list)
    fit_score: int = Field(
        default=DEFAULT_FIT_SCORE,
        ge=FIT_SCORE_MIN,
        le=FIT_SCORE_MAX,
        validation_alias=AliasChoices("fit_score", "promotion_fit_score"),
    )
    fit_reason: str = Field(
        default="",
        validation_alias=AliasChoices("fit_reason", "promotion_fit_reason"),
    )
    email: Optional[str] = Field(default=None)

    @model_validator(mode="before")
    @classmethod
    def repair(cls, data: Any) -> dict[str, Any]:
        """Coerce each raw field into range or fall back to its default."""
        if not isinstance(data, dict):
            return {}

        def pick(*keys: str) -> Any:
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        social_links = pick("social_links")
        return {
            "category": _text(pick("category"), "other").lower(),
            "full_name": _text(pick("full_name", "name"), "Unknown"),
            "title": _text(pick("title"), ""),
            "bio": _text(pick("bio"), ""),
            "expertise": _string_list(pick("expertise")),
            "social_links": (
                {str(k): v for k, v in social_links.items() if v}
                if isinstance(social_links, dict)
                else {}
            ),
            "total_audience": parse_count(pick("total_audience")) or 0,
            "content_types": _string_list(pick("content_types")),
            "fit_score": _fit_score(pick("fit_score", "promotion_fit_score")),
            "fit_reason": _text(pick("fit_reason", "promotion_fit_reason"), ""),
            "email": clean_email(pick("email")),
        }

    def to_fields(self) -> dict[str, Any]:
        """Persona values keyed by Lead column name (email excluded)."""
        return self.model_dump(exclude={"email"})


class AddToExisting(BaseModel):
    """Route the lead into a campaign that already exists."""

    model_config = ConfigDict(populate_by_name=True)

    action: Literal["add_to_existing"]
    campaign_id: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("campaign_id", "campaignId")
    )
    reason: str = ""


class CreateNew(BaseModel):
    """Create a campaign for a persona no existing campaign covers."""

    model_config = ConfigDict(populate_by_name=True)

    action: Literal["create_new"]
    suggested_name: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("suggested_name", "suggestedName"),
    )
    suggested_persona: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("suggested_persona", "suggestedPersona"),
    )
    reason: str = ""


class Skip(BaseModel):
    """Do not email this lead (auto mode only)."""

    action: Literal["skip"]
    reason: str = ""


RoutingDecision = Annotated[
    Union[AddToExisting, CreateNew, Skip], Field(discriminator="action")
]

_routing_adapter: TypeAdapter = TypeAdapter(RoutingDecision)


def parse_routing_decision(data: Any) -> Union[AddToExisting, CreateNew, Skip]:
    """Validate a routing answer against the tagged union.

    Raises:
        AIResponseError: If the answer matches none of the three shapes.
    """
    try:
        return _routing_adapter.validate_python(data)
    except ValidationError as e:
        raise AIResponseError(f"Invalid routing decision: {e}") from e


def parse_generated_query(data: Any) -> GeneratedQuery:
    """Validate a query-writer answer.

    Raises:
        AIResponseError: If the query text is missing.
    """
    try:
        return GeneratedQuery.model_validate(data)
    except ValidationError as e:
        raise AIResponseError(f"Invalid generated query: {e}") from e


class EmailStep(BaseModel):
    """One email of a generated sequence."""

    model_config = ConfigDict(populate_by_name=True)

    subject: str = ""
    body: str = Field(..., min_length=1)
    delay_days: int = Field(
        default=0, ge=0, validation_alias=AliasChoices("delay_days", "delayDays")
    )


class EmailSequence(BaseModel):
    """Ordered email steps; index 0 is the initial email."""

    steps: list[EmailStep] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def collect_steps(cls, data: Any) -> Any:
        """Accept either a ``steps`` list or ``initial``/``followUpN`` keys."""
        if not isinstance(data, dict) or "steps" in data:
            return data
        if isinstance(data.get("emails"), list):
            return {"steps": data["emails"]}
        steps = []
        for key in ("initial", "followUp1", "followUp2"):
            if isinstance(data.get(key), dict):
                steps.append(data[key])
        return {"steps": steps}


def parse_email_sequence(data: Any) -> EmailSequence:
    """Validate a sequence-writer answer.

    Raises:
        AIResponseError: If a step is missing its body.
    """
    try:
        return EmailSequence.model_validate(data)
    except ValidationError as e:
        raise AIResponseError(f"Invalid email sequence: {e}") from e
