"""Token and cost estimation for embedding generation."""

import math
from fractions import Fraction

from pydantic import BaseModel

from .models import ContentType

CHARS_PER_TOKEN = 4

# Formatting overhead per content type
CONTENT_TYPE_MULTIPLIERS = {
    ContentType.PDF: Fraction(6, 5),
    ContentType.MARKDOWN: Fraction(11, 10),
    ContentType.TEXT: Fraction(1),
}

DEFAULT_EMBEDDING_MODEL = "openai:text-embedding-3-small"


class EmbeddingModelSpec(BaseModel):
    """A catalog entry for an embedding model."""

    id: str
    name: str
    cost_per_million: float
    dimensions: int
    provider_model: str
    embeddable: bool = True
    supports_dimensions: bool = False

    @property
    def cost_per_token(self) -> float:
        return self.cost_per_million / 1_000_000


EMBEDDING_MODELS: list[EmbeddingModelSpec] = [
    EmbeddingModelSpec(
        id="openai:text-embedding-3-small",
        name="OpenAI Small",
        cost_per_million=0.02,
        dimensions=1536,
        provider_model="text-embedding-3-small",
        supports_dimensions=True,
    ),
    EmbeddingModelSpec(
        id="openai:text-embedding-3-large",
        name="OpenAI Large",
        cost_per_million=0.13,
        dimensions=3072,
        provider_model="text-embedding-3-large",
        supports_dimensions=True,
    ),
    EmbeddingModelSpec(
        id="openai:text-embedding-ada-002",
        name="OpenAI Ada-002",
        cost_per_million=0.10,
        dimensions=1536,
        provider_model="text-embedding-ada-002",
    ),
    # Priced for comparison only; the OpenAI client cannot call it
    EmbeddingModelSpec(
        id="google:text-embedding-004",
        name="Google Text",
        cost_per_million=0.03,
        dimensions=768,
        provider_model="text-embedding-004",
        embeddable=False,
    ),
]

_MODELS_BY_ID = {model.id: model for model in EMBEDDING_MODELS}


class CostEstimate(BaseModel):
    model_id: str
    model_name: str
    cost_per_token: float
    estimated_tokens: int
    estimated_cost: float
    processing_time: str


def get_model_spec(model_id: str | None) -> EmbeddingModelSpec | None:
    return _MODELS_BY_ID.get(model_id) if model_id else None


def resolve_embedding_model(model_id: str | None) -> EmbeddingModelSpec:
    """Return the catalog entry to embed with, falling back to the default model.

    Unknown ids and catalog models the client cannot call both fall back.
    """
    spec = get_model_spec(model_id)
    if spec is None or not spec.embeddable:
        return _MODELS_BY_ID[DEFAULT_EMBEDDING_MODEL]
    return spec


def estimate_tokens(content: str, content_type: ContentType | str = ContentType.TEXT) -> int:
    """Estimate the token count of `content`.

    Uses 4 characters per token, then scales by the content type's formatting
    overhead (PDF x1.2, Markdown x1.1, plain text x1.0).

    Args:
        content: The text to estimate.
        content_type: Type of the source document.

    Returns:
        Estimated token count.
    """
    base_tokens = math.ceil(len(content) / CHARS_PER_TOKEN)
    try:
        multiplier = CONTENT_TYPE_MULTIPLIERS[ContentType(content_type)]
    except ValueError:
        multiplier = CONTENT_TYPE_MULTIPLIERS[ContentType.TEXT]
    return math.ceil(base_tokens * multiplier)


def processing_time_bucket(estimated_tokens: int) -> str:
    """Rough wall-clock guess for embedding `estimated_tokens` tokens."""
    if estimated_tokens < 10_000:
        return "~30 seconds"
    if estimated_tokens < 50_000:
        return "~2 minutes"
    if estimated_tokens < 100_000:
        return "~5 minutes"
    return "~10+ minutes"


def estimate_costs(estimated_tokens: int) -> list[CostEstimate]:
    """Price `estimated_tokens` against every catalog model.

    Args:
        estimated_tokens: Token count from `estimate_tokens`.

    Returns:
        One CostEstimate per catalog model, in catalog order.
    """
    bucket = processing_time_bucket(estimated_tokens)
    return [
        CostEstimate(
            model_id=model.id,
            model_name=model.name,
            cost_per_token=model.cost_per_token,
            estimated_tokens=estimated_tokens,
            estimated_cost=estimated_tokens * model.cost_per_token,
            processing_time=bucket,
        )
        for model in EMBEDDING_MODELS
    ]


def cost_for_model(cost_estimates: list[CostEstimate], model_id: str) -> float:
    """Look up the estimated cost for `model_id`, or 0 when it is not in the table."""
    return next(
        (c.estimated_cost for c in cost_estimates if c.model_id == model_id),
        0.0,
    )
