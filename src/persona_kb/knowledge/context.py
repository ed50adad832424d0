"""Knowledge context injection for persona chat prompts."""

import re

from ..logger import logger
from .costs import DEFAULT_EMBEDDING_MODEL
from .errors import KnowledgeBaseError
from .models import SearchResult, SearchType, resolve_persona
from .search import DEFAULT_LIMIT, DEFAULT_THRESHOLD, SimilaritySearchEngine

EXCERPT_LENGTH = 500
MAX_SEARCH_TERMS = 10

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
        "how", "what", "when", "where", "why", "who", "which", "can", "could", "would", "should",
        "i", "you", "he", "she", "it", "we", "they", "me", "him", "her", "us", "them",
        "is", "are", "was", "were", "be", "been", "being", "have", "has", "had", "do", "does", "did",
    }
)

_PUNCTUATION_RE = re.compile(r"[^\w\s]")

KNOWLEDGE_PREAMBLE = (
    "The following information is from my knowledge base and is highly relevant "
    "to the user's query. Use this information to provide more accurate, detailed, "
    "and personalized responses. Always draw from this knowledge when it's relevant, "
    "but integrate it naturally into your response without explicitly mentioning "
    '"according to my knowledge base."'
)

KNOWLEDGE_INSTRUCTIONS = """Remember to:
- Use this knowledge to enhance your responses with specific details and insights
- Maintain your persona's voice and style while incorporating this information
- Don't explicitly reference that this came from a "knowledge base" - present it as your natural knowledge
- Prioritize the most relevant information based on similarity scores"""


def extract_search_terms(message: str) -> str:
    """Derive a compact search query from a chat message.

    Lower-cases, replaces punctuation with spaces, drops words of two
    characters or fewer and stop words, and keeps the first ten remaining
    words.
    """
    words = _PUNCTUATION_RE.sub(" ", message.lower()).split()
    terms = [w for w in words if len(w) > 2 and w not in STOP_WORDS]
    return " ".join(terms[:MAX_SEARCH_TERMS])


def _excerpt(content: str) -> str:
    if len(content) > EXCERPT_LENGTH:
        return content[:EXCERPT_LENGTH] + "..."
    return content


def inject_knowledge_context(base_prompt: str, results: list[SearchResult]) -> str:
    """Append a relevant-knowledge section to a persona prompt.

    Results are listed in the order given, which should be best first.
    An empty result list returns `base_prompt` unchanged.
    """
    if not results:
        return base_prompt

    sources = "\n".join(
        f"\n**Source {i}: {result.display_title}** "
        f"(Similarity: {result.similarity * 100:.1f}%)\n"
        f"{_excerpt(result.content)}\n"
        for i, result in enumerate(results, start=1)
    )

    return (
        f"{base_prompt}\n\n"
        "RELEVANT KNOWLEDGE CONTEXT:\n"
        f"{KNOWLEDGE_PREAMBLE}\n\n"
        f"{sources}\n\n"
        f"{KNOWLEDGE_INSTRUCTIONS}"
    )


class KnowledgeContextBuilder:
    """Augments a persona prompt with knowledge relevant to the user's message."""

    def __init__(
        self,
        engine: SimilaritySearchEngine,
        embedding_model: str = DEFAULT_EMBEDDING_MODEL,
        embedding_dimensions: int | None = None,
    ):
        self.engine = engine
        self.embedding_model = embedding_model
        self.embedding_dimensions = embedding_dimensions

    def find_relevant(
        self,
        query: str,
        persona_id: str,
        limit: int = DEFAULT_LIMIT,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> list[SearchResult]:
        """Search whole documents and chunks, then merge them by similarity.

        Chunks are fetched at twice the limit since they are finer grained.
        """
        documents = self.engine.search(
            query,
            persona_id,
            limit=limit,
            threshold=threshold,
            search_type=SearchType.DOCUMENTS,
            embedding_model=self.embedding_model,
            embedding_dimensions=self.embedding_dimensions,
        )
        chunks = self.engine.search(
            query,
            persona_id,
            limit=limit * 2,
            threshold=threshold,
            search_type=SearchType.CHUNKS,
            embedding_model=self.embedding_model,
            embedding_dimensions=self.embedding_dimensions,
        )
        merged = documents.results + chunks.results
        merged.sort(key=lambda r: r.similarity, reverse=True)
        return merged[:limit]

    def build(
        self,
        base_prompt: str,
        message: str,
        persona_id: str,
        limit: int = DEFAULT_LIMIT,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> str:
        """Return `base_prompt` with relevant knowledge injected.

        Personas without a knowledge base, messages with no usable search
        terms and search failures all yield `base_prompt` unchanged.
        """
        persona = resolve_persona(persona_id)
        if persona is None:
            return base_prompt

        query = extract_search_terms(message)
        if not query:
            return base_prompt

        try:
            results = self.find_relevant(query, persona.value, limit, threshold)
        except KnowledgeBaseError as e:
            logger.error(
                "knowledge context search failed",
                persona_id=persona.value,
                error=str(e),
                code=e.code,
            )
            return base_prompt

        logger.info(
            "knowledge context built",
            persona_id=persona.value,
            query=query,
            results_count=len(results),
        )
        return inject_knowledge_context(base_prompt, results)
