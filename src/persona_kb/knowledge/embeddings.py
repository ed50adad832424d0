"""Embedding generation client for OpenAI embedding models."""

import array
import base64
import math
import os
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable

from openai import APIStatusError, OpenAI, OpenAIError

from ..logger import logger
from .config import EmbeddingOptions, Settings
from .costs import EmbeddingModelSpec, estimate_tokens, resolve_embedding_model
from .errors import EmbeddingProviderError, EmbeddingUnavailableError

# Constants
MAX_TOKENS_PER_BATCH = 100_000
MAX_INPUTS_PER_BATCH = 2048
DEFAULT_MAX_PARALLEL_CALLS = 3


class RateLimiter:
    """Enforces a minimum interval between outgoing requests.

    One instance is shared by every request a client issues, across threads.
    The clock and sleep functions are injectable so tests don't wait.
    """

    def __init__(
        self,
        min_interval_seconds: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval_seconds = min_interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_request: float | None = None

    def acquire(self) -> float:
        """Block until a request may be sent.

        Returns:
            Seconds spent waiting.
        """
        with self._lock:
            waited = 0.0
            now = self._clock()
            if self._last_request is not None and self.min_interval_seconds > 0:
                elapsed = now - self._last_request
                if elapsed < self.min_interval_seconds:
                    waited = self.min_interval_seconds - elapsed
                    logger.debug(
                        "rate limiting embedding request",
                        wait_ms=round(waited * 1000, 2),
                    )
                    self._sleep(waited)
                    now = self._clock()
            self._last_request = now
            return waited


def normalize_vector(vector: list[float]) -> list[float]:
    """Scale a vector to unit L2 norm. Zero vectors are returned unchanged."""
    norm = math.sqrt(sum(x * x for x in vector))
    if norm == 0:
        return list(vector)
    return [x / norm for x in vector]


def decode_embedding(value: list[float] | str) -> list[float]:
    """Convert a provider embedding to floats.

    With ``encoding_format="base64"`` the API returns little-endian float32
    bytes encoded as base64 instead of a list.
    """
    if isinstance(value, str):
        floats = array.array("f")
        floats.frombytes(base64.b64decode(value))
        if sys.byteorder == "big":
            floats.byteswap()
        return floats.tolist()
    return [float(x) for x in value]


class EmbeddingClient:
    """Client for generating embeddings using OpenAI's API.

    Batches are sent with at most `max_parallel_calls` requests in flight.
    Provider errors are not retried; they surface as EmbeddingProviderError.
    """

    def __init__(
        self,
        api_key: str | None = None,
        max_parallel_calls: int = DEFAULT_MAX_PARALLEL_CALLS,
        batch_size: int = MAX_INPUTS_PER_BATCH,
        rate_limiter: RateLimiter | None = None,
    ):
        """Initialize the embedding client.

        Args:
            api_key: OpenAI API key. If not provided, uses OPENAI_API_KEY env var.
            max_parallel_calls: Ceiling on concurrent provider requests.
            batch_size: Maximum inputs sent in one provider request.
            rate_limiter: Shared limiter spacing requests. Defaults to no spacing.

        Raises:
            EmbeddingUnavailableError: If no API key is available.
        """
        self._api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self._api_key:
            raise EmbeddingUnavailableError(
                "OpenAI API key required: provide api_key or set OPENAI_API_KEY"
            )
        self._client = OpenAI(api_key=self._api_key)
        self.max_parallel_calls = max(1, max_parallel_calls)
        self.batch_size = max(1, min(batch_size, MAX_INPUTS_PER_BATCH))
        self.rate_limiter = rate_limiter or RateLimiter()

    def embed(self, text: str, options: EmbeddingOptions | None = None) -> list[float]:
        """Generate embedding for a single text.

        Args:
            text: The text to generate an embedding for.
            options: Model, dimensions, encoding and normalisation settings.

        Returns:
            Embedding vector.

        Raises:
            EmbeddingProviderError: If the provider call fails.
        """
        options = options or EmbeddingOptions()
        spec = resolve_embedding_model(options.model)
        return self._embed_batch([text], spec, options, 0, 1)[0]

    def embed_many(
        self, texts: list[str], options: EmbeddingOptions | None = None
    ) -> list[list[float]]:
        """Generate embeddings for a list of texts.

        Texts are split into provider-sized batches which are sent concurrently
        (bounded by `max_parallel_calls`); the result is realigned to input order.

        Args:
            texts: Texts to embed.
            options: Model, dimensions, encoding and normalisation settings.

        Returns:
            One embedding per input text, in input order.

        Raises:
            EmbeddingProviderError: If any provider call fails.
        """
        if not texts:
            return []

        options = options or EmbeddingOptions()
        spec = resolve_embedding_model(options.model)
        batches = self._split_into_batches(texts)
        total = len(batches)

        if total == 1:
            return self._embed_batch(batches[0], spec, options, 0, 1)

        start = time.perf_counter()
        results: dict[int, list[list[float]]] = {}
        workers = min(self.max_parallel_calls, total)

        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_index = {
                executor.submit(self._embed_batch, batch, spec, options, i, total): i
                for i, batch in enumerate(batches)
            }
            try:
                for future in as_completed(future_to_index):
                    results[future_to_index[future]] = future.result()
            except Exception:
                for future in future_to_index:
                    future.cancel()
                raise

        embeddings = [vector for i in range(total) for vector in results[i]]

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "batched embeddings generated",
            texts_count=len(texts),
            batches=total,
            max_parallel_calls=workers,
            model=spec.id,
            duration_ms=round(duration_ms, 2),
        )
        return embeddings

    def _split_into_batches(self, texts: list[str]) -> list[list[str]]:
        """Split texts into batches that fit within input and token limits.

        Args:
            texts: List of texts to batch.

        Returns:
            List of batches, where each batch is a list of texts.
        """
        batches = []
        current_batch: list[str] = []
        current_tokens = 0

        for text in texts:
            text_tokens = estimate_tokens(text)

            if current_batch and (
                len(current_batch) >= self.batch_size
                or current_tokens + text_tokens > MAX_TOKENS_PER_BATCH
            ):
                batches.append(current_batch)
                current_batch = []
                current_tokens = 0

            current_batch.append(text)
            current_tokens += text_tokens

        if current_batch:
            batches.append(current_batch)

        return batches

    def _request_kwargs(self, spec: EmbeddingModelSpec, options: EmbeddingOptions) -> dict:
        kwargs = {
            "model": spec.provider_model,
            "encoding_format": options.encoding_format,
        }
        if options.dimensions is not None:
            if spec.supports_dimensions:
                kwargs["dimensions"] = options.dimensions
            else:
                logger.warn(
                    "model does not support custom dimensions, ignoring",
                    model=spec.id,
                    dimensions=options.dimensions,
                )
        return kwargs

    def _embed_batch(
        self,
        texts: list[str],
        spec: EmbeddingModelSpec,
        options: EmbeddingOptions,
        batch_idx: int,
        total_batches: int,
    ) -> list[list[float]]:
        """Send one provider request.

        Args:
            texts: Batch of texts to embed.
            spec: Resolved catalog model.
            options: Request options.
            batch_idx: Index of current batch (for logging).
            total_batches: Total number of batches (for logging).

        Returns:
            Embeddings in the same order as `texts`.
        """
        self.rate_limiter.acquire()
        start = time.perf_counter()
        try:
            response = self._client.embeddings.create(
                input=texts, **self._request_kwargs(spec, options)
            )
        except APIStatusError as e:
            logger.error(
                "embedding generation failed",
                batch=f"{batch_idx + 1}/{total_batches}",
                status_code=e.status_code,
                model=spec.id,
                error=str(e),
            )
            raise EmbeddingProviderError(f"Embedding generation failed: {e}") from e
        except OpenAIError as e:
            logger.error(
                "embedding generation failed",
                batch=f"{batch_idx + 1}/{total_batches}",
                model=spec.id,
                error=str(e),
            )
            raise EmbeddingProviderError(f"Embedding generation failed: {e}") from e

        duration_ms = (time.perf_counter() - start) * 1000

        # Response items carry their input index; don't rely on response order
        embeddings: list[list[float] | None] = [None] * len(texts)
        for item in response.data:
            vector = decode_embedding(item.embedding)
            embeddings[item.index] = normalize_vector(vector) if options.normalize else vector

        if any(e is None for e in embeddings):
            raise EmbeddingProviderError(
                f"Embedding response incomplete: expected {len(texts)} vectors, "
                f"got {len(response.data)}"
            )

        logger.info(
            "embeddings generated",
            batch=f"{batch_idx + 1}/{total_batches}",
            texts_count=len(texts),
            model=spec.id,
            duration_ms=round(duration_ms, 2),
        )
        return embeddings


def create_embedding_client(settings: Settings) -> EmbeddingClient | None:
    """Build the process-wide embedding client, or None when no API key is configured."""
    if not settings.openai_api_key:
        logger.warn("OPENAI_API_KEY not set, embedding features disabled")
        return None
    return EmbeddingClient(
        api_key=settings.openai_api_key,
        max_parallel_calls=settings.embedding_max_parallel_calls,
        batch_size=settings.embedding_batch_size,
        rate_limiter=RateLimiter(settings.embedding_min_request_interval_ms / 1000),
    )
