"""
Embedding provider adapters.

A provider is a pure function of text -> fixed-length float vector. No caching
happens here; the embedding store decides when a call is needed.
"""
import logging
import threading
import time

import httpx

from ..config import (
    EMBEDDINGS_DIM,
    EMBEDDINGS_ENABLED,
    EMBEDDINGS_MAX_RETRIES,
    EMBEDDINGS_MODEL,
    EMBEDDINGS_PROVIDER,
    EMBEDDINGS_TIMEOUT_S,
    OPENAI_API_KEY,
    OPENAI_BASE_URL,
)
from ..utils.error_handlers import ProviderAuthError, ProviderError


logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}


def _safe_truncate(s: str, n: int = 800) -> str:
    s = s or ""
    if len(s) <= n:
        return s
    return s[:n] + "…"


class EmbeddingProvider:
    """Base adapter. Subclasses implement `_embed`."""

    def __init__(self, *, model: str, dim: int = 0):
        self.model = model
        self.dim = int(dim or 0)

    def embed(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")
        vector = self._embed(text)
        if not vector:
            raise ProviderError("Embedding provider returned an empty vector")
        if self.dim and len(vector) != self.dim:
            raise ProviderError(
                f"Embedding provider returned {len(vector)} dimensions, expected {self.dim}",
                details={"model": self.model},
            )
        return vector

    def _embed(self, text: str) -> list[float]:
        raise NotImplementedError


class LocalEmbeddingProvider(EmbeddingProvider):
    """fastembed model loaded once per process."""

    def __init__(self, *, model: str = EMBEDDINGS_MODEL, dim: int = EMBEDDINGS_DIM):
        super().__init__(model=model, dim=dim)
        self._embedder = None
        self._lock = threading.Lock()

    def _get_embedder(self):
        if self._embedder is not None:
            return self._embedder
        with self._lock:
            if self._embedder is None:
                try:
                    from fastembed import TextEmbedding  # type: ignore
                except ImportError as e:
                    raise ProviderAuthError("fastembed is not installed. Install backend requirements.") from e
                try:
                    self._embedder = TextEmbedding(model_name=self.model)
                except Exception as e:
                    # Not cached; the next call tries to load again.
                    logger.error("Local embedding model %s failed to load: %s", self.model, e)
                    raise ProviderError(f"Local embedding model failed to load: {type(e).__name__}") from e
        return self._embedder

    def _embed(self, text: str) -> list[float]:
        embedder = self._get_embedder()
        start = time.perf_counter()
        try:
            # fastembed returns an iterator of numpy arrays
            vec = next(iter(embedder.embed([text])))
        except Exception as e:
            raise ProviderError(f"Local embedding failed: {type(e).__name__}") from e
        logger.debug("Local embedding model=%s latency_ms=%s", self.model, int((time.perf_counter() - start) * 1000))
        return [float(x) for x in vec.tolist()]


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """
    OpenAI-compatible embeddings endpoint.

    Endpoint:
      POST {base_url}/embeddings
    Auth:
      Authorization: Bearer {api_key}
    """

    def __init__(
        self,
        *,
        api_key: str | None = OPENAI_API_KEY,
        base_url: str = OPENAI_BASE_URL,
        model: str = "text-embedding-3-small",
        dim: int = EMBEDDINGS_DIM,
        timeout_s: float = EMBEDDINGS_TIMEOUT_S,
        max_retries: int = EMBEDDINGS_MAX_RETRIES,
        transport: httpx.BaseTransport | None = None,
    ):
        super().__init__(model=model, dim=dim)
        self.api_key = api_key
        self.base_url = (base_url or "").rstrip("/")
        self.timeout_s = timeout_s
        self.max_retries = max(0, min(int(max_retries), 1))
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout_s,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )

    def _embed(self, text: str) -> list[float]:
        if not self.api_key:
            raise ProviderAuthError("Missing OPENAI_API_KEY")

        body = {"model": self.model, "input": text, "encoding_format": "float"}
        start = time.perf_counter()

        for attempt in range(self.max_retries + 1):
            try:
                with self._client() as client:
                    r = client.post("/embeddings", json=body)
            except httpx.TimeoutException:
                if attempt < self.max_retries:
                    backoff = 0.5 * (2**attempt)
                    logger.warning("Embedding request timeout; retrying in %.1fs", backoff)
                    time.sleep(backoff)
                    continue
                raise ProviderError("Embedding request timed out") from None
            except httpx.RequestError as e:
                if attempt < self.max_retries:
                    backoff = 0.5 * (2**attempt)
                    logger.warning("Embedding network error (%s); retrying in %.1fs", type(e).__name__, backoff)
                    time.sleep(backoff)
                    continue
                raise ProviderError(f"Embedding request failed: {type(e).__name__}") from e

            if r.status_code in (401, 403):
                raise ProviderAuthError(
                    "Embedding provider rejected the credential",
                    details={"status_code": r.status_code},
                )
            if r.status_code >= 400:
                # Retry only on transient server errors / rate limits.
                if r.status_code in _RETRYABLE_STATUS and attempt < self.max_retries:
                    backoff = 0.5 * (2**attempt)
                    logger.warning("Embedding HTTP %s; retrying in %.1fs", r.status_code, backoff)
                    time.sleep(backoff)
                    continue
                raise ProviderError(
                    f"Embedding provider HTTP {r.status_code}: {_safe_truncate(r.text, 300)}",
                    details={"status_code": r.status_code},
                )

            try:
                data = r.json()
                vector = (data.get("data") or [{}])[0].get("embedding") or []
                vector = [float(x) for x in vector]
            except (ValueError, TypeError, AttributeError) as e:
                raise ProviderError("Embedding provider returned a malformed response") from e

            logger.info(
                "Embedding ok model=%s status=%s latency_ms=%s retries=%s",
                self.model,
                r.status_code,
                int((time.perf_counter() - start) * 1000),
                attempt,
            )
            return vector

        # Should be unreachable
        raise ProviderError("Embedding request failed")


class DisabledEmbeddingProvider(EmbeddingProvider):
    """Used when EMBEDDINGS_ENABLED=0; every call fails like a provider outage."""

    def __init__(self, *, model: str = EMBEDDINGS_MODEL):
        super().__init__(model=model)

    def _embed(self, text: str) -> list[float]:
        raise ProviderError("Embeddings are disabled")


_PROVIDER: EmbeddingProvider | None = None
_PROVIDER_LOCK = threading.Lock()


def get_embedding_provider() -> EmbeddingProvider:
    """Process-wide provider built from configuration."""
    global _PROVIDER
    if _PROVIDER is not None:
        return _PROVIDER
    with _PROVIDER_LOCK:
        if _PROVIDER is None:
            if not EMBEDDINGS_ENABLED:
                _PROVIDER = DisabledEmbeddingProvider()
            elif EMBEDDINGS_PROVIDER == "local":
                _PROVIDER = LocalEmbeddingProvider()
            elif EMBEDDINGS_PROVIDER == "openai":
                model = EMBEDDINGS_MODEL if EMBEDDINGS_MODEL.startswith("text-embedding") else "text-embedding-3-small"
                _PROVIDER = OpenAIEmbeddingProvider(model=model)
            else:
                raise ProviderAuthError(f"Unknown EMBEDDINGS_PROVIDER '{EMBEDDINGS_PROVIDER}'")
    return _PROVIDER
