"""
Text embedding providers

Every provider returns L2-normalized float32 vectors so cosine similarity
reduces to an inner product.
"""
import asyncio
import logging
from typing import List
import httpx
import numpy as np
from sentence_transformers import SentenceTransformer

from invoice_assistant.config import Settings
from invoice_assistant.errors import OracleError

logger = logging.getLogger(__name__)


def _normalize(vecs: np.ndarray) -> np.ndarray:
    if vecs.size:
        norms = np.linalg.norm(vecs, axis=1, keepdims=True) + 1e-12
        vecs = vecs / norms
    return vecs


class SentenceTransformerEmbedder:
    """
    Local sentence-transformers model. The model is loaded on first use and
    encoding runs in a worker thread so the event loop stays free.
    """

    name = "sentence-transformers"

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", model=None):
        self.model_name = model_name
        self._model = model

    @property
    def model(self):
        if self._model is None:
            logger.info(f"Loading sentence-transformers model: {self.model_name}")
            try:
                self._model = SentenceTransformer(self.model_name)
            except Exception as e:
                logger.error(f"Failed to load embedding model {self.model_name}: {e}")
                raise OracleError(f"Embedding model unavailable: {e}") from e
        return self._model

    async def embed_batch(self, texts: List[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, 0), dtype=np.float32)
        model = self.model
        vecs = await asyncio.to_thread(
            model.encode, list(texts), normalize_embeddings=True, show_progress_bar=False
        )
        return _normalize(np.asarray(vecs, dtype=np.float32))


class HttpEmbeddingClient:
    """Embedding service speaking the OpenAI-compatible /embeddings contract"""

    name = "http"

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport = None):
        if not settings.embeddings_url:
            raise ValueError("EMBEDDINGS_URL is required for the http embeddings provider")
        self.url = settings.embeddings_url
        self.model = settings.embeddings_model
        self.timeout = settings.erp_timeout_seconds
        self.headers = {"Content-Type": "application/json"}
        if settings.embeddings_api_key:
            self.headers["Authorization"] = f"Bearer {settings.embeddings_api_key}"
        self.transport = transport

    async def embed_batch(self, texts: List[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, 0), dtype=np.float32)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    self.url,
                    json={"input": texts, "model": self.model},
                    headers=self.headers,
                )
                response.raise_for_status()
                data = response.json().get("data", [])
        except httpx.HTTPError as e:
            logger.error(f"Embedding service call failed: {e}")
            raise OracleError(f"Embedding service unavailable: {e}") from e

        if len(data) != len(texts):
            raise OracleError(f"Embedding service returned {len(data)} vectors for {len(texts)} inputs")
        vecs = np.array([d["embedding"] for d in data], dtype=np.float32)
        return _normalize(vecs)


EMBEDDERS = {
    "sentence-transformers": lambda settings: SentenceTransformerEmbedder(settings.sentence_model),
    "http": lambda settings: HttpEmbeddingClient(settings),
}


def get_embedder(settings: Settings):
    """Select the embedding provider named by EMBEDDINGS_PROVIDER"""
    factory = EMBEDDERS.get(settings.embeddings_provider)
    if factory is None:
        default = Settings.embeddings_provider
        logger.warning(f"Unknown embeddings provider '{settings.embeddings_provider}', using {default}")
        factory = EMBEDDERS[default]
    embedder = factory(settings)
    logger.info(f"Embeddings provider: {embedder.name}")
    return embedder
