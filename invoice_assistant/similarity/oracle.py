"""
Similarity Oracle - text to vector, plus cosine ranking
"""
import logging
from typing import Any, List, Sequence, Tuple
import numpy as np

from invoice_assistant.errors import OracleError

logger = logging.getLogger(__name__)


def cosine(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity clamped into [0, 1]"""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape or not va.size:
        return 0.0
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(min(1.0, max(0.0, float(np.dot(va, vb)) / denom)))


class SimilarityOracle:
    """
    Wraps an embedding provider.

    Candidates are (key, embedding) pairs; ranking returns (key, score)
    pairs ordered by score descending, ties keeping input order.
    """

    def __init__(self, embedder):
        self.embedder = embedder

    async def embed_many(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        try:
            vecs = await self.embedder.embed_batch(texts)
        except OracleError:
            raise
        except Exception as e:
            raise OracleError(f"Embedding failed: {e}") from e
        return [row.astype(float).tolist() for row in vecs]

    async def embed(self, text: str) -> List[float]:
        return (await self.embed_many([text]))[0]

    def rank(
        self,
        query: Sequence[float],
        candidates: Sequence[Tuple[Any, Sequence[float]]],
        top_k: int,
    ) -> List[Tuple[Any, float]]:
        q = np.asarray(query, dtype=np.float64)
        usable = [(key, vec) for key, vec in candidates if vec is not None and len(vec) == q.shape[0]]
        if len(usable) < len(candidates):
            logger.warning(f"Skipped {len(candidates) - len(usable)} candidates with missing or mismatched embeddings")
        if not usable or not q.size:
            return []

        matrix = np.asarray([vec for _, vec in usable], dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1) * (np.linalg.norm(q) or 1.0)
        norms[norms == 0] = 1.0
        scores = np.clip(matrix @ q / norms, 0.0, 1.0)

        order = np.argsort(-scores, kind="stable")[:top_k]
        return [(usable[i][0], float(scores[i])) for i in order]
