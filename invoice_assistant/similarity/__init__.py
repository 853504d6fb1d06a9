# Similarity package
from .oracle import SimilarityOracle, cosine
from .embedders import HttpEmbeddingClient, SentenceTransformerEmbedder, get_embedder
