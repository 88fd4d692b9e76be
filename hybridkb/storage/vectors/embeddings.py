"""
Embedding Service
=================

Singleton wrapper around a sentence-transformers model used for chunk,
query and entity embeddings.

Key Features:
- Singleton pattern (model loaded once and reused)
- Lazy loading (model loaded on first use, not on import)
- Optional query/passage prefixes (E5/BGE style instruction models)
- Batch encoding
- Async wrappers that run encoding in the default executor

Environment Variables:
    EMBEDDING_MODEL: Model name (default: BAAI/bge-base-en-v1.5)
    EMBEDDING_DEVICE: cpu / cuda (default: auto-detect)
    EMBEDDING_BATCH_SIZE: Batch size (default: 32)
    EMBEDDING_NORMALIZE: Normalize vectors for cosine similarity (default: true)
    EMBEDDING_QUERY_PREFIX: Prefix prepended to queries (default: empty)
    EMBEDDING_DOCUMENT_PREFIX: Prefix prepended to passages (default: empty)
"""

import asyncio
import logging
import os
from threading import Lock
from typing import List, Optional, Sequence

import numpy as np

try:
    from sentence_transformers import SentenceTransformer
    import torch
except ImportError:
    raise ImportError(
        "sentence-transformers and torch are required for EmbeddingService. "
        "Install with: pip install sentence-transformers torch"
    )

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors (0.0 when either is zero)."""
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


class EmbeddingService:
    """
    Singleton service for sentence embeddings.

    Usage:
        service = EmbeddingService.get_instance()

        query_vector = service.embed("how does the ingress controller route traffic?")
        doc_vector = service.encode_document("The ingress controller ...")
        vectors = service.encode_batch(["text1", "text2"], is_query=False)
    """

    _instance: Optional['EmbeddingService'] = None
    _lock: Lock = Lock()

    def __init__(
        self,
        model_name: Optional[str] = None,
        device: Optional[str] = None,
        batch_size: int = 32,
        normalize_embeddings: bool = True,
        query_prefix: Optional[str] = None,
        document_prefix: Optional[str] = None,
    ):
        """
        Initialize EmbeddingService.

        Args:
            model_name: Sentence-transformers model name
                       (default: EMBEDDING_MODEL env var or BAAI/bge-base-en-v1.5)
            device: Device to use ('cpu', 'cuda', or None for auto-detect)
            batch_size: Batch size for encoding
            normalize_embeddings: Whether to normalize embeddings (for cosine similarity)
            query_prefix: Instruction prefix for queries
            document_prefix: Instruction prefix for documents
        """
        self.model_name = (
            model_name or
            os.getenv("EMBEDDING_MODEL", "BAAI/bge-base-en-v1.5")
        )
        self.device = (
            device or
            os.getenv("EMBEDDING_DEVICE", "cuda" if torch.cuda.is_available() else "cpu")
        )
        self.batch_size = int(os.getenv("EMBEDDING_BATCH_SIZE", str(batch_size)))
        self.normalize_embeddings = (
            os.getenv("EMBEDDING_NORMALIZE", str(normalize_embeddings)).lower() == "true"
        )
        self.query_prefix = query_prefix if query_prefix is not None else os.getenv("EMBEDDING_QUERY_PREFIX", "")
        self.document_prefix = (
            document_prefix if document_prefix is not None else os.getenv("EMBEDDING_DOCUMENT_PREFIX", "")
        )

        self._model: Optional[SentenceTransformer] = None
        self._initialized = False

        logger.info(
            "EmbeddingService configured",
            extra={
                "model": self.model_name,
                "device": self.device,
                "batch_size": self.batch_size,
                "normalize": self.normalize_embeddings
            }
        )

    @classmethod
    def get_instance(cls, **kwargs) -> 'EmbeddingService':
        """
        Get singleton instance of EmbeddingService.

        Thread-safe singleton implementation using double-checked locking.
        """
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls(**kwargs)
        return cls._instance

    def _load_model(self) -> SentenceTransformer:
        """Lazy load the sentence-transformers model."""
        if self._model is None:
            with self._lock:
                if self._model is None:
                    logger.info(f"Loading embedding model: {self.model_name} on device: {self.device}")
                    try:
                        self._model = SentenceTransformer(self.model_name, device=self.device)
                        self._initialized = True
                        logger.info(
                            f"Model loaded successfully. "
                            f"Embedding dimension: {self._model.get_sentence_embedding_dimension()}"
                        )
                    except Exception as e:
                        logger.error(f"Failed to load model: {e}", exc_info=True)
                        raise RuntimeError(f"Failed to load embedding model: {e}")

        return self._model

    @property
    def is_loaded(self) -> bool:
        """Check if model is loaded."""
        return self._model is not None and self._initialized

    @property
    def embedding_dimension(self) -> int:
        model = self._load_model()
        return model.get_sentence_embedding_dimension()

    def _encode(self, text: str, prefix: str) -> List[float]:
        model = self._load_model()
        embedding = model.encode(
            f"{prefix}{text}",
            normalize_embeddings=self.normalize_embeddings,
            convert_to_numpy=True
        )
        return embedding.tolist()

    def encode_query(self, text: str) -> List[float]:
        """Encode a search query."""
        logger.debug(f"Encoding query: {text[:100]}...")
        return self._encode(text, self.query_prefix)

    def encode_document(self, text: str) -> List[float]:
        """Encode a chunk or entity description."""
        logger.debug(f"Encoding document: {text[:100]}...")
        return self._encode(text, self.document_prefix)

    def embed(self, text: str) -> List[float]:
        """Embed a query; alias of encode_query."""
        return self.encode_query(text)

    def encode_batch(
        self,
        texts: List[str],
        is_query: bool = False,
        show_progress_bar: bool = False
    ) -> List[List[float]]:
        """
        Encode a batch of texts.

        Args:
            texts: List of texts to encode
            is_query: Use the query prefix instead of the document prefix
            show_progress_bar: Whether to show progress bar

        Returns:
            List of embedding vectors, one per input text
        """
        if not texts:
            return []

        model = self._load_model()
        prefix = self.query_prefix if is_query else self.document_prefix
        prefixed_texts = [f"{prefix}{text}" for text in texts]

        logger.info(f"Batch encoding {len(texts)} {'queries' if is_query else 'documents'}")

        embeddings = model.encode(
            prefixed_texts,
            batch_size=self.batch_size,
            normalize_embeddings=self.normalize_embeddings,
            show_progress_bar=show_progress_bar,
            convert_to_numpy=True
        )
        return embeddings.tolist()

    def similarity(self, query: str, passages: List[str]) -> List[float]:
        """Cosine similarity of a query against each passage."""
        if not passages:
            return []
        query_vec = self.encode_query(query)
        passage_vecs = self.encode_batch(passages, is_query=False)
        return [cosine_similarity(query_vec, vec) for vec in passage_vecs]

    async def embed_async(self, text: str) -> List[float]:
        """Embed a query without blocking the event loop."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self.encode_query, text)

    async def encode_document_async(self, text: str) -> List[float]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self.encode_document, text)

    async def encode_batch_async(
        self,
        texts: List[str],
        is_query: bool = False,
        show_progress_bar: bool = False
    ) -> List[List[float]]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(
            None,
            lambda: self.encode_batch(texts, is_query, show_progress_bar)
        )

    async def similarity_async(self, query: str, passages: List[str]) -> List[float]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self.similarity, query, passages)

    def __repr__(self) -> str:
        return (
            f"EmbeddingService("
            f"model={self.model_name}, "
            f"device={self.device}, "
            f"loaded={self.is_loaded})"
        )
