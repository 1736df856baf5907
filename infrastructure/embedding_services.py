# infrastructure/embedding_services.py
"""Embedding generation with L2 normalization for consistent similarity scoring"""
import asyncio
import logging
import numpy as np
from typing import Dict, List, Optional
from sentence_transformers import SentenceTransformer

from core.exceptions import EmbeddingFailedError
from core.interfaces import IEmbeddingService
from config import settings
from utils.common import normalize_whitespace

logger = logging.getLogger(settings.LOGGER_NAME)

class SentenceTransformerEmbedding(IEmbeddingService):
    """
    Sentence transformer producing unit-length vectors.

    - Input text is whitespace-normalized and truncated to EMBEDDING_MAX_INPUT_CHARS
    - Output vectors are L2 normalized, so cosine similarity equals the dot product
    - Loaded models are cached per model name and shared between instances
    """

    _models: Dict[str, SentenceTransformer] = {}

    def __init__(self, model_name: str = settings.EMBEDDING_MODEL_NAME,
                 max_input_chars: int = settings.EMBEDDING_MAX_INPUT_CHARS):
        self.model_name = model_name
        self.max_input_chars = max_input_chars
        self._dimension: Optional[int] = None

    @property
    def model(self) -> SentenceTransformer:
        model = SentenceTransformerEmbedding._models.get(self.model_name)
        if model is None:
            model = self._load_model(self.model_name)
            SentenceTransformerEmbedding._models[self.model_name] = model
        return model

    @staticmethod
    def _load_model(model_name: str) -> SentenceTransformer:
        try:
            logger.info(f"Attempting to load model {model_name} from local cache...")
            model = SentenceTransformer(model_name, local_files_only=True)
            logger.info(f"Successfully loaded {model_name} from local cache.")
            return model
        except Exception as e:
            logger.warning(
                f"Model {model_name} not found in cache. Attempting online download. "
                f"This may take a few minutes. Error: {e}"
            )

        try:
            model = SentenceTransformer(model_name)
        except Exception as e:
            raise EmbeddingFailedError(f"Could not load embedding model {model_name}: {e}") from e
        logger.info(f"Successfully downloaded and loaded {model_name}.")
        return model

    async def open(self) -> None:
        """Load the model ahead of the first request."""
        model = await asyncio.to_thread(lambda: self.model)
        self._dimension = model.get_sentence_embedding_dimension()
        logger.info(f"[EMBED] Model {self.model_name} ready (dimension {self._dimension}).")

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def _preprocess(self, text: str) -> str:
        if text is None or not str(text).strip():
            raise EmbeddingFailedError("Cannot embed empty text")
        return normalize_whitespace(str(text), max_chars=self.max_input_chars)

    @staticmethod
    def _l2_normalize(arr: np.ndarray) -> np.ndarray:
        """
        L2 normalize vectors to unit length (||v|| = 1).

        Args:
            arr: (N, D) array of N vectors with D dimensions

        Returns:
            (N, D) array of unit-normalized vectors
        """
        norms = np.linalg.norm(arr, axis=1, keepdims=True)
        norms[norms == 0] = 1e-12  # Avoid division by zero
        return arr / norms

    def _encode(self, texts: List[str]) -> np.ndarray:
        raw = self.model.encode(texts, convert_to_tensor=False)
        return self._l2_normalize(np.array(raw, dtype="float32").reshape(len(texts), -1))

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed all texts in one model call; any failure fails the whole batch."""
        if not texts:
            return []
        prepared = [self._preprocess(t) for t in texts]
        try:
            vectors = await asyncio.to_thread(self._encode, prepared)
        except EmbeddingFailedError:
            raise
        except Exception as e:
            logger.error(f"[EMBED] Batch of {len(texts)} failed: {e}")
            raise EmbeddingFailedError(f"Embedding failed: {e}") from e

        if self._dimension is None and vectors.size:
            self._dimension = int(vectors.shape[1])
        return vectors.tolist()

    async def embed(self, text: str) -> List[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]
