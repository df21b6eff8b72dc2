"""
Embedding provider boundary.

The engine never constructs or trains a model; it talks to anything that
satisfies ``EmbeddingProvider``. ``SentenceTransformerProvider`` is the
default local implementation.
"""

import asyncio
import logging
import threading
from typing import Literal, Protocol, runtime_checkable

# Import sentence transformers with fallback
try:
    from sentence_transformers import SentenceTransformer

    SENTENCE_TRANSFORMERS_AVAILABLE = True
except ImportError:
    SENTENCE_TRANSFORMERS_AVAILABLE = False

logger = logging.getLogger(__name__)

if not SENTENCE_TRANSFORMERS_AVAILABLE:
    logger.warning("sentence_transformers not available. Install for local embedding support.")

EmbeddingPurpose = Literal["passage", "query"]


@runtime_checkable
class EmbeddingProvider(Protocol):
    """External embedding model: text in, fixed-length vector out.

    Implementations may be slow, rate-limited or transiently unavailable;
    the pool in ``embeddings.pool`` owns retries, timeouts and concurrency.
    """

    model_name: str

    async def embed(self, text: str, purpose: EmbeddingPurpose = "passage") -> list[float]: ...


class SentenceTransformerProvider:
    """
    Local sentence-transformers model with thread-safe lazy loading.

    For instruction-tuned models (E5, Nomic, Arctic), ``purpose`` selects the
    model's configured prompt ("query" or "passage"). Models without prompts
    encode the raw text.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", device: str | None = None):
        self.model_name = model_name
        self.device = device
        self._model = None
        self._model_lock = threading.Lock()

    def _load_model(self):
        # Double-checked so concurrent first calls load the model only once
        if self._model is None:
            with self._model_lock:
                if self._model is None:
                    if not SENTENCE_TRANSFORMERS_AVAILABLE:
                        raise RuntimeError(
                            "sentence_transformers not installed. Install with: pip install sentence-transformers"
                        )
                    logger.info(f"Loading embedding model: {self.model_name}")
                    self._model = SentenceTransformer(self.model_name, device=self.device, trust_remote_code=True)
                    logger.info(f"Loaded model: {self.model_name}")
        return self._model

    def _encode(self, text: str, purpose: EmbeddingPurpose) -> list[float]:
        model = self._load_model()
        prompts = getattr(model, "prompts", None) or {}
        if purpose in prompts:
            embedding = model.encode(text, prompt_name=purpose, convert_to_tensor=False)
        else:
            embedding = model.encode(text, convert_to_tensor=False)
        vector = embedding.tolist() if hasattr(embedding, "tolist") else list(embedding)
        if not vector:
            raise ValueError("Generated embedding is empty")
        return vector

    async def embed(self, text: str, purpose: EmbeddingPurpose = "passage") -> list[float]:
        """Encode *text* off the event loop (model inference is blocking)."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._encode, text, purpose)
