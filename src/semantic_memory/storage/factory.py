# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Storage backend factory for the semantic memory engine.

Creates and initializes the configured storage backend.
"""

import logging

from ..config import Settings
from .base import MemoryStorage
from .in_memory import InMemoryStorage
from .qdrant_storage import QdrantStorage

logger = logging.getLogger(__name__)


async def create_storage_instance(config: Settings, vector_size: int | None = None) -> MemoryStorage:
    """
    Create and initialize the storage backend named by ``config.storage_backend``.

    Args:
        config: Engine settings
        vector_size: Embedding dimension; required by the Qdrant backend

    Returns:
        Initialized MemoryStorage instance
    """
    if config.storage_backend == "memory":
        storage: MemoryStorage = InMemoryStorage()
    else:
        if vector_size is None:
            raise ValueError("Qdrant storage requires a known embedding dimension")
        logger.info("Creating Qdrant storage backend instance...")
        if config.qdrant.url:
            storage = QdrantStorage(
                vector_size=vector_size,
                url=config.qdrant.url,
                collection_prefix=config.qdrant.collection_prefix,
                exact_search=config.qdrant.exact_search,
                scroll_batch_size=config.qdrant.scroll_batch_size,
            )
            logger.info(f"Initialized Qdrant storage in server mode: {config.qdrant.url}")
        else:
            storage_path = config.qdrant.storage_path or ":memory:"
            storage = QdrantStorage(
                vector_size=vector_size,
                storage_path=storage_path,
                collection_prefix=config.qdrant.collection_prefix,
                exact_search=config.qdrant.exact_search,
                scroll_batch_size=config.qdrant.scroll_batch_size,
            )
            logger.info(f"Initialized Qdrant storage in embedded mode: {storage_path}")

    await storage.initialize()
    logger.info(f"{type(storage).__name__} initialized successfully")
    return storage
