import faiss
import numpy as np
from typing import List, Dict, Any, Optional
import hashlib
import pickle
import os
import re
import logging
import threading

from .models import EmbeddingChunk, ChunkMetadata, RetrievedContext

logger = logging.getLogger(__name__)

EMBEDDING_DIM = 384

_TOKEN_STRIP = re.compile(r"[^\w']+")

class VectorDatabase:
    """In-memory chunk store with a faiss flat index over hashed pseudo-embeddings.

    Embeddings are signed bag-of-words feature hashes, L2 normalised, so the
    inner product returned by the index is the cosine similarity.
    """

    def __init__(self, dimension: int = EMBEDDING_DIM):
        self.dimension = dimension
        self.index = faiss.IndexFlatIP(dimension)
        self.chunks: Dict[str, EmbeddingChunk] = {}
        self.embeddings: Dict[str, np.ndarray] = {}
        self._row_ids: List[str] = []  # faiss row -> chunk id
        self._lock = threading.RLock()

    def generate_embedding(self, text: str) -> np.ndarray:
        """Hash each word into one of `dimension` buckets with a +/-1 sign"""
        vector = np.zeros(self.dimension, dtype="float32")

        for word in text.lower().split():
            token = _TOKEN_STRIP.sub("", word)
            if not token:
                continue
            digest = hashlib.md5(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "little") % self.dimension
            vector[bucket] += 1.0 if digest[4] & 1 else -1.0

        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector

    def chunk_text(
        self,
        text: str,
        source: str,
        metadata: ChunkMetadata,
        chunk_size: int = 600,
        overlap: int = 100,
    ) -> List[EmbeddingChunk]:
        """Split text into overlapping windows of `chunk_size` words"""
        if overlap >= chunk_size:
            raise ValueError("overlap must be smaller than chunk_size")

        chunks = []
        words = text.split()
        start = 0
        chunk_index = 0

        while start < len(words):
            end = min(start + chunk_size, len(words))
            content = " ".join(words[start:end])

            if content.strip():
                chunks.append(EmbeddingChunk(
                    id=f"{source}_{metadata.subject or 'unknown'}_{chunk_index}",
                    content=content,
                    source=source,
                    metadata=metadata.model_copy(update={"chunk_index": chunk_index}),
                ))
                chunk_index += 1

            if end >= len(words):
                break
            start = end - overlap

        logger.info(f"Created {len(chunks)} chunks from {source}")
        return chunks

    def add_chunk(self, chunk: EmbeddingChunk):
        embedding = self.generate_embedding(chunk.content)

        with self._lock:
            replacing = chunk.id in self.chunks
            self.chunks[chunk.id] = chunk
            self.embeddings[chunk.id] = embedding

            if replacing:
                # flat index rows cannot be updated in place
                self._rebuild_index()
            else:
                self.index.add(embedding.reshape(1, -1))
                self._row_ids.append(chunk.id)

        logger.debug(f"Added chunk to vector database: {chunk.id}")

    def add_chunks(self, chunks: List[EmbeddingChunk]):
        for chunk in chunks:
            self.add_chunk(chunk)
        logger.info(f"Added {len(chunks)} chunks to vector database")

    def index_content(self, content: str, source: str, metadata: ChunkMetadata) -> int:
        """Chunk and index one document, returns the number of chunks added"""
        try:
            chunks = self.chunk_text(content, source, metadata)
            self.add_chunks(chunks)
            logger.info(f"Indexed content from {source}: {len(chunks)} chunks")
            return len(chunks)
        except Exception as e:
            logger.error(f"Failed to index content from {source}: {str(e)}")
            raise

    def search(self, query: str, top_k: int = 6, threshold: float = 0.75) -> List[RetrievedContext]:
        """Return up to top_k chunks whose similarity to the query is at least threshold"""
        query_embedding = self.generate_embedding(query).reshape(1, -1)

        with self._lock:
            k = min(top_k, self.index.ntotal)
            if k <= 0:
                return []

            scores, rows = self.index.search(query_embedding, k)

            results = []
            for score, row in zip(scores[0], rows[0]):
                if row < 0 or score < threshold:
                    continue
                chunk = self.chunks[self._row_ids[row]]
                results.append(self._to_context(chunk, float(score)))

        logger.debug(f"Vector search returned {len(results)} results for query: {query[:50]}")
        return results

    def search_by_metadata(
        self,
        metadata: Dict[str, Any],
        query: Optional[str] = None,
        top_k: int = 10,
        threshold: Optional[float] = None,
    ) -> List[RetrievedContext]:
        """Filter chunks by board/class/subject/chapter and optionally rank them by query.

        With a query, chunks scoring below threshold are dropped before top_k is applied.
        """
        with self._lock:
            filtered = [
                chunk for chunk in self.chunks.values()
                if self._matches(chunk.metadata, metadata)
            ]

            if not query:
                return [self._to_context(chunk, 1.0) for chunk in filtered[:top_k]]

            query_embedding = self.generate_embedding(query)
            scored = [
                (chunk, float(np.dot(query_embedding, self.embeddings[chunk.id])))
                for chunk in filtered
            ]

        if threshold is not None:
            scored = [item for item in scored if item[1] >= threshold]
        scored.sort(key=lambda item: item[1], reverse=True)
        return [self._to_context(chunk, score) for chunk, score in scored[:top_k]]

    def _matches(self, chunk_metadata: ChunkMetadata, wanted: Dict[str, Any]) -> bool:
        values = chunk_metadata.model_dump(by_alias=True)
        for key in ("board", "class", "subject", "chapter"):
            expected = wanted.get(key)
            if expected is not None and values.get(key) != expected:
                return False
        return True

    def _to_context(self, chunk: EmbeddingChunk, score: float) -> RetrievedContext:
        return RetrievedContext(
            content=chunk.content,
            source=chunk.source,
            similarity_score=score,
            chunk_id=chunk.id,
        )

    def _rebuild_index(self):
        self.index = faiss.IndexFlatIP(self.dimension)
        self._row_ids = list(self.embeddings.keys())
        if self._row_ids:
            self.index.add(np.stack([self.embeddings[chunk_id] for chunk_id in self._row_ids]))

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            sources = list(dict.fromkeys(chunk.source for chunk in self.chunks.values()))
            return {
                "total_chunks": len(self.chunks),
                "total_embeddings": len(self.embeddings),
                "sources": sources,
            }

    def clear(self):
        with self._lock:
            self.chunks.clear()
            self.embeddings.clear()
            self._rebuild_index()
        logger.info("Vector database cleared")

    def save(self, filepath: str):
        """Save the index and chunks to disk"""
        directory = os.path.dirname(filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with self._lock:
            faiss.write_index(self.index, f"{filepath}.index")
            with open(f"{filepath}.chunks", "wb") as f:
                pickle.dump({
                    "dimension": self.dimension,
                    "row_ids": list(self._row_ids),
                    "chunks": [self.chunks[chunk_id].model_dump(by_alias=True) for chunk_id in self._row_ids],
                }, f)

        logger.info(f"Vector store saved to {filepath}")

    def load(self, filepath: str):
        """Load an index and chunks written by save()"""
        index = faiss.read_index(f"{filepath}.index")
        with open(f"{filepath}.chunks", "rb") as f:
            data = pickle.load(f)

        if data["dimension"] != self.dimension:
            raise ValueError(f"Stored dimension {data['dimension']} does not match {self.dimension}")

        chunks = [EmbeddingChunk.model_validate(item) for item in data["chunks"]]
        with self._lock:
            self.index = index
            self._row_ids = data["row_ids"]
            self.chunks = {chunk.id: chunk for chunk in chunks}
            self.embeddings = {
                chunk_id: index.reconstruct(row) for row, chunk_id in enumerate(self._row_ids)
            }

        logger.info(f"Vector store loaded from {filepath}")
