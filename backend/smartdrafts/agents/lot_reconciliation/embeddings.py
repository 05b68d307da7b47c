"""
Embedding plumbing for lot reconciliation.

- cosine similarity over plain vectors (numpy)
- a per-scan memo of text / image embeddings, owned by the caller
- bounded-concurrency fan-out so a scan issues embedding calls in waves

The provider itself is external; anything with async embed_text / embed_image
returning a vector (or None) will do. services/clip_embeddings.py is the
Hugging Face implementation.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, TypeVar

import numpy as np

from .url_keys import canonical_url

logger = logging.getLogger(__name__)

Vector = List[float]
T = TypeVar("T")
R = TypeVar("R")


class EmbeddingProvider(Protocol):
    async def embed_text(self, prompt: str) -> Optional[Vector]: ...

    async def embed_image(self, url: str) -> Optional[Vector]: ...


def cosine(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """
    Cosine similarity of two vectors, in [-1, 1].

    Missing, empty, zero-norm or different-length vectors carry no signal and
    score 0.0. Non-finite components propagate (the caller filters nan/inf).
    """
    if a is None or b is None or len(a) == 0 or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    with np.errstate(invalid="ignore", over="ignore", divide="ignore"):
        norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
        if norm == 0.0:
            return 0.0
        return float(np.dot(va, vb) / norm)


def _usable(vector) -> Optional[Vector]:
    if vector is None:
        return None
    try:
        values = [float(x) for x in vector]
    except (TypeError, ValueError):
        return None
    return values or None


async def gather_limited(
    items: Sequence[T],
    limit: int,
    fn: Callable[[T], Awaitable[Optional[R]]],
) -> List[Optional[R]]:
    """
    Run fn over items with at most `limit` calls in flight.

    Results keep the order of items. A failing call yields None for its slot
    and is logged; it never cancels the other calls.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def run(item: T) -> Optional[R]:
        async with semaphore:
            try:
                return await fn(item)
            except Exception as e:
                logger.warning("Embedding request failed for %r: %s", item, e)
                return None

    return list(await asyncio.gather(*(run(item) for item in items)))


@dataclass
class EmbeddingCache:
    """
    Per-scan memo of embeddings.

    Text embeddings are keyed by prompt, image embeddings by canonical URL.
    Failures are remembered as None so one scan never repeats a failed call.
    """
    text: Dict[str, Optional[Vector]] = field(default_factory=dict)
    image: Dict[str, Optional[Vector]] = field(default_factory=dict)
    # calls still in flight, shared by every caller asking for the same key
    _pending: Dict[Tuple[str, str], "asyncio.Task[Optional[Vector]]"] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    async def _memoized(
        self,
        store: Dict[str, Optional[Vector]],
        kind: str,
        key: str,
        fetch: Callable[[], Awaitable[Any]],
    ) -> Optional[Vector]:
        if key in store:
            return store[key]
        task = self._pending.get((kind, key))
        if task is None:
            task = asyncio.ensure_future(self._fetch(store, kind, key, fetch))
            self._pending[(kind, key)] = task
        return await asyncio.shield(task)

    async def _fetch(
        self,
        store: Dict[str, Optional[Vector]],
        kind: str,
        key: str,
        fetch: Callable[[], Awaitable[Any]],
    ) -> Optional[Vector]:
        vector = None
        try:
            vector = _usable(await fetch())
        except Exception as e:
            logger.warning("%s embedding failed for %r: %s", kind.capitalize(), key, e)
        finally:
            self._pending.pop((kind, key), None)
        store[key] = vector
        return vector

    async def text_embedding(self, provider: EmbeddingProvider, prompt: str) -> Optional[Vector]:
        return await self._memoized(self.text, "text", prompt, lambda: provider.embed_text(prompt))

    async def image_embedding(self, provider: EmbeddingProvider, url: str) -> Optional[Vector]:
        return await self._memoized(self.image, "image", canonical_url(url), lambda: provider.embed_image(url))

    def cached_text(self, prompt: str) -> Optional[Vector]:
        return self.text.get(prompt)

    def cached_image(self, url: str) -> Optional[Vector]:
        return self.image.get(canonical_url(url))

    def stats(self) -> Dict[str, int]:
        return {
            "text_embeddings": sum(1 for v in self.text.values() if v),
            "image_embeddings": sum(1 for v in self.image.values() if v),
            "failures": sum(1 for v in list(self.text.values()) + list(self.image.values()) if not v),
        }
