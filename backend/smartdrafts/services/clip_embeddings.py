"""
CLIP embeddings via Hugging Face inference endpoints.

- text: POST {"inputs": prompt} to the text endpoint
- image: download the photo, re-encode it as JPEG, POST it as a base64 data
  URL; if the endpoint rejects that, retry with the raw JPEG bytes

Vectors come back unit-normalized. An unconfigured client returns None for
everything, which the reconciliation engine treats as "embeddings unavailable".
"""

from __future__ import annotations

import base64
import io
import logging
from typing import Any

import httpx
import numpy as np
from PIL import Image, UnidentifiedImageError

from smartdrafts.agents.lot_reconciliation.config import ClipConfig

logger = logging.getLogger(__name__)


class ClipEmbeddingError(RuntimeError):
    """Raised when a CLIP endpoint call fails."""


def to_unit(vector: list[float]) -> list[float]:
    arr = np.asarray(vector, dtype=float)
    norm = float(np.linalg.norm(arr))
    if not norm or not np.isfinite(norm):
        return [0.0] * len(vector)
    return (arr / norm).tolist()


def coerce_vector(raw: Any, pool: bool = False) -> list[float] | None:
    """
    Pull a flat vector out of an endpoint response.

    Handles [..], [[..]] (single row, or mean-pooled rows when pool=True) and
    {"embeddings": ...} / {"embedding": ...} wrappers.
    """
    if raw is None:
        return None
    if isinstance(raw, dict):
        for key in ("embeddings", "embedding"):
            if isinstance(raw.get(key), list):
                return coerce_vector(raw[key], pool)
        return None
    if not isinstance(raw, list) or not raw:
        return None
    if all(isinstance(x, (int, float)) and not isinstance(x, bool) for x in raw):
        return [float(x) for x in raw]
    if all(isinstance(row, list) and row for row in raw):
        if len(raw) == 1:
            return coerce_vector(raw[0])
        if not pool or len({len(row) for row in raw}) != 1:
            return None
        try:
            return np.asarray(raw, dtype=float).mean(axis=0).tolist()
        except (TypeError, ValueError):
            return None
    return None


def image_bytes_to_data_url(data: bytes, max_dimension: int | None = None) -> str:
    """JPEG data URL for an image, optionally downsampled (keeps aspect ratio)."""
    try:
        image = Image.open(io.BytesIO(data))
        if image.mode != 'RGB':
            image = image.convert('RGB')
        if max_dimension and (image.width > max_dimension or image.height > max_dimension):
            ratio = max_dimension / max(image.width, image.height)
            image = image.resize((int(image.width * ratio), int(image.height * ratio)), Image.Resampling.LANCZOS)
        buffer = io.BytesIO()
        image.save(buffer, format='JPEG', quality=ClipConfig.JPEG_QUALITY)
        data = buffer.getvalue()
    except (UnidentifiedImageError, OSError) as e:
        # let the endpoint try the original bytes
        logger.debug("Could not re-encode image, sending original bytes: %s", e)
    return f"data:image/jpeg;base64,{base64.b64encode(data).decode('utf-8')}"


class ClipEmbeddingClient:
    """
    Embedding provider backed by the HF text / image endpoints.

    Pass an httpx.AsyncClient to share a connection pool (or a mock transport
    in tests); otherwise one is created per request.
    """

    def __init__(
        self,
        token: str | None = None,
        text_endpoint: str | None = None,
        image_endpoint: str | None = None,
        client: httpx.AsyncClient | None = None,
        max_image_dimension: int | None = None,
    ):
        self.token = token if token is not None else ClipConfig.HF_API_TOKEN
        self.text_endpoint = (text_endpoint if text_endpoint is not None else ClipConfig.HF_TEXT_ENDPOINT_BASE).rstrip("/")
        self.image_endpoint = (image_endpoint if image_endpoint is not None else ClipConfig.HF_IMAGE_ENDPOINT_BASE).rstrip("/")
        self.client = client
        self.max_image_dimension = max_image_dimension or ClipConfig.MAX_IMAGE_DIMENSION

    @property
    def configured(self) -> bool:
        return bool(self.token and self.text_endpoint and self.image_endpoint)

    def _timeout(self) -> httpx.Timeout:
        return httpx.Timeout(ClipConfig.REQUEST_TIMEOUT, connect=ClipConfig.CONNECT_TIMEOUT)

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self.client is not None:
            return await self.client.request(method, url, **kwargs)
        async with httpx.AsyncClient(timeout=self._timeout(), follow_redirects=True) as client:
            return await client.request(method, url, **kwargs)

    async def _post(self, url: str, headers: dict[str, str], **kwargs) -> Any:
        response = await self._request("POST", url, headers=headers, **kwargs)
        if response.status_code >= 400:
            raise ClipEmbeddingError(f"CLIP endpoint failed ({response.status_code}): {response.text[:300]}")
        try:
            return response.json()
        except ValueError:
            return None

    def _headers(self, content_type: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
            "Content-Type": content_type,
        }

    async def embed_text(self, prompt: str) -> list[float] | None:
        if not self.configured:
            return None
        payload = await self._post(self.text_endpoint, self._headers("application/json"), json={"inputs": prompt})
        vector = coerce_vector(payload, pool=True)
        return to_unit(vector) if vector else None

    async def embed_image(self, url: str) -> list[float] | None:
        if not self.configured:
            return None

        response = await self._request("GET", url, follow_redirects=True)
        if response.status_code >= 400:
            logger.warning("Image download failed (%d): %s", response.status_code, url)
            return None
        data = response.content

        try:
            payload = await self._post(
                self.image_endpoint,
                self._headers("application/json"),
                json={"inputs": image_bytes_to_data_url(data, self.max_image_dimension)},
            )
            vector = coerce_vector(payload)
            if vector:
                return to_unit(vector)
        except ClipEmbeddingError as e:
            logger.debug("Data URL upload rejected, retrying with raw bytes: %s", e)

        payload = await self._post(self.image_endpoint, self._headers("image/jpeg"), content=data)
        vector = coerce_vector(payload)
        return to_unit(vector) if vector else None

    @staticmethod
    def provider_info() -> dict[str, str]:
        return ClipConfig.provider_info()
