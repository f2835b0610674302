"""Google Gemini vision provider (``google-genai`` SDK)."""

from __future__ import annotations

import io
import os
import re
from pathlib import Path
from typing import Any

from PIL import Image, UnidentifiedImageError

from aves.errors import PermanentServiceError, TransientServiceError, VisionServiceError
from aves.vision.parsing import parse_annotation_payload

_PROVIDER = "gemini"


class GeminiVisionProvider:
    """Bird-feature annotation via Gemini multimodal models.

    Authentication (in order of precedence):
        1. Explicit ``api_key`` parameter
        2. Environment variable named by ``api_key_env_var`` (default GOOGLE_API_KEY)
        3. Vertex AI with Application Default Credentials
           (set GOOGLE_CLOUD_PROJECT and GOOGLE_CLOUD_LOCATION env vars)

    Satisfies the ``VisionProvider`` protocol.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gemini-2.0-flash",
        temperature: float = 0.3,
        max_output_tokens: int = 4096,
        request_timeout_seconds: float = 120.0,
        api_key_env_var: str = "GOOGLE_API_KEY",
        project: str | None = None,
        location: str | None = None,
    ) -> None:
        self._model = model
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens
        self._timeout_ms = int(request_timeout_seconds * 1000)
        self._client: Any = None

        self._api_key = api_key or os.environ.get(api_key_env_var)
        self._project = project or os.environ.get("GOOGLE_CLOUD_PROJECT")
        self._location = location or os.environ.get("GOOGLE_CLOUD_LOCATION", "us-central1")

        if not self._api_key and not self._project:
            raise ValueError(
                f"No credentials provided. Either:\n"
                f"  1. Set {api_key_env_var} env var (API key auth), or\n"
                f"  2. Set GOOGLE_CLOUD_PROJECT env var and run "
                f"'gcloud auth application-default login' (Vertex AI auth)"
            )

    @property
    def name(self) -> str:
        return _PROVIDER

    # ------------------------------------------------------------------

    def annotate(self, image_ref: str, prompt: str) -> list[dict[str, Any]]:
        """Send the image and prompt to Gemini and decode the JSON array reply."""
        image_bytes = _load_image_png_bytes(image_ref)

        genai = self._get_genai()
        client = self._get_client(genai)

        try:
            response = client.models.generate_content(
                model=self._model,
                contents=[
                    genai.types.Part.from_bytes(data=image_bytes, mime_type="image/png"),
                    prompt,
                ],
                config=genai.types.GenerateContentConfig(
                    temperature=self._temperature,
                    max_output_tokens=self._max_output_tokens,
                    response_mime_type="application/json",
                ),
            )
        except Exception as exc:
            raise _classify_error(exc) from exc

        text = getattr(response, "text", None)
        if not text:
            raise PermanentServiceError(_PROVIDER, "No text content returned")
        return parse_annotation_payload(text, provider=_PROVIDER)

    # ------------------------------------------------------------------

    def _get_genai(self) -> Any:
        try:
            import google.genai as genai  # type: ignore[import-untyped]
            return genai
        except ImportError as exc:
            raise ImportError(
                "google-genai is required for the Gemini provider. "
                "Install it with: pip install 'google-genai>=1.0'"
            ) from exc

    def _get_client(self, genai: Any) -> Any:
        if self._client is None:
            if self._api_key:
                self._client = genai.Client(
                    api_key=self._api_key,
                    http_options=genai.types.HttpOptions(timeout=self._timeout_ms),
                )
            else:
                self._client = genai.Client(
                    vertexai=True,
                    project=self._project,
                    location=self._location,
                    http_options=genai.types.HttpOptions(timeout=self._timeout_ms),
                )
        return self._client


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_image_png_bytes(image_ref: str) -> bytes:
    """Read a local image and re-encode it as PNG."""
    path = Path(image_ref)
    try:
        with Image.open(path) as img:
            return _pil_to_png_bytes(img.convert("RGB"))
    except FileNotFoundError as exc:
        raise PermanentServiceError(_PROVIDER, f"Image not found: {image_ref}") from exc
    except (UnidentifiedImageError, OSError) as exc:
        raise PermanentServiceError(_PROVIDER, f"Cannot decode image {image_ref}: {exc}") from exc


def _pil_to_png_bytes(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


# Status codes quoted in SDK messages, e.g. "503 UNAVAILABLE"
_TRANSIENT_CODE_RE = re.compile(r"\b(?:408|429|5\d\d)\b")


def _status_code(exc: Exception) -> int | None:
    for attr in ("code", "status_code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True
    code = _status_code(exc)
    if code is not None:
        return code == 429 or code == 408 or code >= 500
    msg = str(exc).lower()
    if _TRANSIENT_CODE_RE.search(msg):
        return True
    return any(
        kw in msg for kw in ("rate limit", "timeout", "timed out", "unavailable", "overloaded")
    )


def _classify_error(exc: Exception) -> VisionServiceError:
    """Map an SDK/transport exception onto the transient/permanent taxonomy."""
    code = _status_code(exc)
    if _is_retryable(exc):
        return TransientServiceError(_PROVIDER, str(exc), status_code=code)
    return PermanentServiceError(_PROVIDER, str(exc), status_code=code)
