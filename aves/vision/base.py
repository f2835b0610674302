"""Protocol for vision-AI annotation providers."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class VisionProvider(Protocol):
    """Protocol for services that propose bird-feature annotations.

    Implementations: GeminiVisionProvider.
    """

    @property
    def name(self) -> str: ...

    def annotate(self, image_ref: str, prompt: str) -> list[dict[str, Any]]:
        """Request annotations for one image.

        Args:
            image_ref: Image reference (local path) understood by the provider.
            prompt: Annotation prompt describing the expected JSON contract.

        Returns:
            Raw candidate dicts as returned by the service (not yet validated).

        Raises:
            TransientServiceError: timeouts, overload, 5xx.
            PermanentServiceError: 4xx, malformed request, unparseable response.
        """
        ...
