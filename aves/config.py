"""Configuration models for Aves.

Pydantic v2 models with defaults, so no config file is required.
"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field

DEFAULT_ANNOTATION_PROMPT = """
Analyze this bird image and identify visible features that would be useful for Spanish language learning.

Return a JSON array with this EXACT structure (valid JSON only, no markdown):
[{
  "spanishTerm": "el pico",
  "englishTerm": "beak",
  "boundingBox": {"x": 0.45, "y": 0.30, "width": 0.10, "height": 0.08},
  "type": "anatomical",
  "difficultyLevel": 1,
  "pronunciation": "el PEE-koh",
  "confidence": 0.95
}]

GUIDELINES:
- Focus on: pico (beak), alas (wings), cola (tail), patas (legs), plumas (feathers),
  ojos (eyes), cuello (neck), pecho (breast), cabeza (head)
- Use normalized coordinates (0-1 range); x and y are the top-left corner
- Only include features that are clearly visible in the image
- Type must be one of: anatomical, behavioral, color, pattern
- Confidence: 0.0-1.0 score for how confident you are in the annotation
- Provide 3-8 annotations per image

IMPORTANT: Return only the JSON array, nothing else.
""".strip()


class RateLimitConfig(BaseModel):
    """Token bucket shared by every outbound vision call."""

    capacity: float = Field(5.0, description="Bucket size (max burst)")
    requests_per_minute: float = Field(10.0, description="Refill rate (0 with capacity 0 = unlimited)")
    acquire_timeout_seconds: float = Field(60.0, description="Per-call wait for a token")


class RetryConfig(BaseModel):
    """Exponential backoff for transient vision failures."""

    max_retries: int = Field(3, ge=0, description="Retries after the first attempt")
    base_delay_seconds: float = Field(1.0, ge=0.0, description="Exponential backoff base")
    max_delay_seconds: float = Field(30.0, ge=0.0, description="Upper bound on a single backoff")


class BatchConfig(BaseModel):
    """Job orchestration defaults."""

    default_concurrency: int = Field(5, ge=1, description="Worker pool size when unspecified")
    max_concurrency: int = Field(20, ge=1, description="Hard cap on per-job concurrency")
    adjust_candidates: bool = Field(
        True, description="Rewrite candidate boxes with learned patterns before review"
    )
    prompt_guidance: bool = Field(
        True, description="Append learned corrections/rejections to the annotation prompt"
    )
    learn_from_annotations: bool = Field(
        True, description="Feed high-confidence candidates of succeeded items to the learner"
    )


class VisionConfig(BaseModel):
    """Configuration for the vision-AI provider."""

    provider: str = Field("gemini", description="Provider: 'gemini'")
    model: str = Field("gemini-2.0-flash", description="Model identifier")
    api_key_env_var: str = Field("GOOGLE_API_KEY", description="Env var holding the API key")
    project: str | None = Field(None, description="GCP project for Vertex AI (or GOOGLE_CLOUD_PROJECT env)")
    location: str | None = Field(None, description="GCP region for Vertex AI (default: us-central1)")
    temperature: float = Field(0.3, description="Sampling temperature")
    max_output_tokens: int = Field(4096, description="Response token budget")
    request_timeout_seconds: float = Field(120.0, gt=0.0, description="Per-request timeout for the vision call")
    prompt: str = Field(DEFAULT_ANNOTATION_PROMPT, description="Fixed annotation prompt")


class LearningConfig(BaseModel):
    """Hyperparameters for feedback-driven pattern learning."""

    min_samples: int = Field(3, ge=1, description="Samples before a pattern is usable")
    initial_confidence: float = Field(0.8, ge=0.0, le=1.0, description="Confidence of a new pattern")
    approval_boost: float = Field(0.05, ge=0.0, description="Confidence added per approval")
    rejection_penalty: float = Field(0.10, ge=0.0, description="Confidence removed per rejection")
    approval_weight: float = Field(1.0, ge=0.0, description="Weight of an approval in the mean delta")
    correction_weight: float = Field(1.5, gt=0.0, description="Weight of a correction in the mean delta")
    common_rejection_min_count: int = Field(
        2, ge=1, description="Occurrences before a rejection reason is fed back into prompts"
    )
    annotation_confidence_threshold: float = Field(
        0.75, ge=0.0, le=1.0, description="Minimum AI confidence for a candidate to be learned from"
    )
    recommended_features: int = Field(8, ge=1, description="Default number of recommended features per species")


class AvesConfig(BaseModel):
    """Top-level configuration for Aves."""

    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    vision: VisionConfig = Field(default_factory=VisionConfig)
    learning: LearningConfig = Field(default_factory=LearningConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> AvesConfig:
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.model_validate(data)

    @classmethod
    def default(cls) -> AvesConfig:
        """Return configuration with all defaults."""
        return cls()
