"""Vision-AI providers and response parsing."""
