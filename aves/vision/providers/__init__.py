"""Vision provider implementations.

Available providers:
- ``gemini``: Google Gemini multimodal models via the google-genai SDK
"""
