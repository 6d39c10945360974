"""Gemini API client initialization.

Uses the google-genai SDK (not google.generativeai).
"""

from google import genai

from docfiling.config import get_settings


def get_gemini_client() -> genai.Client:
    """Initialize and return a Gemini API client.

    Returns:
        genai.Client: Client ready for API calls

    Raises:
        ValueError: If GEMINI_API_KEY is not configured. Callers that can
            run without the oracle check ``settings.oracle_configured`` first.
    """
    settings = get_settings()

    if not settings.gemini_api_key:
        raise ValueError(
            "GEMINI_API_KEY not set in environment. "
            "Set it in your .env file or environment, or run in mock mode."
        )

    return genai.Client(api_key=settings.gemini_api_key)
