"""
This module provides an interface to the Google Gemini large language model.

It is responsible for:
- Configuring the Gemini API with the key stored in Streamlit secrets, on first use.
- Providing `summarize_feedback`, which turns a batch of patient reviews into a short
  digest for the general manager's feedback page.

The digest is optional: without a `GEMINI_API_KEY` secret, or when the API call fails,
callers receive None and the page simply omits the summary.
"""
# mindcare/gemini.py

from __future__ import annotations

import logging
from typing import Iterable, Optional

import google.generativeai as genai

from mindcare import config

logger = logging.getLogger(__name__)

_model = None


def _get_model():
    """Configures the API and builds the model on first use. Returns None without an API key."""
    global _model
    if _model is None:
        api_key = config.get_secret("GEMINI_API_KEY")
        if not api_key:
            return None
        genai.configure(api_key=api_key)
        _model = genai.GenerativeModel(config.GEMINI_MODEL)
    return _model


def build_prompt(reviews: Iterable) -> str:
    lines = []
    for review in reviews:
        stars = f"{review.rating}/5" if review.rating else "unrated"
        lines.append(f"- {review.doctor or 'Unknown doctor'} ({stars}): {review.text}")
    joined = "\n".join(lines)
    return f"""
    You are an assistant to a hospital's general manager. Below are recent patient reviews of doctors.

    Reviews:
    {joined}

    Summarize the main themes in one paragraph of around 120 words. Mention which doctors are praised
    and which concerns come up more than once. Do not invent details. Only print the paragraph and nothing else.


    Summary:
    """


def summarize_feedback(reviews) -> Optional[str]:
    """Generates a short digest of patient reviews.

    Args:
        reviews: `Feedback` records to summarize.

    Returns:
        The summary text, or None if there is nothing to summarize, no API key
        is configured, or the API call fails.
    """
    reviews = [review for review in reviews if review.text]
    if not reviews:
        return None
    model = _get_model()
    if model is None:
        logger.info("GEMINI_API_KEY is not set; skipping feedback digest.")
        return None
    try:
        response = model.generate_content(build_prompt(reviews))
        return response.text
    except Exception as e:
        logger.error("Error generating feedback digest from Gemini API: %s", e)
        return None
