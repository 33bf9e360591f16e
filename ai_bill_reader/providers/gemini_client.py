"""
Hosted cloud provider backed by Google Gemini.

Gemini supports structured output natively, so the bill schema is passed as
``response_schema`` and the reply text is the JSON document itself.
"""

import base64
import json
from typing import Any, Dict

from google import genai
from google.genai import types

from ai_bill_reader.config.loader import DEFAULT_GEMINI_MODEL
from ai_bill_reader.core.errors import AnalysisFailedError, ConfigurationError
from ai_bill_reader.logging_config import get_logger
from ai_bill_reader.storage.models import AiSettings

from .base import split_data_uri
from .schema import BILL_SCHEMA, EXTRACTION_PROMPT

log = get_logger(__name__)

ANALYSIS_FAILED_MESSAGE = (
    "Failed to analyze the bill with Gemini. The model could not process the image. "
    "Please check your API key and try a clearer image."
)


class GeminiAdapter:
    """Cloud extraction through the Google GenAI SDK.

    Provider errors are replaced by a generic message for the user; the
    original exception is logged and chained.
    """

    def __init__(self, model: str = DEFAULT_GEMINI_MODEL):
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        self.model = model

    def analyze(self, image_data_uri: str, settings: AiSettings) -> Dict[str, Any]:
        """Send the prompt and image to Gemini and parse the JSON reply.

        Raises:
            ConfigurationError: If no API key is configured
            AnalysisFailedError: On any transport, model or parsing failure
        """
        api_key = (settings.gemini_api_key or "").strip()
        if not api_key:
            raise ConfigurationError("Gemini API Key is not configured. Please add it in the settings.")

        mime_type, payload = split_data_uri(image_data_uri)
        log.info(f"Starting bill analysis with Gemini model: {self.model}")

        try:
            client = genai.Client(api_key=api_key)
            response = client.models.generate_content(
                model=self.model,
                contents=[
                    EXTRACTION_PROMPT,
                    types.Part.from_bytes(data=base64.b64decode(payload), mime_type=mime_type),
                ],
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=BILL_SCHEMA,
                ),
            )
            parsed = json.loads((response.text or "").strip())
        except Exception as e:
            log.exception(f"Gemini API error: {e}")
            raise AnalysisFailedError(ANALYSIS_FAILED_MESSAGE) from e

        log.info("Successfully parsed Gemini response")
        return parsed
