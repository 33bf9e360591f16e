"""
Local provider for Ollama or any OpenAI-chat-compatible server.

Local runtimes have no structured-output mode, so the schema travels inside
the system prompt and only JSON-object mode is requested.
"""

import json
from typing import Any, Dict, List

import requests
from openai import APIConnectionError, APIStatusError, OpenAI

from ai_bill_reader.core.errors import (
    ConfigurationError,
    ProviderResponseError,
    ProviderTransportError,
)
from ai_bill_reader.logging_config import get_logger
from ai_bill_reader.storage.models import AiSettings

from .schema import build_local_system_prompt

log = get_logger(__name__)

PROBE_TIMEOUT_SECONDS = 5.0
USER_INSTRUCTION = "Analyze this utility bill image."

CONNECT_FAILED_MESSAGE = (
    "Could not connect to the Ollama server. "
    "Please ensure the server is running and the URL is correct."
)


def _base_url(endpoint: str) -> str:
    return endpoint.strip().rstrip("/")


def build_chat_messages(image_data_uri: str) -> List[Dict[str, Any]]:
    """System prompt with embedded schema, then the image with a short instruction."""
    return [
        {"role": "system", "content": build_local_system_prompt()},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": USER_INSTRUCTION},
                {"type": "image_url", "image_url": {"url": image_data_uri}},
            ],
        },
    ]


class OllamaAdapter:
    """Extraction through ``POST {endpoint}/v1/chat/completions``.

    Connection failures, error statuses and unreadable bodies are raised as
    distinct error kinds. The client never retries on its own.
    """

    def analyze(self, image_data_uri: str, settings: AiSettings) -> Dict[str, Any]:
        """Send the image to the local server and parse the JSON reply.

        Raises:
            ConfigurationError: If the endpoint or model is missing
            ProviderTransportError: If the server cannot be reached
            ProviderResponseError: On a non-2xx status or a malformed body
        """
        url = (settings.ollama_url or "").strip()
        model = (settings.ollama_model or "").strip()
        if not url or not model:
            raise ConfigurationError("Ollama URL or model is not configured. Please add it in the settings.")

        log.info(f"Starting bill analysis with Ollama model: {model}")
        client = OpenAI(base_url=f"{_base_url(url)}/v1", api_key="ollama", max_retries=0)

        try:
            response = client.chat.completions.create(
                model=model,
                response_format={"type": "json_object"},
                messages=build_chat_messages(image_data_uri),
            )
        except APIStatusError as e:
            log.error(f"Ollama API error response ({e.status_code}): {e.message}")
            raise ProviderResponseError(
                f"Ollama API returned an error: {e.status_code}. "
                "Please check your Ollama server URL and ensure the model is running.",
                status_code=e.status_code,
            ) from e
        except APIConnectionError as e:
            log.exception(f"Ollama request error: {e}")
            raise ProviderTransportError(CONNECT_FAILED_MESSAGE) from e

        try:
            content = response.choices[0].message.content
            parsed = json.loads(content)
        except (AttributeError, IndexError, TypeError, ValueError) as e:
            log.exception("Ollama returned a malformed response body")
            raise ProviderResponseError("Ollama returned a response that is not valid JSON.") from e

        log.info("Successfully parsed Ollama response")
        return parsed


def check_connection(endpoint: str, timeout: float = PROBE_TIMEOUT_SECONDS) -> List[str]:
    """Probe a local server and list the models it has pulled.

    Only used to validate settings; extraction calls do not go through here.

    Args:
        endpoint: Server base URL, e.g. http://localhost:11434
        timeout: Seconds before giving up on the probe

    Returns:
        Names of the available models

    Raises:
        ConfigurationError: If no endpoint is given
        ProviderTransportError: If the server cannot be reached in time
        ProviderResponseError: On a non-2xx status or an unexpected body
    """
    if not endpoint or not endpoint.strip():
        raise ConfigurationError("Ollama URL is not configured. Please add it in the settings.")

    try:
        resp = requests.get(f"{_base_url(endpoint)}/api/tags", timeout=timeout)
    except requests.RequestException as e:
        log.warning(f"Ollama probe failed: {e}")
        raise ProviderTransportError(CONNECT_FAILED_MESSAGE) from e

    if not resp.ok:
        raise ProviderResponseError(
            f"Ollama server returned {resp.status_code} for /api/tags",
            status_code=resp.status_code,
        )

    try:
        models = resp.json()["models"]
        return [m["name"] for m in models]
    except (ValueError, KeyError, TypeError) as e:
        raise ProviderResponseError("Unexpected response from Ollama /api/tags") from e
