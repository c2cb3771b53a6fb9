import json
import logging

from google import genai
from google.genai import types

from stockmeta.config import CONFIG
from stockmeta.errors import GenerationCancelled, GenerationError, InvalidResponseError, SafetyBlockedError
from stockmeta.models import MODE_METADATA, MODE_PROMPT
from stockmeta.prompts import schema_for
from stockmeta.signals import CancellationToken

logger = logging.getLogger(__name__)

TITLE_OPTIONS = (
    ("transparent_bg", "isolated on transparent background"),
    ("white_bg", "isolated on white background"),
    ("vector", "Vector"),
    ("illustration", "illustration"),
)


def create_client(api_key):
    return genai.Client(api_key=api_key)


def parse_response(response_text, mode):
    """Parse the JSON body returned for a generation mode"""
    try:
        metadata = json.loads(response_text)
    except json.JSONDecodeError as e:
        raise InvalidResponseError(f"Invalid JSON in response: {e}") from e
    if not isinstance(metadata, dict) or "description" not in metadata:
        raise InvalidResponseError("Invalid API response structure.")
    if mode == MODE_PROMPT:
        return {"description": metadata["description"]}
    return metadata


def sentence_case(text):
    if not text:
        return ""
    return text[0].upper() + text[1:].lower()


def normalize_metadata(metadata, controls):
    """Apply title casing, title add-ons and the keyword cap"""
    advance_title = controls.get("advance_title", {})
    opts = [text for key, text in TITLE_OPTIONS if advance_title.get(key)]
    toggle_text = " " + ", ".join(opts) if opts else ""

    normalized = dict(metadata)
    normalized["title"] = sentence_case(metadata.get("title") or "") + toggle_text

    keywords = []
    for kw in list(metadata.get("keywords") or []) + opts:
        kw = str(kw).strip().lower()
        if kw and kw not in keywords:
            keywords.append(kw)
    normalized["keywords"] = keywords[:controls["keywords_count"]]
    return normalized


async def generate_once(client, model_name, prompt, payload, mode):
    """Single request against the model, no retries"""
    response = await client.aio.models.generate_content(
        model=model_name,
        contents=[
            types.Part.from_text(text=prompt),
            types.Part.from_bytes(data=payload.data, mime_type=payload.mime_type),
        ],
        config=types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=schema_for(mode),
        ),
    )

    result_text = response.text
    if not result_text:
        candidates = response.candidates or []
        finish_reason = candidates[0].finish_reason if candidates else None
        if finish_reason == types.FinishReason.SAFETY:
            logger.debug("Safety block response: %r", response)
            raise SafetyBlockedError("Blocked by safety settings.")
        logger.debug("Response without text: %r", response)
        raise InvalidResponseError("Invalid API response structure.")
    return parse_response(result_text, mode)


async def call_api_with_backoff(client, model_name, prompt, payload, controls, mode,
                                on_retry=None, token=None, initial_delay=None, max_delay=None):
    """Call the model until it succeeds, doubling the delay between attempts.

    Never gives up on its own. The only ways out are a parsed result or
    `token` being cancelled, which raises GenerationCancelled.
    """
    if payload is None:
        raise GenerationError("API data is missing.")
    token = token or CancellationToken()
    delay = CONFIG["initial_backoff"] if initial_delay is None else initial_delay
    max_delay = CONFIG["max_backoff"] if max_delay is None else max_delay

    while True:
        if token.is_cancelled:
            raise GenerationCancelled("Generation stopped")
        try:
            metadata = await generate_once(client, model_name, prompt, payload, mode)
            if mode == MODE_METADATA:
                metadata = normalize_metadata(metadata, controls)
            return metadata
        except SafetyBlockedError as e:
            logger.warning("Safety block, retrying in %.0fs: %s", delay, e)
        except Exception as e:
            logger.warning("API call failed. Retrying in %.0fs... %s", delay, e)

        if on_retry:
            on_retry(delay)
        if await token.wait(delay):
            raise GenerationCancelled("Generation stopped")
        delay = min(delay * CONFIG["backoff_multiplier"], max_delay)
