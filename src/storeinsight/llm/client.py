# storeinsight/llm/client.py

import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

import requests

from storeinsight.config import (
    GROQ_API_KEY,
    GROQ_MODEL,
    LLM_PROVIDER,
    LLM_TIMEOUT,
    OLLAMA_BASE_URL,
    OLLAMA_MODEL,
    OPENAI_API_KEY,
    OPENAI_BASE_URL,
    OPENAI_MODEL,
)

logger = logging.getLogger(__name__)

GROQ_URL = "https://api.groq.com/openai/v1/chat/completions"


class SuggestionError(RuntimeError):
    pass


def _response_object(resp, provider: str) -> Dict[str, Any]:
    """Decoded JSON body of a successful response; must be an object."""
    try:
        data = resp.json()
    except ValueError:
        raise SuggestionError(f"{provider} returned a non-JSON body: {resp.text[:200]}")
    if not isinstance(data, dict):
        raise SuggestionError(f"{provider} returned unexpected JSON: {str(data)[:200]}")
    return data


def _chat_completion(
    url: str,
    provider: str,
    api_key: Optional[str],
    model: str,
    messages: List[Dict[str, str]],
    temperature: float,
    json_mode: bool = False,
) -> str:
    """POST to an OpenAI-compatible /chat/completions endpoint and return the content."""
    if not api_key:
        raise SuggestionError(f"{provider} API key is not set")
    payload: Dict[str, Any] = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "stream": False,
    }
    if json_mode:
        payload["response_format"] = {"type": "json_object"}
    headers = {"Authorization": f"Bearer {api_key}"}
    try:
        resp = requests.post(url, json=payload, headers=headers, timeout=LLM_TIMEOUT)
    except requests.RequestException as e:
        raise SuggestionError(f"Failed to reach {provider} at {url}: {e}")
    if not resp.ok:
        raise SuggestionError(f"{provider} HTTP {resp.status_code}: {resp.text[:500]}")
    data = _response_object(resp, provider)
    choices = data.get("choices") or []
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise SuggestionError(f"{provider} returned no choices: {data}")
    message = choices[0].get("message") or {}
    content = message.get("content", "") if isinstance(message, dict) else None
    if not isinstance(content, str):
        raise SuggestionError(f"{provider} returned unexpected content: {content!r}")
    return content.strip()


def _openai_chat(messages: List[Dict[str, str]], temperature: float = 0.0) -> str:
    """Call OpenAI chat endpoint (or compatible base URL)."""
    url = f"{OPENAI_BASE_URL.rstrip('/')}/chat/completions"
    return _chat_completion(url, "OpenAI", OPENAI_API_KEY, OPENAI_MODEL, messages, temperature, json_mode=True)


def _groq_chat(messages: List[Dict[str, str]], temperature: float = 0.0) -> str:
    return _chat_completion(GROQ_URL, "Groq", GROQ_API_KEY, GROQ_MODEL, messages, temperature)


def _ollama_chat(messages: List[Dict[str, str]], temperature: float = 0.0) -> str:
    """
    Call Ollama /api/chat with simple non-streaming mode and return assistant content.
    """
    url = f"{OLLAMA_BASE_URL.rstrip('/')}/api/chat"
    payload: Dict[str, Any] = {
        "model": OLLAMA_MODEL,
        "messages": messages,
        "stream": False,
        "format": "json",
        "options": {"temperature": temperature},
    }
    try:
        resp = requests.post(url, json=payload, timeout=LLM_TIMEOUT)
    except requests.RequestException as e:
        raise SuggestionError(f"Failed to reach Ollama at {url}: {e}")
    if not resp.ok:
        raise SuggestionError(f"Ollama HTTP {resp.status_code}: {resp.text[:500]}")
    message = _response_object(resp, "Ollama").get("message") or {}
    content = message.get("content", "") if isinstance(message, dict) else None
    if not isinstance(content, str):
        raise SuggestionError(f"Ollama returned unexpected content: {content!r}")
    return content.strip()


def _llm_chat(messages: List[Dict[str, str]], temperature: float = 0.0) -> str:
    """Dispatch to the configured LLM provider."""
    if LLM_PROVIDER == "groq":
        return _groq_chat(messages, temperature=temperature)
    if LLM_PROVIDER == "ollama":
        return _ollama_chat(messages, temperature=temperature)
    return _openai_chat(messages, temperature=temperature)


def _extract_json_from_text(text: str) -> Any:
    """
    Load JSON from model output, tolerating ``` fences and leading prose.
    """
    txt = text.strip()
    if txt.startswith("```"):
        txt = re.sub(r"^```[a-zA-Z]*\s*", "", txt)
        if txt.endswith("```"):
            txt = txt[:-3].strip()

    try:
        return json.loads(txt)
    except json.JSONDecodeError:
        pass

    start, end = txt.find("{"), txt.rfind("}")
    if start != -1 and end > start:
        try:
            return json.loads(txt[start : end + 1])
        except json.JSONDecodeError:
            pass
    raise SuggestionError(f"Could not parse JSON from model output: {text[:200]}")


SYSTEM_PROMPT = (
    "You map spreadsheet column headers to target financial fields. "
    "Return strict JSON with keys exactly matching required fields. "
    "Only choose from provided headers; if none match, use null."
)


def suggest_header_mapping(
    headers: Sequence[str],
    required: Sequence[str],
    vendor_hint: Optional[str] = None,
) -> Dict[str, Optional[str]]:
    """
    Ask the configured model which header best fits each required field.

    Returns {field: header or None}. A suggested header that is not one of
    `headers` is treated as no suggestion.
    """
    user = (
        'Choose the best header for each required field. Respond ONLY with JSON like '
        '{"mapping": {"Total Operating Income": "TOI", ...}}. Input: '
        + json.dumps({"headers": list(headers), "required": list(required), "vendorHint": vendor_hint})
    )
    logger.info("AI suggest-mapping via %s (%d headers, vendor=%s)", LLM_PROVIDER, len(headers), vendor_hint)
    content = _llm_chat(
        [{"role": "system", "content": SYSTEM_PROMPT}, {"role": "user", "content": user}],
        temperature=0.0,
    )
    data = _extract_json_from_text(content)
    mapping = data.get("mapping") if isinstance(data, dict) else None
    if not isinstance(mapping, dict):
        raise SuggestionError("Model response has no 'mapping' object")

    allowed = set(headers)
    result: Dict[str, Optional[str]] = {}
    for field_name in required:
        header = mapping.get(field_name)
        if isinstance(header, str) and header in allowed:
            result[field_name] = header
        else:
            if header is not None:
                logger.info("Dropping AI suggestion %r for %s: not an uploaded header", header, field_name)
            result[field_name] = None
    return result
