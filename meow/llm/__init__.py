"""Provider wire dialects: request building, stream record parsing, model listing."""

import json
from dataclasses import dataclass
from typing import Any

import httpx

from meow.config import ProviderConfig
from meow.exceptions import ConfigurationError
from meow.logging import get_logger

log = get_logger(__name__)

OLLAMA = "ollama"
OPENAI = "openai"

OPENAI_DATA_PREFIX = "data:"
OPENAI_DONE_SENTINEL = "[DONE]"


@dataclass
class StreamRecord:
    """One parsed line of a streamed completion."""

    content: str = ""
    done: bool = False
    error: str = ""


def chat_path(provider: ProviderConfig) -> str:
    """Request path of the chat endpoint for a provider."""
    if provider.api_type == OLLAMA:
        return "/api/chat"
    if provider.api_type == OPENAI:
        base = provider.base_path()
        if not base:
            return "/v1/chat/completions"
        return f"{base}/chat/completions"
    raise ConfigurationError(f"Unsupported api_type: {provider.api_type}")


def build_chat_body(
    model: str,
    messages: list[dict[str, Any]],
    api_type: str,
    max_tokens: int,
) -> dict[str, Any]:
    """Build the JSON body of a streaming chat request."""
    body: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "stream": True,
    }
    if api_type == OLLAMA:
        body["options"] = {"num_predict": max_tokens}
    else:
        body["max_tokens"] = max_tokens
    return body


def build_http_request(provider: ProviderConfig, path: str, body: dict[str, Any]) -> bytes:
    """Serialize an HTTP/1.0 POST with `Connection: close`."""
    host, port = provider.host_port()
    payload = json.dumps(body, ensure_ascii=False).encode("utf-8")
    lines = [
        f"POST {path} HTTP/1.0",
        f"Host: {host}:{port}",
        "Content-Type: application/json",
        "Accept: application/x-ndjson, text/event-stream",
    ]
    if provider.api_key:
        lines.append(f"Authorization: Bearer {provider.api_key}")
    lines.append(f"Content-Length: {len(payload)}")
    lines.append("Connection: close")
    head = "\r\n".join(lines) + "\r\n\r\n"
    return head.encode("latin-1") + payload


def parse_stream_record(line: str, api_type: str) -> StreamRecord | None:
    """Parse one framed line of a streamed response.

    Returns None for lines that carry nothing (blank lines, SSE comments and
    event fields) and for malformed records, which are logged and skipped.
    """
    line = line.strip()
    if not line:
        return None
    if api_type == OPENAI:
        return _parse_openai_line(line)
    return _parse_ollama_line(line)


def _parse_ollama_line(line: str) -> StreamRecord | None:
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        log.debug("Skipping malformed stream record", line=line[:200])
        return None
    if not isinstance(data, dict):
        return None
    if data.get("error"):
        return StreamRecord(error=str(data["error"]))
    message = data.get("message") or {}
    content = message.get("content") if isinstance(message, dict) else None
    return StreamRecord(content=content if isinstance(content, str) else "", done=data.get("done") is True)


def _parse_openai_line(line: str) -> StreamRecord | None:
    if not line.startswith(OPENAI_DATA_PREFIX):
        return None
    payload = line[len(OPENAI_DATA_PREFIX):].strip()
    if not payload:
        return None
    if payload == OPENAI_DONE_SENTINEL:
        return StreamRecord(done=True)
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        log.debug("Skipping malformed stream record", line=line[:200])
        return None
    if not isinstance(data, dict):
        return None
    if data.get("error"):
        error = data["error"]
        message = error.get("message") if isinstance(error, dict) else error
        return StreamRecord(error=str(message))
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return StreamRecord()
    delta = choices[0].get("delta") or {}
    content = delta.get("content") if isinstance(delta, dict) else None
    return StreamRecord(content=content if isinstance(content, str) else "")


def _auth_headers(provider: ProviderConfig) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if provider.api_key:
        headers["Authorization"] = f"Bearer {provider.api_key}"
    return headers


def _models_url(provider: ProviderConfig) -> str:
    base = provider.base_url.strip().rstrip("/")
    if provider.api_type == OLLAMA:
        return f"{base}/api/tags"
    if base.endswith("/v1"):
        return f"{base}/models"
    return f"{base}/v1/models"


async def list_models(provider: ProviderConfig, timeout: float = 15.0) -> list[str]:
    """List model names offered by a provider.

    Raises:
        httpx.HTTPError: on connection failures or non-2xx responses
    """
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        response = await client.get(_models_url(provider), headers=_auth_headers(provider))
        response.raise_for_status()
        data = response.json()

    if provider.api_type == OLLAMA:
        entries = data.get("models", [])
        names = [str(entry.get("name", "")) for entry in entries if isinstance(entry, dict)]
    else:
        entries = data.get("data", [])
        names = [str(entry.get("id", "")) for entry in entries if isinstance(entry, dict)]
    return [name for name in names if name]


async def query_context_window(provider: ProviderConfig, model: str, timeout: float = 15.0) -> int | None:
    """Ask an Ollama provider for a model's context length.

    Returns None when the provider does not report one.
    """
    if provider.api_type != OLLAMA:
        return None
    url = f"{provider.base_url.strip().rstrip('/')}/api/show"
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        response = await client.post(url, json={"model": model}, headers=_auth_headers(provider))
        response.raise_for_status()
        data = response.json()

    parameters = data.get("parameters") or ""
    for line in str(parameters).splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[0] == "num_ctx" and parts[1].isdigit():
            return int(parts[1])
    model_info = data.get("model_info") or {}
    for key, value in model_info.items():
        if key.endswith(".context_length") and isinstance(value, int):
            return value
    return None
