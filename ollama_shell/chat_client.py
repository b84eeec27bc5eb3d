import json
from typing import Any, Dict, List, Optional, Sequence

import httpx
import openai
from openai import OpenAI

from .errors import ChatProtocolError, ChatRequestFailure
from .transcript import Message, Role

# Ollama ignores the key, the SDK just refuses to start without one.
PLACEHOLDER_API_KEY = "ollama"


def _status_error_text(e: openai.APIStatusError) -> str:
    body = e.body
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    if isinstance(body, str) and body:
        return body
    return e.message


def _decode(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ChatProtocolError(f"JSON parse failed: {e}") from e
    if not isinstance(data, dict):
        raise ChatProtocolError(f"expected a JSON object, got {type(data).__name__}")
    return data


class OllamaClient:
    """
    Talks to the native Ollama endpoints (/api/tags, /api/chat).

    Requests go through the OpenAI SDK's raw request methods; the SDK owns
    retries, timeouts and HTTP status errors.
    """

    def __init__(self, host: str, timeout: float = 600, max_retries: int = 0, client: Optional[OpenAI] = None):
        self.host = host
        self.client = client or OpenAI(
            api_key=PLACEHOLDER_API_KEY,
            base_url=host,
            timeout=timeout,
            max_retries=max_retries,
        )

    def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            if method == "GET":
                response = self.client.get(path, cast_to=httpx.Response)
            else:
                response = self.client.post(path, cast_to=httpx.Response, body=body)
        except openai.APIConnectionError as e:
            raise ChatRequestFailure(f"HTTP request failed: {e}") from e
        except openai.APIStatusError as e:
            raise ChatProtocolError(_status_error_text(e)) from e
        return _decode(response)

    def list_models(self) -> List[str]:
        data = self._request("GET", "/api/tags")
        models = data.get("models")
        if not isinstance(models, list):
            raise ChatProtocolError("/api/tags reply has no 'models' list")
        return [m["name"] for m in models if isinstance(m, dict) and m.get("name")]

    def chat(self, model: str, messages: Sequence[Message]) -> Message:
        data = self._request("POST", "/api/chat", {
            "model": model,
            "messages": [m.to_dict() for m in messages],
            "stream": False,
        })

        if data.get("error"):
            raise ChatProtocolError(str(data["error"]))
        msg = data.get("message")
        if msg is None:
            raise ChatProtocolError("reply has neither message nor error")
        if not isinstance(msg, dict) or not isinstance(msg.get("content"), str):
            raise ChatProtocolError(f"malformed message in reply: {msg!r}")
        return Message(Role.ASSISTANT, msg["content"])
