import asyncio
import base64
import json
import os
from typing import Any, Dict, List, Optional, Sequence

import backoff
import requests
from azure.identity import DefaultAzureCredential

from src.llm.backend import Part
from src.llm.router import StageSpec
from src.media.image_utils import to_data_url, to_png
from src.specs.common.errors import BackendError, ConfigurationError, EmptyResponseError

_COGNITIVE_SCOPE = "https://cognitiveservices.azure.com/.default"


class RetryableBackendError(BackendError):
    """Throttling or a transient server error worth a short backoff"""
    pass


def _deployment_for(model: str) -> str:
    """Map a model id to its Azure deployment name.

    ``AZURE_OPENAI_DEPLOYMENT_GPT_4_1_MINI`` overrides ``gpt-4.1-mini``.
    """
    slug = "".join(ch.upper() if ch.isalnum() else "_" for ch in model)
    return os.getenv(f"AZURE_OPENAI_DEPLOYMENT_{slug}", model)


def _raise_for_status(resp: requests.Response) -> None:
    if resp.status_code == 429 or resp.status_code >= 500:
        raise RetryableBackendError(
            f"Azure OpenAI returned {resp.status_code}",
            details={"status": resp.status_code, "body": resp.text[:500]},
        )
    if resp.status_code >= 400:
        raise BackendError(
            f"Azure OpenAI returned {resp.status_code}",
            details={"status": resp.status_code, "body": resp.text[:500]},
        )


class AzureOpenAIBackend:
    """GenerativeBackend over the Azure OpenAI REST API.

    JSON and text calls go to chat completions; image calls go to the
    image edits endpoint with the source image first and reference images
    after it. Requests run in a worker thread so the pipeline's event loop
    is never blocked.
    """

    def __init__(
        self,
        *,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: float = 120.0,
    ) -> None:
        self.endpoint = (endpoint or os.getenv("AZURE_OPENAI_ENDPOINT") or "").rstrip("/")
        if not self.endpoint:
            raise ConfigurationError("AZURE_OPENAI_ENDPOINT is required for the Azure OpenAI backend")
        self.api_key = api_key or os.getenv("AZURE_OPENAI_KEY")
        self.api_version = api_version or os.getenv("AZURE_OPENAI_API_VERSION", "2025-04-01-preview")
        self.timeout = timeout
        self._credential = None
        if not self.api_key:
            disable_mi = (os.getenv("AZURE_IDENTITY_DISABLE_MANAGED_IDENTITY", "").lower() in ("1", "true", "yes"))
            self._credential = DefaultAzureCredential(exclude_managed_identity_credential=disable_mi)

    def _headers(self) -> Dict[str, str]:
        if self.api_key:
            return {"api-key": self.api_key}
        token = self._credential.get_token(_COGNITIVE_SCOPE)  # type: ignore[union-attr]
        return {"Authorization": f"Bearer {token.token}"}

    def _url(self, model: str, operation: str) -> str:
        return (
            f"{self.endpoint}/openai/deployments/{_deployment_for(model)}/{operation}"
            f"?api-version={self.api_version}"
        )

    @backoff.on_exception(backoff.expo, RetryableBackendError, max_tries=3, max_time=30)
    def _post_json(self, url: str, body: Dict[str, Any]) -> Dict[str, Any]:
        resp = requests.post(url, headers={**self._headers(), "Content-Type": "application/json"}, json=body, timeout=self.timeout)
        _raise_for_status(resp)
        return resp.json()

    @backoff.on_exception(backoff.expo, RetryableBackendError, max_tries=3, max_time=60)
    def _post_multipart(self, url: str, data: Dict[str, Any], files: List[Any]) -> Dict[str, Any]:
        resp = requests.post(url, headers=self._headers(), data=data, files=files, timeout=self.timeout)
        _raise_for_status(resp)
        return resp.json()

    @staticmethod
    def _user_content(parts: Sequence[Part]) -> List[Dict[str, Any]]:
        content: List[Dict[str, Any]] = []
        for part in parts:
            if part.is_image:
                content.append({"type": "image_url", "image_url": {"url": to_data_url(part.data, part.mime_type)}})  # type: ignore[arg-type]
            elif part.text:
                content.append({"type": "text", "text": part.text})
        return content

    @staticmethod
    def _sampling(spec: StageSpec) -> Dict[str, Any]:
        # top_k has no chat-completions equivalent
        body: Dict[str, Any] = {"temperature": spec.temperature}
        if spec.top_p is not None:
            body["top_p"] = spec.top_p
        if spec.max_output_tokens is not None:
            body["max_tokens"] = spec.max_output_tokens
        return body

    @staticmethod
    def _message_text(payload: Dict[str, Any]) -> str:
        choices = payload.get("choices") or []
        if not choices:
            raise EmptyResponseError("response has no choices")
        return ((choices[0].get("message") or {}).get("content") or "").strip()

    def _chat(self, model: str, messages: List[Dict[str, Any]], spec: StageSpec, extra: Dict[str, Any]) -> str:
        body = {"messages": messages, **self._sampling(spec), **extra}
        return self._message_text(self._post_json(self._url(model, "chat/completions"), body))

    async def generate_json(self, *, model, parts, system_instruction, schema, spec) -> str:
        messages = [
            {
                "role": "system",
                "content": f"{system_instruction.strip()}\n\nRespond only with JSON matching this schema:\n{json.dumps(schema)}",
            },
            {"role": "user", "content": self._user_content(parts)},
        ]
        return await asyncio.to_thread(self._chat, model, messages, spec, {"response_format": {"type": "json_object"}})

    async def generate_text(self, *, model, parts, system_instruction, spec) -> str:
        messages = [
            {"role": "system", "content": system_instruction.strip()},
            {"role": "user", "content": self._user_content(parts)},
        ]
        return await asyncio.to_thread(self._chat, model, messages, spec, {})

    def _edit_image(self, model: str, prompt: str, image: bytes, reference_images: Sequence[bytes]) -> Optional[bytes]:
        files = [("image[]", ("source.png", to_png(image), "image/png"))]
        for idx, ref in enumerate(reference_images):
            files.append(("image[]", (f"reference_{idx}.png", to_png(ref), "image/png")))
        payload = self._post_multipart(self._url(model, "images/edits"), {"prompt": prompt, "n": 1}, files)
        data = payload.get("data") or []
        b64 = data[0].get("b64_json") if data else None
        return base64.b64decode(b64) if b64 else None

    async def generate_image(self, *, model, prompt, image, reference_images, spec) -> Optional[bytes]:
        return await asyncio.to_thread(self._edit_image, model, prompt, image, list(reference_images))


__all__ = ["AzureOpenAIBackend", "RetryableBackendError"]
