"""
Model invocation - one request to the remote inference service, one reply.

No retries here: the SDK's own retry loop is disabled so the orchestrator's
per-stage budget is the only one. Every provider failure leaves this module
classified into the ModelInvocationError family.
"""

import logging
from dataclasses import dataclass, field

import openai
from openai import OpenAI

from vehicle_analysis.images import ImageAttachment
from vehicle_analysis.models import (
    ModelInvocationError,
    TransportError,
    QuotaError,
    UnsupportedModelError,
    EmptyReplyError,
)
from vehicle_analysis.config import (
    OPENAI_API_KEY,
    OPENAI_BASE_URL,
    PROVIDER_NAME,
    REQUEST_TIMEOUT_SECONDS,
    MAX_OUTPUT_TOKENS,
)

log = logging.getLogger(__name__)

_QUOTA_MARKERS = ("quota", "rate limit", "rate_limit", "too many requests")
_UNSUPPORTED_MARKERS = ("model not found", "not supported", "does not exist", "model_not_found")


@dataclass(frozen=True)
class ModelRequest:
    """A single inference call. Attachments are inlined in order."""
    system_prompt: str
    prompt: str
    model: str
    temperature: float
    attachments: tuple[ImageAttachment, ...] = field(default_factory=tuple)
    max_tokens: int = MAX_OUTPUT_TOKENS
    timeout: float = REQUEST_TIMEOUT_SECONDS
    json_mode: bool = True


def classify_provider_error(exc: Exception) -> ModelInvocationError:
    """Maps an SDK (or transport) exception onto the pipeline taxonomy."""
    message = str(exc)
    lowered = message.lower()

    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError, TimeoutError, ConnectionError)):
        return TransportError(f"{PROVIDER_NAME} unreachable: {message}")

    if isinstance(exc, openai.RateLimitError) or getattr(exc, "code", None) == "insufficient_quota":
        return QuotaError(f"{PROVIDER_NAME} quota exhausted: {message}")

    if isinstance(exc, openai.NotFoundError):
        return UnsupportedModelError(f"{PROVIDER_NAME} model unavailable: {message}")

    if any(marker in lowered for marker in _UNSUPPORTED_MARKERS):
        return UnsupportedModelError(f"{PROVIDER_NAME} model unavailable: {message}")

    if any(marker in lowered for marker in _QUOTA_MARKERS):
        return QuotaError(f"{PROVIDER_NAME} quota exhausted: {message}")

    if isinstance(exc, openai.APIStatusError) and exc.status_code >= 500:
        return TransportError(f"{PROVIDER_NAME} server error {exc.status_code}: {message}")

    return ModelInvocationError(f"{PROVIDER_NAME} call failed: {message}")


class OpenAIInvoker:
    """
    Sends ModelRequests to an OpenAI-compatible chat completions endpoint.

    The client is created on first use unless one is injected, so importing
    this module never needs credentials.
    """

    provider = PROVIDER_NAME

    def __init__(
        self,
        client: OpenAI | None = None,
        api_key: str = OPENAI_API_KEY,
        base_url: str | None = OPENAI_BASE_URL,
    ):
        self._client = client
        self._api_key = api_key
        self._base_url = base_url

    def _get_client(self) -> OpenAI:
        if self._client is not None:
            return self._client

        if not self._api_key:
            raise ModelInvocationError("OPENAI_API_KEY is not configured")

        self._client = OpenAI(api_key=self._api_key, base_url=self._base_url, max_retries=0)
        return self._client

    def invoke(self, request: ModelRequest) -> str:
        """
        Returns the raw reply text.

        Raises:
            ModelInvocationError: Or one of its subclasses, for every failure.
        """
        client = self._get_client()

        kwargs = {
            "model": request.model,
            "messages": _build_messages(request),
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "timeout": request.timeout,
        }
        if request.json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = client.chat.completions.create(**kwargs)
        except Exception as e:
            error = classify_provider_error(e)
            log.warning("%s call to %s failed: %s", self.provider, request.model, error.error_kind)
            raise error from e

        if not response.choices:
            raise EmptyReplyError(f"{self.provider} returned no choices")

        content = response.choices[0].message.content
        if not content or not content.strip():
            raise EmptyReplyError(f"{self.provider} returned an empty message")

        log.debug("reply preview: %s", content[:200])
        return content


def _build_messages(request: ModelRequest) -> list[dict]:
    if request.attachments:
        user_content = [{"type": "text", "text": request.prompt}]
        for attachment in request.attachments:
            user_content.append({
                "type": "image_url",
                "image_url": {"url": attachment.to_data_url(), "detail": "high"},
            })
    else:
        user_content = request.prompt

    return [
        {"role": "system", "content": request.system_prompt},
        {"role": "user", "content": user_content},
    ]
