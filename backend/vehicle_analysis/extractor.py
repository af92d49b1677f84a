"""
Payload extraction - isolates the JSON object inside a free-form model reply.

The service is told to return only JSON but routinely wraps it in commentary
or code fences. The widest "{...}" span survives both without a grammar-aware
scanner. Swap in another Extractor if the provider gains schema-constrained
output; nothing downstream depends on how the object was found.
"""

import json
from typing import Any, Protocol

from vehicle_analysis.models import PayloadNotFoundError


class Extractor(Protocol):
    def __call__(self, text: str) -> dict[str, Any]: ...


def extract_payload(text: str) -> dict[str, Any]:
    """
    Parses the span from the first "{" to the last "}" (inclusive).

    Raises:
        PayloadNotFoundError: If either brace is missing, the span is empty
            or inverted, or the span is not a JSON object.
    """
    if not isinstance(text, str):
        raise PayloadNotFoundError("Reply is not text")

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        raise PayloadNotFoundError("No JSON object found in model reply")

    try:
        payload = json.loads(text[start:end + 1])
    except (ValueError, RecursionError) as e:
        raise PayloadNotFoundError(f"JSON span failed to parse: {e}") from e

    if not isinstance(payload, dict):
        raise PayloadNotFoundError("JSON span is not an object")

    return payload
