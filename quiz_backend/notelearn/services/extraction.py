import json
import re
from typing import Any

from notelearn.errors import SchemaError


_LEADING_FENCE_REGEX = re.compile(r"\A```[A-Za-z0-9_+-]*")
_TRAILING_FENCE = "```"


# PUBLIC_INTERFACE
def extract_structured_payload(response: str) -> str:
    """
    Cut the JSON region out of a model reply.

    Steps:
        - trim whitespace
        - strip a leading ``` fence (with optional language tag) and a trailing ``` fence
        - keep the array region from the first '[' to the last ']', unless an
          object region ('{' .. last '}') starts strictly earlier, or there is
          no array region at all; then keep the object region

    Text without any bracketed region is returned trimmed; parsing decides.
    """
    cleaned = (response or "").strip()

    fence = _LEADING_FENCE_REGEX.match(cleaned)
    if fence:
        cleaned = cleaned[fence.end():].strip()
    if cleaned.endswith(_TRAILING_FENCE):
        cleaned = cleaned[: -len(_TRAILING_FENCE)].strip()

    start, end = -1, -1
    if "[" in cleaned and "]" in cleaned:
        start = cleaned.index("[")
        end = cleaned.rindex("]")
    if "{" in cleaned and "}" in cleaned and (start == -1 or cleaned.index("{") < start):
        start = cleaned.index("{")
        end = cleaned.rindex("}")

    if start != -1 and end >= start:
        cleaned = cleaned[start:end + 1]
    return cleaned


# PUBLIC_INTERFACE
def parse_structured_payload(response: str) -> Any:
    """Extract and decode the JSON payload of a model reply, raising SchemaError if it is not JSON."""
    payload = extract_structured_payload(response)
    try:
        return json.loads(payload)
    except json.JSONDecodeError as exc:
        raise SchemaError(f"Model reply is not valid JSON: {exc.msg} at position {exc.pos}") from exc
