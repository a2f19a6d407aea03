import json
import logging
import re

from storybook.core.metrics import increment_json_parse_failure

logger = logging.getLogger(__name__)


def _strip_markdown_fences(text: str) -> str:
    """Remove markdown code fences from LLM output."""
    patterns = [
        r"```json\s*\n?(.*?)\n?```",
        r"```\s*\n?(.*?)\n?```",
    ]
    for pattern in patterns:
        match = re.search(pattern, text, re.DOTALL | re.IGNORECASE)
        if match:
            return match.group(1).strip()
    return text


def _clean_json_text(text: str) -> str:
    """Clean common LLM JSON output issues."""
    cleaned = text.strip()
    cleaned = _strip_markdown_fences(cleaned)

    lines = cleaned.split("\n")

    start_idx = 0
    for i, line in enumerate(lines):
        stripped = line.strip()
        if stripped.startswith("{") or stripped.startswith("["):
            start_idx = i
            break

    end_idx = len(lines) - 1
    for i in range(len(lines) - 1, -1, -1):
        stripped = lines[i].strip()
        if stripped.endswith("}") or stripped.endswith("]"):
            end_idx = i
            break

    cleaned = "\n".join(lines[start_idx : end_idx + 1])

    cleaned = re.sub(r",\s*([}\]])", r"\1", cleaned)

    return cleaned.strip()


def _extract_json_object(text: str) -> str | None:
    """Extract the outermost JSON object using bracket matching."""
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escape_next = False

    for i, char in enumerate(text[start:], start):
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    return None


def parse_json_object(text: str) -> dict:
    """
    Tiered JSON object extraction: direct, cleaned, then outermost-object match.

    Raises:
        ValueError: If no tier yields a JSON object.
    """
    if not text or not text.strip():
        raise ValueError("empty response text")

    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        increment_json_parse_failure("direct")

    try:
        parsed = json.loads(_clean_json_text(text))
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        increment_json_parse_failure("cleaned")

    obj_text = _extract_json_object(text)
    if obj_text:
        try:
            return json.loads(obj_text)
        except json.JSONDecodeError:
            increment_json_parse_failure("object")

    logger.warning("All JSON parsing methods failed. Text preview: %s", text[:300])
    raise ValueError("response is not a JSON object")
