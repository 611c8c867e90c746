"""Character-based token estimation for streamed calls and providers that omit usage."""
import math
from typing import Any, Dict, Iterable

# Hangul, kana, CJK ideographs and fullwidth forms tokenize far denser than Latin text.
DENSE_SCRIPT_RANGES = (
    (0x1100, 0x11FF),
    (0x3040, 0x30FF),
    (0x3130, 0x318F),
    (0x3400, 0x4DBF),
    (0x4E00, 0x9FFF),
    (0xAC00, 0xD7AF),
    (0xFF00, 0xFFEF),
)

LATIN_CHARS_PER_TOKEN = 4.0
DENSE_CHARS_PER_TOKEN = 2.5
IMAGE_TOKENS = 85 + 1000
MESSAGE_OVERHEAD_TOKENS = 4


def _is_dense(char: str) -> bool:
    code = ord(char)
    return any(low <= code <= high for low, high in DENSE_SCRIPT_RANGES)


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    dense = sum(1 for char in text if _is_dense(char))
    other = len(text) - dense
    return math.ceil(dense / DENSE_CHARS_PER_TOKEN) + math.ceil(other / LATIN_CHARS_PER_TOKEN)


def estimate_message_tokens(messages: Iterable[Dict[str, Any]]) -> int:
    """Estimate prompt tokens for wire-format messages of either provider family."""
    total = 0
    for message in messages:
        content = message.get("content")
        if isinstance(content, str):
            total += estimate_tokens(content)
        elif isinstance(content, list):
            for part in content:
                part_type = part.get("type")
                if part_type == "text":
                    total += estimate_tokens(part.get("text", ""))
                elif part_type in ("image_url", "image", "document", "file"):
                    total += IMAGE_TOKENS
        total += MESSAGE_OVERHEAD_TOKENS
    return total
