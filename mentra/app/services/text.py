# mentra/app/services/text.py
import math
import re
from typing import Optional

TAG_RE = re.compile(r"<[^>]*>")
WS_RE = re.compile(r"\s+")


def extract_plain_text(html_content: Optional[str]) -> str:
    """Strip markup and collapse whitespace."""
    if not html_content:
        return ""
    return WS_RE.sub(" ", TAG_RE.sub(" ", html_content)).strip()


def count_words(plain_text: Optional[str]) -> int:
    if not plain_text:
        return 0
    return len(plain_text.split())


def reading_time_minutes(word_count: int, words_per_minute: int = 200) -> int:
    return math.ceil(word_count / words_per_minute)
