"""
Keyword-based topic extraction.
"""

import re
from typing import List

STOP_WORDS = frozenset({
    'the', 'a', 'an', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for', 'of', 'with', 'is', 'are', 'was', 'were', 'be',
    'been', 'being'
})

MIN_TOPIC_LENGTH = 4

_WORD = re.compile(r'\b\w+\b', re.ASCII)


def extract_topics(text: str, limit: int = 5) -> List[str]:
    """Derive candidate topics from free text.

    Words are runs of ASCII letters, digits and underscores, so non-ASCII
    letters split a word. Words are lower-cased; words shorter than four characters and stop words are
    dropped. Order of first appearance is kept, and each topic appears once.

    Args:
        text: Free text to scan
        limit: Maximum number of topics to return

    Returns:
        Up to ``limit`` topic strings
    """
    if not text or limit <= 0:
        return []

    topics: List[str] = []
    for word in _WORD.findall(text.lower()):
        if len(word) < MIN_TOPIC_LENGTH or word in STOP_WORDS or word in topics:
            continue
        topics.append(word)
        if len(topics) == limit:
            break
    return topics
