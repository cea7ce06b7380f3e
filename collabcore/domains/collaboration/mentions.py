import re
from typing import List

MENTION_PATTERN = re.compile(r"@(\w+)")


def extract_mentions(content: str) -> List[str]:
    """Извлечение упоминаний (@username) в порядке появления, с повторами"""
    if not content:
        return []
    return MENTION_PATTERN.findall(content)
