"""
Cheap first-pass rejection of junk memories before scoring.
"""

import re
from typing import Iterable, List

from .schema import AgentMemory


MIN_TEXT_LENGTH = 20

JUNK_SUBSTRINGS = (
    "subagent direct hook test",
    "skipping:",
    "no output",
)

JUNK_TOKENS = re.compile(r"^(ok|yes|no|done|test)$", re.IGNORECASE)


def pre_filter(memory: AgentMemory) -> bool:
    """Return True if the memory is worth scoring."""
    text = (memory.text or "").strip()
    lower = text.lower()

    if len(text) < MIN_TEXT_LENGTH:
        return False
    if any(junk in lower for junk in JUNK_SUBSTRINGS):
        return False
    if JUNK_TOKENS.match(text):
        return False

    return True


def filter_memories(memories: Iterable[AgentMemory]) -> List[AgentMemory]:
    """Keep only memories accepted by pre_filter, preserving order."""
    return [m for m in memories if pre_filter(m)]
