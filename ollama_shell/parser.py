import re
from dataclasses import dataclass
from typing import Optional, Tuple

FENCE = "`" * 3

_RE_THINK = re.compile(r"<think>(.*?)</think>", re.DOTALL)
_RE_EXECUTE = re.compile(FENCE + r"execute\s*(.*?)\s*" + FENCE, re.DOTALL)


@dataclass(frozen=True)
class ParsedReply:
    thought: Optional[str]
    visible_answer: str
    command: Optional[str]


def extract_thought(text: str) -> Tuple[Optional[str], str]:
    """
    Split the first <think>...</think> span off the reply.

    Returns (thought, visible_answer). Without a think span the thought is
    None and the answer is the input unchanged.
    """
    m = _RE_THINK.search(text or "")
    if not m:
        return None, text or ""
    return m.group(1), text[:m.start()] + text[m.end():]


def extract_command(text: str) -> Optional[str]:
    m = _RE_EXECUTE.search(text or "")
    if not m:
        return None
    return m.group(1).strip()


def parse_reply(text: str) -> ParsedReply:
    # Both lookups run on the untouched reply text.
    thought, visible = extract_thought(text)
    return ParsedReply(thought=thought, visible_answer=visible, command=extract_command(text))
