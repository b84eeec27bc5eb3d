import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class ChatTranscript:
    """
    Ordered conversation history sent in full on every chat request.

    The first message is the system instruction; it is installed once and
    there is no way to remove or edit any message afterwards.
    """

    def __init__(self, system_prompt: str):
        self._messages: List[Message] = [Message(Role.SYSTEM, system_prompt)]

    def append(self, message: Message) -> None:
        if message.role is Role.SYSTEM:
            raise ValueError("the system message is installed once, at session start")
        self._messages.append(message)

    def snapshot(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def system_message(self) -> Message:
        return self._messages[0]

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.snapshot())


# -----------------------------
# Transcript records
# -----------------------------

_RE_NBSP = re.compile(r"[\u00A0\u2007\u202F]")  # common non-breaking spaces
_RE_HSPACE = re.compile(r"[ \t\u2000-\u200A\u205F]+")  # horizontal whitespace (space-like)
_RE_TRAIL_SPACE = re.compile(r"[ \t]+(?=\n)")  # trailing spaces before newline
_RE_INDENT = re.compile(r"^[ \t]+")


def compress_output(s: Optional[str], max_consecutive_blank_lines: int = 2) -> str:
    """
    Whitespace compression for command output recorded in the transcript:
    - Normalizes line endings and NBSP-like chars
    - Removes trailing spaces at line ends
    - Collapses repeated horizontal whitespace, keeping leading indentation
    - Limits consecutive blank lines
    """
    if not s:
        return ""

    s = s.replace("\r\n", "\n").replace("\r", "\n")
    s = _RE_NBSP.sub(" ", s)
    s = _RE_TRAIL_SPACE.sub("", s)

    out_lines = []
    for line in s.split("\n"):
        m = _RE_INDENT.match(line)
        indent = m.group(0) if m else ""
        rest = _RE_HSPACE.sub(" ", line[len(indent):]).strip(" ")
        out_lines.append(indent + rest)
    s = "\n".join(out_lines)

    n = max(0, int(max_consecutive_blank_lines))
    s = re.sub(r"\n{" + str(n + 2) + r",}", "\n" * (n + 1), s)
    return s.strip()


def shell_activity_record(command: str, output_log: str) -> Message:
    return Message(Role.USER, f"Executed Shell Command: {command}\nOutput:\n{output_log}")


def command_result_record(stdout: str, stderr: str, exit_code: int) -> Message:
    result = f"Command Executed.\nExit status: {exit_code}\nSTDOUT:\n{stdout}\nSTDERR:\n{stderr}"
    return Message(Role.USER, f"System Output: {result}")


def refusal_record() -> Message:
    return Message(Role.USER, "User cancelled the command execution.")


def spawn_failure_record(reason: str) -> Message:
    return Message(Role.USER, f"Command failed to start: {reason}")
