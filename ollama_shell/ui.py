import os
import subprocess
import sys
from typing import List, Optional, Sequence

# readline is not available on Windows
try:
    import readline
    HAS_READLINE = True
except ImportError:
    HAS_READLINE = False


# -----------------------------
# Colors
# -----------------------------

class C:
    """ANSI color codes for terminal output."""
    RESET = "\033[0m"
    BOLD = "\033[1m"
    ITALIC = "\033[3m"
    RED = "\033[31m"
    YELLOW = "\033[33m"
    GRAY = "\033[90m"

    @classmethod
    def disable(cls) -> None:
        for attr in dir(cls):
            if attr.isupper() and isinstance(getattr(cls, attr), str):
                setattr(cls, attr, "")


if (not sys.stdout.isatty()
        or os.environ.get("NO_COLOR") is not None
        or os.environ.get("TERM") == "dumb"):
    C.disable()

CLEAR_LINE = "\r\033[K"
DIVIDER = "-" * 40


def error(msg: str) -> None:
    print(f"{C.RED}[Error]{C.RESET} {msg}", file=sys.stderr)


def show_thought(thought: str) -> None:
    print(f"\n{C.BOLD}{C.GRAY}Thinking Process:{C.RESET}")
    print(f"{C.GRAY}{C.ITALIC}{thought.strip()}{C.RESET}\n")
    print(f"{C.BOLD}{C.GRAY}{DIVIDER}{C.RESET}\n")


def show_proposed_command(command: str) -> None:
    print("\n[!] The assistant wants to run this command:")
    print(f"{C.YELLOW}{command}{C.RESET}")


def thinking_indicator(on: bool) -> None:
    if not sys.stdout.isatty():
        return
    if on:
        print("Thinking...", end="", flush=True)
    else:
        print(CLEAR_LINE, end="", flush=True)


# -----------------------------
# Input
# -----------------------------

def _executables_on_path() -> List[str]:
    seen = set()
    names = []
    for d in os.environ.get("PATH", "").split(os.pathsep):
        try:
            entries = sorted(os.listdir(d))
        except OSError:
            continue
        for name in entries:
            if name not in seen and os.access(os.path.join(d, name), os.X_OK):
                seen.add(name)
                names.append(name)
    return names


def setup_line_editing(extra_words: Sequence[str] = ()) -> None:
    """
    Enable history and tab completion: the first word completes against
    executables on PATH (plus extra_words), later words against file names.
    """
    if not HAS_READLINE:
        return

    commands: List[str] = []

    def _completer(text: str, state: int) -> Optional[str]:
        line = readline.get_line_buffer()
        begin = readline.get_begidx()
        if line[:begin].strip():
            directory, _, prefix = text.rpartition("/")
            try:
                entries = os.listdir(os.path.expanduser(directory) or ".")
            except OSError:
                entries = []
            options = [(directory + "/" if directory else "") + e for e in sorted(entries) if e.startswith(prefix)]
        else:
            if not commands:
                commands.extend(list(extra_words) + _executables_on_path())
            options = [c for c in commands if c.startswith(text)]
        return options[state] if state < len(options) else None

    readline.set_completer(_completer)
    readline.set_completer_delims(" \t\n")
    readline.parse_and_bind("tab: complete")


def read_line(prompt: str) -> str:
    """Read one trimmed line. EOFError / KeyboardInterrupt propagate to the caller."""
    return input(prompt).strip()


def choose(prompt: str, items: Sequence[str]) -> int:
    """Present a numbered list and return the index the user picked."""
    if not items:
        raise ValueError("nothing to choose from")
    print(prompt)
    for i, item in enumerate(items, 1):
        print(f"  {i}. {item}")
    while True:
        answer = input(f"Select [1-{len(items)}] (default 1): ").strip()
        if not answer:
            return 0
        if answer.isdigit() and 1 <= int(answer) <= len(items):
            return int(answer) - 1
        print("Invalid selection.")


def wait_for_enter() -> None:
    print("\nPress Enter to exit...")
    try:
        input()
    except (EOFError, KeyboardInterrupt):
        pass


# -----------------------------
# Terminal selection probe
# -----------------------------

def probe_selection(command: Sequence[str]) -> str:
    """Text currently selected in the terminal, or "" when it cannot be read."""
    if not command:
        return ""
    try:
        proc = subprocess.run(
            list(command),
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=5,
        )
    except (OSError, subprocess.TimeoutExpired):
        return ""
    if proc.returncode != 0:
        return ""
    return (proc.stdout or "").strip()
