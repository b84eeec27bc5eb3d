import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

DEFAULT_HOST = "http://localhost:11434"
DEFAULT_SELECTION_COMMAND = ["kitty", "@", "get-text", "--selection", "primary"]
DEFAULT_CONTINUE_PROMPT = "Review the command output above and tell me the next step."


# -----------------------------
# Shell detection
# -----------------------------

def detect_shell() -> Tuple[str, List[str]]:
    sysname = platform.system().lower()
    if "windows" in sysname:
        # PowerShell
        return ("powershell", ["powershell", "-NoProfile", "-ExecutionPolicy", "Bypass", "-Command"])
    shell = os.environ.get("SHELL") or "/bin/sh"
    return (Path(shell).name, [shell, "-c"])


# -----------------------------
# Config
# -----------------------------

@dataclass
class AppConfig:
    host: str = DEFAULT_HOST
    model: Optional[str] = None
    timeout_seconds: float = 600
    max_retries: int = 0
    shell_name: str = ""
    shell_command: List[str] = field(default_factory=list)
    system_prompt: Optional[str] = None
    auto_continue: bool = False
    continue_prompt: str = DEFAULT_CONTINUE_PROMPT
    workdir: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    compress_output: bool = False
    show_raw_reply: bool = False
    selection_command: List[str] = field(default_factory=lambda: list(DEFAULT_SELECTION_COMMAND))

    def __post_init__(self) -> None:
        if not self.shell_command:
            self.shell_name, self.shell_command = detect_shell()
        elif not self.shell_name:
            self.shell_name = Path(self.shell_command[0]).name


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("1", "true", "yes", "on"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{key} must be true or false, got {value!r}")


def _as_command(value: Any, key: str) -> List[str]:
    if isinstance(value, str):
        value = value.split()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"{key} must be a list of strings, got {value!r}")
    return list(value)


def load_config(path: Optional[str] = None) -> AppConfig:
    """
    Build the AppConfig from an optional YAML file.

    Sections: ``ollama`` (host, model, timeout_seconds, max_retries),
    ``shell`` (command) and ``agent`` (everything about the session loop).
    Keys left out keep their defaults; OLLAMA_HOST fills in a missing host.
    """
    data: Dict[str, Any] = {}
    if path:
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: top level must be a mapping")

    ollama_cfg = data.get("ollama", {}) or {}
    shell_cfg = data.get("shell", {}) or {}
    agent_cfg = data.get("agent", {}) or {}

    cfg = AppConfig(
        host=(ollama_cfg.get("host") or os.environ.get("OLLAMA_HOST") or DEFAULT_HOST).rstrip("/"),
        model=ollama_cfg.get("model") or None,
        timeout_seconds=float(ollama_cfg.get("timeout_seconds", 600)),
        max_retries=int(ollama_cfg.get("max_retries", 0)),
        shell_command=_as_command(shell_cfg.get("command", []) or [], "shell.command"),
        system_prompt=agent_cfg.get("system_prompt") or None,
        auto_continue=_as_bool(agent_cfg.get("auto_continue", False), "agent.auto_continue"),
        continue_prompt=str(agent_cfg.get("continue_prompt") or DEFAULT_CONTINUE_PROMPT),
        workdir=agent_cfg.get("workdir"),
        env={str(k): str(v) for k, v in (agent_cfg.get("env", {}) or {}).items()},
        compress_output=_as_bool(agent_cfg.get("compress_output", False), "agent.compress_output"),
        show_raw_reply=_as_bool(agent_cfg.get("show_raw_reply", False), "agent.show_raw_reply"),
        selection_command=_as_command(
            agent_cfg.get("selection_command", DEFAULT_SELECTION_COMMAND) or [], "agent.selection_command"
        ),
    )
    if "://" not in cfg.host:
        cfg.host = f"http://{cfg.host}"
    return cfg
