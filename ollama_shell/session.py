import os
import platform
import sys
from enum import Enum
from typing import Callable, Optional, Sequence

from . import ui
from .config import AppConfig
from .errors import ChatProtocolError, ChatRequestFailure, SpawnError
from .parser import FENCE, parse_reply
from .shell_runner import ShellRunner
from .transcript import (
    ChatTranscript,
    Message,
    Role,
    command_result_record,
    compress_output,
    refusal_record,
    shell_activity_record,
    spawn_failure_record,
)

SHELL_TOKEN = "!shell"
AGENT_TOKEN = "!agent"
MODEL_TOKEN = "!model"
EXIT_TOKENS = ("exit", "quit")


class SessionMode(Enum):
    AGENT = "agent"
    SHELL = "shell"


def build_system_instructions(shell_name: str) -> str:
    return f"""
You are a terminal assistant running on {platform.system()} ({shell_name} shell).

[IMPORTANT RULES]
1. Before answering, you MUST provide your thinking process enclosed in <think> and </think> tags.
2. If the user asks to perform a system action, you MUST output the command inside a code block labeled 'execute'.
3. Propose at most ONE execute block per reply. Commands MUST target the "{shell_name}" shell.

Example:
<think>
User wants to update npm. I need to use the global flag.
</think>

{FENCE}execute
npm update -g
{FENCE}

Do NOT ask for permission in text. Just provide the execute block; the user confirms before it runs.
You will receive the command output (or the user's refusal) as the next message.
""".strip()


class AgentSession:
    """
    The interactive loop.

    Agent mode sends input to the model and offers any proposed command for
    confirmation; Shell mode runs input directly and records it in the
    transcript so the model keeps the context.
    """

    def __init__(
            self,
            cfg: AppConfig,
            chat,
            model: str,
            runner: Optional[ShellRunner] = None,
            read_line: Callable[[str], str] = ui.read_line,
            choose: Callable[[str, Sequence[str]], int] = ui.choose,
    ):
        self.cfg = cfg
        self.chat = chat
        self.model = model
        self.runner = runner or ShellRunner(cfg.shell_command, cfg.env)
        self.read_line = read_line
        self.choose = choose
        self.transcript = ChatTranscript(cfg.system_prompt or build_system_instructions(cfg.shell_name))
        self.mode = SessionMode.AGENT
        self.cwd = os.path.abspath(os.path.expanduser(cfg.workdir or os.getcwd()))
        self._queued: Optional[str] = None

    # -----------------------------
    # Loop
    # -----------------------------

    def prompt(self) -> str:
        if self.mode is SessionMode.SHELL:
            return f"\n(Shell:{self.cwd}) $ "
        return "\n(Agent) >>> "

    def run(self, initial_input: str = "") -> None:
        if initial_input:
            print("Starting with the selected text.")
            self._queued = initial_input

        while True:
            if self._queued:
                line, self._queued = self._queued, None
                print(f"{self.prompt()}{line}")
            else:
                try:
                    line = self.read_line(self.prompt())
                except (EOFError, KeyboardInterrupt):
                    print("\nBye!")
                    return

            if not self.handle_line(line):
                print("Bye!")
                return

    def handle_line(self, line: str) -> bool:
        """Process one input line. Returns False when the session should end."""
        line = line.strip()

        if line.lower() in EXIT_TOKENS:
            return False
        if not line:
            return True

        if line == SHELL_TOKEN:
            self.mode = SessionMode.SHELL
            print(f"Switched to Shell Mode. (Type '{AGENT_TOKEN}' to switch back)")
            return True
        if line == AGENT_TOKEN:
            self.mode = SessionMode.AGENT
            print("Switched to Agent Mode.")
            return True
        if line == MODEL_TOKEN:
            self.switch_model()
            return True

        if self.mode is SessionMode.SHELL:
            self.shell_turn(line)
        else:
            self.agent_turn(line)
        return True

    # -----------------------------
    # Shell mode
    # -----------------------------

    def _recorded(self, output: str) -> str:
        return compress_output(output) if self.cfg.compress_output else output

    def change_directory(self, target: str) -> None:
        target = target.strip() or "~"
        path = os.path.abspath(os.path.join(self.cwd, os.path.expanduser(target)))
        if not os.path.isdir(path):
            ui.error(f"cd: no such directory: {target}")
            return
        self.cwd = path

    def shell_turn(self, command: str) -> None:
        if command == "cd" or command.startswith("cd "):
            self.change_directory(command[2:])
            return

        try:
            log = self.runner.stream(command, cwd=self.cwd)
        except SpawnError as e:
            ui.error(f"Command failed to start: {e}")
            return
        self.transcript.append(shell_activity_record(command, self._recorded(log)))

    # -----------------------------
    # Agent mode
    # -----------------------------

    def agent_turn(self, text: str) -> None:
        # The user message joins the transcript only once the model answered.
        pending = Message(Role.USER, text)

        ui.thinking_indicator(True)
        try:
            reply = self.chat.chat(self.model, self.transcript.snapshot() + (pending,))
        except ChatRequestFailure as e:
            ui.error(str(e))
            return
        except ChatProtocolError as e:
            print(f"\n[Ollama Error] {e}", file=sys.stderr)
            return
        finally:
            ui.thinking_indicator(False)

        self.transcript.append(pending)
        self.transcript.append(reply)

        if self.cfg.show_raw_reply:
            print("\n[Raw reply]")
            print(reply.content)

        parsed = parse_reply(reply.content)
        if parsed.thought is not None:
            ui.show_thought(parsed.thought)
            print(parsed.visible_answer.strip())
        else:
            print(reply.content)

        if parsed.command:
            self.confirm_and_run(parsed.command)

    def confirm_and_run(self, command: str) -> None:
        ui.show_proposed_command(command)
        try:
            answer = self.read_line("Execute? (y/N) ")
        except EOFError:
            answer = ""

        if answer.strip().lower() != "y":
            print("Cancelled.")
            self.transcript.append(refusal_record())
            return

        print("Running...")
        try:
            result = self.runner.capture(command, cwd=self.cwd)
        except SpawnError as e:
            ui.error(f"Command failed to start: {e}")
            self.transcript.append(spawn_failure_record(str(e)))
            return

        print("-- Output --")
        output = result.stdout + result.stderr
        print(output, end="" if output.endswith("\n") or not output else "\n")
        if result.exit_code != 0:
            print(f"(exit status {result.exit_code})")

        self.transcript.append(command_result_record(
            self._recorded(result.stdout), self._recorded(result.stderr), result.exit_code,
        ))

        if self.cfg.auto_continue:
            self._queued = self.cfg.continue_prompt

    # -----------------------------
    # Model switching
    # -----------------------------

    def switch_model(self) -> None:
        print("Fetching models...")
        try:
            models = self.chat.list_models()
        except (ChatRequestFailure, ChatProtocolError) as e:
            ui.error(f"Could not fetch models: {e}")
            return
        if not models:
            ui.error("No models found.")
            return

        try:
            idx = self.choose("Available models:", models)
        except EOFError:
            print(f"\nModel selection cancelled. Keeping {self.model}.")
            return
        self.model = models[idx]
        print(f"Switched to model: {self.model}")
