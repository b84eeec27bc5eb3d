"""
Tests for AgentSession: mode switching, the agent turn, the confirmation
protocol and failure handling. Chat clients are fakes; input is scripted.
"""

import os
from unittest import mock

import httpx

from ollama_shell.chat_client import OllamaClient
from ollama_shell.config import AppConfig
from ollama_shell.errors import ChatProtocolError, ChatRequestFailure, SpawnError
from ollama_shell.parser import FENCE
from ollama_shell.session import AgentSession, SessionMode
from ollama_shell.shell_runner import CommandResult
from ollama_shell.transcript import Message, Role

SH = ["/bin/sh", "-c"]


def scripted(*lines):
    it = iter(lines)
    prompts = []

    def read_line(prompt):
        prompts.append(prompt)
        try:
            return next(it)
        except StopIteration:
            raise EOFError
    read_line.prompts = prompts
    return read_line


class FakeChat:
    def __init__(self, *replies, models=("llama3",)):
        self.replies = list(replies)
        self.models = list(models)
        self.calls = []

    def chat(self, model, messages):
        self.calls.append((model, list(messages)))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return Message(Role.ASSISTANT, reply)

    def list_models(self):
        return self.models


class FakeRunner:
    def __init__(self, result=None, error=None):
        self.result = result or CommandResult(stdout="out\n", stderr="", exit_code=0)
        self.error = error
        self.captured = []
        self.streamed = []
        self.cwds = []

    def capture(self, command, cwd=None):
        self.captured.append(command)
        self.cwds.append(cwd)
        if self.error:
            raise self.error
        return self.result

    def stream(self, command, cwd=None):
        self.streamed.append(command)
        if self.error:
            raise self.error
        return "streamed\n"


def make_session(chat, *lines, runner=None, tmp_path=None, **cfg_kwargs):
    cfg = AppConfig(shell_command=SH, workdir=str(tmp_path) if tmp_path else None, **cfg_kwargs)
    return AgentSession(cfg, chat, "llama3", runner=runner, read_line=scripted(*lines))


def reply_with_command(command):
    return f"<think>plan</think>I will run it.\n{FENCE}execute\n{command}\n{FENCE}"


class TestModeSwitching:

    def test_shell_then_agent_then_exit(self, tmp_path, capsys):
        chat = FakeChat()
        session = make_session(chat, "!shell", "echo hi", "!agent", "exit", tmp_path=tmp_path)
        session.run()

        out = capsys.readouterr().out
        assert "hi\n" in out
        assert "Switched to Shell Mode." in out
        assert "Switched to Agent Mode." in out
        assert out.rstrip().endswith("Bye!")
        assert len(session.transcript) == 2
        record = session.transcript.snapshot()[1]
        assert record.role is Role.USER
        assert record.content == "Executed Shell Command: echo hi\nOutput:\nhi\n"
        assert chat.calls == []

    def test_mode_tokens_do_not_touch_transcript(self):
        chat = FakeChat()
        session = make_session(chat)
        assert session.handle_line("!shell") is True
        assert session.mode is SessionMode.SHELL
        assert session.handle_line("!agent") is True
        assert session.mode is SessionMode.AGENT
        assert len(session.transcript) == 1
        assert chat.calls == []

    def test_mode_tokens_are_case_sensitive(self):
        chat = FakeChat("ok")
        session = make_session(chat)
        session.handle_line("!SHELL")
        assert session.mode is SessionMode.AGENT
        assert len(chat.calls) == 1

    def test_exit_tokens_any_case_any_mode(self):
        session = make_session(FakeChat())
        for token in ("exit", "Exit", "QUIT", "quit"):
            assert session.handle_line(token) is False
        session.mode = SessionMode.SHELL
        assert session.handle_line("EXIT") is False

    def test_empty_line_is_noop(self):
        chat = FakeChat()
        session = make_session(chat)
        assert session.handle_line("   ") is True
        assert len(session.transcript) == 1
        assert chat.calls == []

    def test_eof_ends_session(self, capsys):
        session = make_session(FakeChat())
        session.run()
        assert "Bye!" in capsys.readouterr().out

    def test_prompts_follow_mode(self, tmp_path):
        session = make_session(FakeChat(), "!shell", "exit", tmp_path=tmp_path)
        session.run()
        prompts = session.read_line.prompts
        assert prompts[0].strip() == "(Agent) >>>"
        assert prompts[1].strip() == f"(Shell:{session.cwd}) $"


class TestShellMode:

    def test_cd_changes_working_directory(self, tmp_path, capsys):
        sub = tmp_path / "sub"
        sub.mkdir()
        session = make_session(FakeChat(), "!shell", "cd sub", "pwd", "exit", tmp_path=tmp_path)
        session.run()

        assert session.cwd == str(sub)
        assert len(session.transcript) == 2
        logged = session.transcript.snapshot()[1].content
        assert os.path.realpath(logged.splitlines()[-1]) == os.path.realpath(str(sub))

    def test_bare_cd_goes_home(self, tmp_path):
        home = tmp_path / "home"
        home.mkdir()
        work = tmp_path / "work"
        work.mkdir()
        session = make_session(FakeChat(), tmp_path=work)
        session.mode = SessionMode.SHELL
        with mock.patch.dict(os.environ, {"HOME": str(home)}):
            session.handle_line("cd")
        assert session.cwd == str(home)
        assert len(session.transcript) == 1

    def test_confirmed_command_runs_in_session_cwd(self, tmp_path):
        sub = tmp_path / "sub"
        sub.mkdir()
        runner = FakeRunner()
        chat = FakeChat(reply_with_command("ls"))
        session = make_session(chat, "!shell", "cd sub", "!agent", "list files", "y", "exit",
                               runner=runner, tmp_path=tmp_path)
        session.run()
        assert runner.captured == ["ls"]
        assert runner.cwds == [str(sub)]

    def test_cd_to_missing_directory(self, tmp_path, capsys):
        session = make_session(FakeChat(), tmp_path=tmp_path)
        session.mode = SessionMode.SHELL
        session.handle_line("cd does-not-exist")
        assert session.cwd == str(tmp_path)
        assert "no such directory" in capsys.readouterr().err
        assert len(session.transcript) == 1

    def test_spawn_failure_adds_nothing(self, capsys):
        runner = FakeRunner(error=SpawnError("no shell"))
        session = make_session(FakeChat(), runner=runner)
        session.mode = SessionMode.SHELL
        assert session.handle_line("ls") is True
        assert len(session.transcript) == 1
        assert "no shell" in capsys.readouterr().err

    def test_compressed_record(self):
        runner = FakeRunner()
        runner.stream = lambda command, cwd=None: "a    b   \n\n\n\n\nc\n"
        session = make_session(FakeChat(), runner=runner, compress_output=True)
        session.mode = SessionMode.SHELL
        session.handle_line("cmd")
        assert session.transcript.snapshot()[1].content.endswith("Output:\na b\n\n\nc")


class TestAgentTurn:

    def test_reply_appended_verbatim(self, capsys):
        raw = "<think>\nconsider\n</think>\nThe answer is 42."
        chat = FakeChat(raw)
        session = make_session(chat, "question", "exit")
        session.run()

        msgs = session.transcript.snapshot()
        assert [m.role for m in msgs] == [Role.SYSTEM, Role.USER, Role.ASSISTANT]
        assert msgs[1].content == "question"
        assert msgs[2].content == raw

        out = capsys.readouterr().out
        assert "consider" in out
        assert "The answer is 42." in out
        assert "<think>" not in out

    def test_request_carries_whole_transcript(self):
        chat = FakeChat("first", "second")
        session = make_session(chat, "one", "two", "exit")
        session.run()

        model, sent = chat.calls[1]
        assert model == "llama3"
        assert [m.content for m in sent[1:]] == ["one", "first", "two"]
        assert sent[0].role is Role.SYSTEM

    def test_error_reply_reported_and_loop_continues(self, capsys):
        sdk = mock.Mock()
        sdk.post.return_value = httpx.Response(200, json={"error": "model not found"})
        read_line = scripted("hello", "exit")
        session = AgentSession(AppConfig(shell_command=SH), OllamaClient("http://localhost:11434", client=sdk),
                               "llama3", read_line=read_line)
        session.run()

        assert "model not found" in capsys.readouterr().err
        assert len(read_line.prompts) == 2
        assert len(session.transcript) == 1
        assert all(m.role is not Role.ASSISTANT for m in session.transcript)

    def test_network_failure_leaves_transcript_unchanged(self, capsys):
        chat = FakeChat(ChatRequestFailure("connection refused"), "recovered")
        session = make_session(chat, "first try", "second try", "exit")
        session.run()

        assert "connection refused" in capsys.readouterr().err
        assert [m.content for m in session.transcript.snapshot()[1:]] == ["second try", "recovered"]

    def test_protocol_error_is_not_fatal(self, capsys):
        chat = FakeChat(ChatProtocolError("reply has neither message nor error"))
        session = make_session(chat)
        assert session.handle_line("hi") is True
        assert "[Ollama Error]" in capsys.readouterr().err

    def test_raw_reply_shown_when_configured(self, capsys):
        session = make_session(FakeChat("<think>x</think>y"), show_raw_reply=True)
        session.handle_line("hi")
        assert "<think>x</think>y" in capsys.readouterr().out


class TestConfirmation:

    def test_empty_answer_refuses(self, capsys):
        runner = FakeRunner()
        session = make_session(FakeChat(reply_with_command("rm -rf build")), "clean up", "", "exit", runner=runner)
        session.run()

        assert runner.captured == []
        assert session.transcript.snapshot()[-1].content == "User cancelled the command execution."
        out = capsys.readouterr().out
        assert "rm -rf build" in out
        assert "Cancelled." in out

    def test_other_answers_refuse(self):
        for answer in ("n", "yes", "sure", " no "):
            runner = FakeRunner()
            session = make_session(FakeChat(reply_with_command("ls")), "list", answer, "exit", runner=runner)
            session.run()
            assert runner.captured == []
            assert len(session.transcript) == 4

    def test_eof_at_confirmation_refuses(self):
        runner = FakeRunner()
        session = make_session(FakeChat(reply_with_command("ls")), "list", runner=runner)
        session.run()
        assert runner.captured == []
        assert session.transcript.snapshot()[-1].content == "User cancelled the command execution."

    def test_yes_runs_and_records(self, capsys):
        runner = FakeRunner(CommandResult(stdout="file.txt\n", stderr="warn\n", exit_code=0))
        session = make_session(FakeChat(reply_with_command("ls")), "list", "Y", "exit", runner=runner)
        session.run()

        assert runner.captured == ["ls"]
        record = session.transcript.snapshot()[-1]
        assert record.role is Role.USER
        assert "STDOUT:\nfile.txt\n" in record.content
        assert "STDERR:\nwarn\n" in record.content
        out = capsys.readouterr().out
        assert "file.txt" in out
        assert "warn" in out

    def test_nonzero_exit_is_reported_not_failed(self, capsys):
        runner = FakeRunner(CommandResult(stdout="", stderr="boom\n", exit_code=2))
        session = make_session(FakeChat(reply_with_command("false")), "go", "y", "exit", runner=runner)
        session.run()

        assert "Exit status: 2" in session.transcript.snapshot()[-1].content
        assert "(exit status 2)" in capsys.readouterr().out

    def test_spawn_failure_recorded(self, capsys):
        runner = FakeRunner(error=SpawnError("shell not found"))
        session = make_session(FakeChat(reply_with_command("ls")), "list", "y", "exit", runner=runner)
        session.run()

        assert session.transcript.snapshot()[-1].content == "Command failed to start: shell not found"
        assert "shell not found" in capsys.readouterr().err

    def test_no_auto_continue_by_default(self):
        chat = FakeChat(reply_with_command("ls"))
        session = make_session(chat, "list", "y", "exit", runner=FakeRunner())
        session.run()
        assert len(chat.calls) == 1

    def test_auto_continue_sends_follow_up(self):
        chat = FakeChat(reply_with_command("ls"), "Looks good.")
        session = make_session(chat, "list", "y", "exit", runner=FakeRunner(),
                               auto_continue=True, continue_prompt="check it")
        session.run()

        assert len(chat.calls) == 2
        assert chat.calls[1][1][-1] == Message(Role.USER, "check it")
        assert session.transcript.snapshot()[-1].content == "Looks good."

    def test_auto_continue_not_after_refusal(self):
        chat = FakeChat(reply_with_command("ls"))
        session = make_session(chat, "list", "n", "exit", runner=FakeRunner(), auto_continue=True)
        session.run()
        assert len(chat.calls) == 1


class TestModelSwitching:

    def test_pick_other_model(self, capsys):
        chat = FakeChat(models=("llama3", "qwen3:8b"))
        session = make_session(chat)
        session.choose = lambda prompt, items: 1
        session.handle_line("!model")
        assert session.model == "qwen3:8b"
        assert len(session.transcript) == 1

    def test_eof_at_picker_keeps_model(self, capsys):
        chat = FakeChat(models=("llama3", "qwen3:8b"))
        session = AgentSession(AppConfig(shell_command=SH), chat, "llama3", read_line=scripted("!model", "exit"))
        with mock.patch("builtins.input", side_effect=EOFError):
            session.run()
        assert session.model == "llama3"
        assert len(session.transcript) == 1
        out = capsys.readouterr().out
        assert "cancelled" in out
        assert out.rstrip().endswith("Bye!")

    def test_fetch_failure_keeps_model(self, capsys):
        chat = FakeChat()
        chat.list_models = mock.Mock(side_effect=ChatRequestFailure("down"))
        session = make_session(chat)
        session.handle_line("!model")
        assert session.model == "llama3"
        assert "down" in capsys.readouterr().err


class TestInitialInput:

    def test_selected_text_is_first_turn(self, capsys):
        chat = FakeChat("answer")
        session = make_session(chat, "exit")
        session.run("explain this error")
        assert chat.calls[0][1][-1] == Message(Role.USER, "explain this error")
        assert "Starting with the selected text." in capsys.readouterr().out
