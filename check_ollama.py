#!/usr/bin/env python3
"""
Check the Ollama endpoint from a config file.

What this script does:
- Loads ollama.host / ollama.model from config.yml (or the defaults)
- Lists the installed models via /api/tags
- Sends a one-message chat and checks the reply parses (thought / command)
"""

import sys

from ollama_shell.chat_client import OllamaClient
from ollama_shell.config import load_config
from ollama_shell.errors import OllamaShellError
from ollama_shell.parser import parse_reply
from ollama_shell.transcript import Message, Role


def main() -> int:
    if len(sys.argv) > 2:
        print("Usage: python check_ollama.py [config.yml]")
        return 1

    cfg = load_config(sys.argv[1] if len(sys.argv) == 2 else None)
    print(f"host: {cfg.host}")
    print(f"model: {cfg.model}")
    print(f"shell: {' '.join(cfg.shell_command)}")

    client = OllamaClient(cfg.host, timeout=cfg.timeout_seconds, max_retries=cfg.max_retries)

    try:
        models = client.list_models()
    except OllamaShellError as e:
        print("❌ Failed to list models")
        print(e)
        return 2
    print(f"models: {', '.join(models) or '(none)'}")
    if not models:
        return 2

    model = cfg.model if cfg.model in models else models[0]
    print(f"Sending test request to {model}...")

    try:
        reply = client.chat(model, [
            Message(Role.SYSTEM, "You are a test endpoint. Answer in one short sentence."),
            Message(Role.USER, "Say which model you are."),
        ])
    except OllamaShellError as e:
        print("❌ Chat request failed")
        print(e)
        return 2

    parsed = parse_reply(reply.content)
    print("\n✅ API TEST SUCCESS")
    if parsed.thought is not None:
        print(f"thought: {parsed.thought.strip()}")
    print(f"answer: {parsed.visible_answer.strip()}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
