import sys
from typing import List, Optional

from . import ui
from .chat_client import OllamaClient
from .config import AppConfig, load_config
from .errors import ChatProtocolError, ChatRequestFailure, EmptyModelList, StartupUnavailable
from .session import AGENT_TOKEN, EXIT_TOKENS, MODEL_TOKEN, SHELL_TOKEN, AgentSession


def fetch_models(client: OllamaClient) -> List[str]:
    try:
        models = client.list_models()
    except (ChatRequestFailure, ChatProtocolError) as e:
        raise StartupUnavailable(
            f"Could not reach Ollama at {client.host} ({e}). Is it running? (ollama serve)"
        ) from e
    if not models:
        raise EmptyModelList("No Ollama models are installed. Pull one first (ollama pull <model>).")
    return models


def pick_model(cfg: AppConfig, models: List[str]) -> str:
    if cfg.model:
        if cfg.model in models:
            return cfg.model
        print(f"Configured model '{cfg.model}' is not installed.")
    return models[ui.choose("Select an Ollama model:", models)]


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) > 1 or (argv and argv[0] in ("-h", "--help")):
        print("Usage: ollama-shell [path/to/config.yml]")
        return 2

    cfg = load_config(argv[0] if argv else None)
    client = OllamaClient(cfg.host, timeout=cfg.timeout_seconds, max_retries=cfg.max_retries)

    print(f"Shell detected: {cfg.shell_name}")
    print("Fetching models...")
    try:
        models = fetch_models(client)
    except (StartupUnavailable, EmptyModelList) as e:
        ui.error(str(e))
        ui.wait_for_enter()
        return 1

    try:
        model = pick_model(cfg, models)
    except (EOFError, KeyboardInterrupt):
        print("\nBye!")
        return 0

    initial_prompt = ui.probe_selection(cfg.selection_command)

    ui.setup_line_editing([SHELL_TOKEN, AGENT_TOKEN, MODEL_TOKEN, *EXIT_TOKENS])
    session = AgentSession(cfg, client, model)
    print(f"\n=== {model} (Agent Mode) started (type 'exit' to quit, '{SHELL_TOKEN}' for Shell Mode) ===")
    try:
        session.run(initial_prompt)
    except (EOFError, KeyboardInterrupt):
        print("\nBye!")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
