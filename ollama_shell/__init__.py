"""
ollama-shell: a terminal agent that lets a local Ollama model propose shell
commands and runs them after you confirm.
"""

__version__ = "0.3.0"
