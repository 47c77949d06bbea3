#!/usr/bin/env python3
"""Write models.json from the locally installed ollama CLI.

The chat client reads this file before asking the server, so it works even
when the listing API is unavailable.

Usage examples:
    python scripts/fetch_models.py

    # Write somewhere else
    python scripts/fetch_models.py --output public/models.json

    # Fall back to the server API when the CLI is missing
    python scripts/fetch_models.py --server http://localhost:11434
"""

import argparse
import asyncio
import json
import subprocess
import sys
from pathlib import Path

# Allow running from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from chat_studio.chat.errors import NetworkError
from chat_studio.config import settings
from chat_studio.llm.client import OllamaClient
from chat_studio.llm.models import parse_cli_listing

# Different ollama releases spell the listing command differently
CLI_COMMANDS = (["ollama", "list"], ["ollama", "models"], ["ollama", "ls"])


def list_from_cli() -> list[str]:
    for cmd in CLI_COMMANDS:
        print(f"Trying: {' '.join(cmd)}... ", end="")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=True)
        except (OSError, subprocess.CalledProcessError):
            print("failed")
            continue

        models = parse_cli_listing(result.stdout)
        if not models:
            print("no models parsed")
            continue
        print(f"found {len(models)}")
        return models
    return []


def main() -> None:
    parser = argparse.ArgumentParser(description="Write models.json from ollama.")
    parser.add_argument("--output", type=Path, default=settings.models_file)
    parser.add_argument("--server", help="query this server if the CLI fails")
    args = parser.parse_args()

    models = list_from_cli()
    if not models and args.server:
        try:
            models = asyncio.run(OllamaClient(args.server).list_models())
        except NetworkError as exc:
            print(f"Server listing failed: {exc}", file=sys.stderr)

    if not models:
        print("Failed to list models. Ensure `ollama` is installed and on PATH.", file=sys.stderr)
        sys.exit(2)

    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_text(json.dumps(models, indent=2), encoding="utf-8")
    print(f"Wrote {len(models)} models to {args.output}")


if __name__ == "__main__":
    main()
