#!/usr/bin/env python3
"""Main entry point for Sentiment Hub."""

import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent / ".env"
if env_path.exists():
    load_dotenv(env_path)
else:
    load_dotenv()  # Try loading from current directory


def check_env_vars():
    """Warn when no provider API key is set."""
    if not (os.getenv("GOOGLE_API_KEY") or os.getenv("OPENAI_API_KEY")):
        print("⚠️  Warning: neither GOOGLE_API_KEY nor OPENAI_API_KEY is set")
        print("Please set them in your .env file or environment")
        print(f"Current .env path: {env_path}")
        return False
    return True


if __name__ == "__main__":
    check_env_vars()
    from sentiment_hub.cli import cli
    cli()
