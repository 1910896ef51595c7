"""Logging and LangSmith monitoring setup."""

import logging
import os
from typing import Optional

from langsmith import Client

from sentiment_hub.config import LoggingConfig

logger = logging.getLogger(__name__)


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """Setup logging configuration."""
    config = config or LoggingConfig()
    logging.basicConfig(
        level=getattr(logging, config.level.upper(), logging.INFO),
        format=config.format,
    )


def setup_langsmith() -> Optional[Client]:
    """Setup LangSmith tracing when an API key is available."""
    api_key = os.getenv("LANGSMITH_API_KEY")
    api_url = os.getenv("LANGSMITH_API_URL", "https://api.smith.langchain.com")

    if api_key:
        os.environ["LANGCHAIN_API_KEY"] = api_key
        os.environ["LANGCHAIN_TRACING_V2"] = "true"
        os.environ["LANGCHAIN_ENDPOINT"] = api_url
        os.environ["LANGCHAIN_PROJECT"] = os.getenv("LANGCHAIN_PROJECT", "sentiment-hub")

        return Client(api_key=api_key, api_url=api_url)
    else:
        logger.info("LANGSMITH_API_KEY not found. Tracing is disabled.")
        return None
