"""
Configuration Management for Recall

Loads configuration from ~/.recall/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field

logger = logging.getLogger("recall.config")

# Default config paths
CONFIG_DIR = Path.home() / ".recall"
CONFIG_PATH = CONFIG_DIR / "config.json"


@dataclass
class EmbeddingConfig:
    """Embedding model configuration"""
    mode: str = "femb"  # fastembed (on-device)
    model: str = "sentence-transformers/all-MiniLM-L6-v2"


@dataclass
class RetrievalConfig:
    """Retrieval, ranking and packing defaults"""
    default_limit: int = 15
    max_limit: int = 50
    max_results: int = 10
    context_window: int = 4000
    confidence_threshold: float = 0.7
    keyword_boost: float = 0.2
    embedding_timeout: float = 2.0
    # Ranking weights
    person_intent_boost: float = 0.2
    communication_intent_boost: float = 0.15
    crm_intent_boost: float = 0.15
    person_entity_boost: float = 0.1
    email_entity_boost: float = 0.15
    recency_week_bonus: float = 0.1
    recency_month_bonus: float = 0.05
    recency_quarter_bonus: float = 0.02
    message_source_bonus: float = 0.05
    crm_source_bonus: float = 0.03
    calendar_source_bonus: float = 0.02
    include_source_bonus: bool = False


@dataclass
class ServerConfig:
    """Tool server configuration"""
    name: str = "recall"
    default_owner: str = ""


@dataclass
class RecallConfig:
    """Main Recall configuration"""
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def _parse_embedding_config(data: dict) -> EmbeddingConfig:
    """Parse embedding section from config dict"""
    embedding_data = data.get("embedding", {})
    return EmbeddingConfig(
        mode=embedding_data.get("mode", "femb"),
        model=embedding_data.get("model", "sentence-transformers/all-MiniLM-L6-v2"),
    )


def _parse_retrieval_config(data: dict) -> RetrievalConfig:
    """Parse retrieval section from config dict.

    Unknown keys are ignored so older files keep loading after fields are
    renamed or removed.
    """
    retrieval_data = data.get("retrieval", {})
    defaults = RetrievalConfig()
    values = {}
    for name, default in vars(defaults).items():
        if name in retrieval_data:
            values[name] = type(default)(retrieval_data[name])
    return RetrievalConfig(**values)


def _parse_server_config(data: dict) -> ServerConfig:
    """Parse server section from config dict"""
    server_data = data.get("server", {})
    return ServerConfig(
        name=server_data.get("name", "recall"),
        default_owner=server_data.get("default_owner", ""),
    )


def load_config() -> RecallConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.recall/config.json)
    3. Default values
    """
    config = RecallConfig()

    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.embedding = _parse_embedding_config(data)
            config.retrieval = _parse_retrieval_config(data)
            config.server = _parse_server_config(data)
        except (json.JSONDecodeError, IOError, TypeError, ValueError) as e:
            logger.warning("Failed to load config file: %s", e)

    # Environment variable overrides
    if os.getenv("RECALL_EMBEDDING_MODE"):
        config.embedding.mode = os.getenv("RECALL_EMBEDDING_MODE")
    if os.getenv("RECALL_EMBEDDING_MODEL"):
        config.embedding.model = os.getenv("RECALL_EMBEDDING_MODEL")

    if os.getenv("RECALL_EMBEDDING_TIMEOUT"):
        config.retrieval.embedding_timeout = float(os.getenv("RECALL_EMBEDDING_TIMEOUT"))
    if os.getenv("RECALL_CONTEXT_WINDOW"):
        config.retrieval.context_window = int(os.getenv("RECALL_CONTEXT_WINDOW"))
    if os.getenv("RECALL_CONFIDENCE_THRESHOLD"):
        config.retrieval.confidence_threshold = float(os.getenv("RECALL_CONFIDENCE_THRESHOLD"))
    if os.getenv("RECALL_DEFAULT_LIMIT"):
        config.retrieval.default_limit = int(os.getenv("RECALL_DEFAULT_LIMIT"))

    if os.getenv("RECALL_SERVER_NAME"):
        config.server.name = os.getenv("RECALL_SERVER_NAME")

    return config


def save_config(config: RecallConfig) -> None:
    """Save configuration to file."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    data = {
        "embedding": {
            "mode": config.embedding.mode,
            "model": config.embedding.model,
        },
        "retrieval": dict(vars(config.retrieval)),
        "server": {
            "name": config.server.name,
            "default_owner": config.server.default_owner,
        },
    }

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)
