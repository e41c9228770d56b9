"""contextkb configuration.

Layers, later wins:
  defaults  →  ~/.contextkb/config.yaml  →  ./contextkb.yaml  →  CONTEXTKB_* env vars

CLI flags are applied by the commands themselves. The global file holds
shared defaults only; a key that looks like a credential makes it invalid.
YAML is parsed with yaml.safe_load().
"""

from __future__ import annotations

import dataclasses
import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

_GLOBAL_CONFIG_PATH: Path = Path.home() / ".contextkb" / "config.yaml"
_PROJECT_CONFIG_NAME: str = "contextkb.yaml"

# Matches api_key, api-secret, apikey, *_token, token, *_secret, secret,
# password, passwd, credential(s). Leaves token_limit and friends alone.
_SECRET_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)|_token$|^token$|_secret$|^secret$|passw(?:ord|d)|credential",
    re.IGNORECASE,
)

_LOG_LEVELS: frozenset[str] = frozenset(
    ["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]
)

_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "CONTEXTKB_EMBEDDING_MODEL": ("embedding", "model"),
    "CONTEXTKB_LOG_LEVEL": ("logging", "level"),
    "CONTEXTKB_DB": ("database", "path"),
}

_GLOBAL_TEMPLATE = """\
# contextkb global defaults, shared by every project.
# Provider keys go in the environment, e.g.  export OPENAI_API_KEY=sk-...

embedding:
  model: openai/text-embedding-3-small

context:
  token_limit: 50000
"""


class ConfigError(ValueError):
    """A config file is unreadable as configuration or holds a bad value."""


@dataclass
class DatabaseCfg:
    """database: section."""

    path: str = ".contextkb.db"


@dataclass
class EmbeddingCfg:
    """embedding: section.

    Attributes:
        model: LiteLLM embedding model string (provider/model format).
        max_input_chars: Text longer than this is truncated before embedding.
        timeout_ms: Timeout for query embeddings made while building context.
    """

    model: str = "openai/text-embedding-3-small"
    max_input_chars: int = 8_000
    timeout_ms: int = 10_000


@dataclass
class IngestionCfg:
    """ingestion: section. Chunk geometry, embedding fan-out, upload batch size."""

    chunk_size: int = 1_000
    overlap: int = 200
    embed_concurrency: int = 5
    batch_chars: int = 2_000
    parent_size: int = 2_000
    child_size: int = 300


@dataclass
class RetrievalCfg:
    """retrieval: section. Result limits and similarity floors."""

    message_limit: int = 15
    source_limit: int = 10
    min_score: float = 0.25
    rag_min_score: float = 0.35
    source_context_limit: int = 15
    source_context_min_score: float = 0.1


@dataclass
class ContextCfg:
    """context: section.

    Attributes:
        token_limit: Estimated-token threshold between full inclusion and
            compression; also the budget for compressed output.
        compression_limit: Number of ranked messages fetched for compression.
        compression_min_score: Similarity floor for the compression pass.
    """

    token_limit: int = 50_000
    compression_limit: int = 100
    compression_min_score: float = 0.1


@dataclass
class LoggingCfg:
    level: str = "WARNING"


@dataclass
class ContextKBConfig:
    database: DatabaseCfg = field(default_factory=DatabaseCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    ingestion: IngestionCfg = field(default_factory=IngestionCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    context: ContextCfg = field(default_factory=ContextCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


_SECTIONS: tuple[str, ...] = tuple(f.name for f in dataclasses.fields(ContextKBConfig))


# ---------------------------------------------------------------------------
# File checks
# ---------------------------------------------------------------------------


def _find_secret_key(data: Any, prefix: str = "") -> str | None:
    """Dotted path of the first credential-like key in *data*, if any."""
    if not isinstance(data, dict):
        return None
    for key, value in data.items():
        dotted = f"{prefix}.{key}" if prefix else str(key)
        if _SECRET_KEY_RE.search(str(key)):
            return dotted
        found = _find_secret_key(value, dotted)
        if found:
            return found
    return None


def _read_layer(path: Path, *, forbid_secrets: bool) -> dict[str, Any]:
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"'{path}' must contain a mapping of sections")

    if forbid_secrets:
        secret = _find_secret_key(data)
        if secret:
            env_name = secret.rsplit(".", 1)[-1].upper().replace("-", "_")
            raise ConfigError(
                f"Global config '{path}' contains a forbidden key '{secret}'.\n"
                f"  Credentials are read from the environment only: delete '{secret}' "
                f"from {path.name} and run  export {env_name}=<value>"
            )

    for key in data:
        if key not in _SECTIONS:
            warnings.warn(
                f"Ignoring unknown config key '{key}' in '{path}'.",
                UserWarning,
                stacklevel=3,
            )
    return data


# ---------------------------------------------------------------------------
# Building
# ---------------------------------------------------------------------------


def _merge_layers(*layers: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Merge section dicts key by key; later layers win."""
    merged: dict[str, dict[str, Any]] = {}
    for layer in layers:
        for section, values in layer.items():
            if section in _SECTIONS and isinstance(values, dict):
                merged.setdefault(section, {}).update(values)
    return merged


def _build_section(cls: type, values: dict[str, Any]) -> Any:
    """Instantiate section dataclass *cls*, coercing each value to its default's type."""
    defaults = cls()
    kwargs = {}
    for f in dataclasses.fields(cls):
        if f.name not in values:
            continue
        caster = type(getattr(defaults, f.name))
        try:
            kwargs[f.name] = caster(values[f.name])
        except (TypeError, ValueError) as exc:
            raise ConfigError(
                f"{f.name}: expected {caster.__name__}, got {values[f.name]!r}"
            ) from exc
    return cls(**kwargs)


def _validate(cfg: ContextKBConfig) -> None:
    ingestion = cfg.ingestion
    if ingestion.chunk_size < 1:
        raise ConfigError("ingestion.chunk_size must be >= 1")
    if not 0 <= ingestion.overlap < ingestion.chunk_size:
        raise ConfigError("ingestion.overlap must be in [0, chunk_size)")
    if ingestion.embed_concurrency < 1:
        raise ConfigError("ingestion.embed_concurrency must be >= 1")
    if cfg.context.token_limit < 1:
        raise ConfigError("context.token_limit must be >= 1")
    if cfg.logging.level.upper() not in _LOG_LEVELS:
        raise ConfigError(
            f"logging.level '{cfg.logging.level}' must be one of {', '.join(sorted(_LOG_LEVELS))}"
        )


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> ContextKBConfig:
    """Return the effective configuration.

    Args:
        project_dir: Where to look for contextkb.yaml. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If the global file holds a credential-like key or a
            value is malformed or out of range.
    """
    global_path = global_config_path or _GLOBAL_CONFIG_PATH
    project_path = (project_dir or Path.cwd()) / _PROJECT_CONFIG_NAME

    env_layer: dict[str, dict[str, Any]] = {}
    for var, (section, key) in _ENV_OVERRIDES.items():
        if value := os.environ.get(var):
            env_layer.setdefault(section, {})[key] = value

    merged = _merge_layers(
        _read_layer(global_path, forbid_secrets=True),
        _read_layer(project_path, forbid_secrets=False),
        env_layer,
    )
    cfg = ContextKBConfig(
        **{
            f.name: _build_section(f.default_factory, merged.get(f.name, {}))
            for f in dataclasses.fields(ContextKBConfig)
        }
    )
    _validate(cfg)
    return cfg


def ensure_global_config(global_config_path: Path | None = None) -> Path:
    """Write the default global config unless one exists. Returns its path.

    The directory is created 0o700 and the file 0o600.
    """
    target = global_config_path or _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    if not target.exists():
        target.write_text(_GLOBAL_TEMPLATE, encoding="utf-8")
        target.chmod(0o600)
    return target
