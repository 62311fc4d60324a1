"""Application settings loaded from environment variables or .env."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_env_files() -> list[Path]:
    """Find .env files to load, searching upward from CWD and in the package dir.

    Checks (in priority order, last wins in pydantic-settings):
    1. The directory above the qualmatrix package
    2. The current working directory, or the nearest parent holding a .env
    """
    candidates: list[Path] = []

    pkg_env = Path(__file__).resolve().parent.parent / ".env"
    if pkg_env.is_file():
        candidates.append(pkg_env)

    cwd = Path.cwd().resolve()
    for parent in [cwd, *cwd.parents]:
        env_path = parent / ".env"
        if env_path.is_file() and env_path not in candidates:
            candidates.append(env_path)
            break  # stop at first match going upward

    return candidates


class QualmatrixSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="QUALMATRIX_",
        env_file=_find_env_files(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # LLM
    llm_provider: str = "azure"  # "azure", "openai", "anthropic", or "local"
    llm_model: str = "gpt-4o"
    llm_max_tokens: int = 16000
    llm_temperature: float = 0.3
    openai_api_key: str = ""
    anthropic_api_key: str = ""

    # Azure OpenAI
    azure_api_key: str = ""
    azure_endpoint: str = ""  # e.g. https://my-resource.openai.azure.com/
    azure_deployment: str = "gpt-4"
    azure_api_version: str = "2024-02-15-preview"

    # Local LLM (Ollama)
    local_url: str = "http://localhost:11434/v1"
    local_model: str = "llama3.1:8b"

    # Input checks
    min_transcript_chars: int = 100
    speaker_scan_lines: int = 300

    # Quality
    strict_quality: bool = False
    verify_quotes: bool = True

    # Persistence
    db_url: str = ""  # empty → ~/.config/qualmatrix/qualmatrix.db
    output_dir: Path = Path("output")


def load_settings(**overrides: object) -> QualmatrixSettings:
    """Load settings with optional CLI overrides.

    Normalises LLM provider aliases (claude → anthropic, chatgpt/gpt → openai,
    ollama → local). ``None`` overrides are dropped so unset CLI options fall
    through to the environment.
    """
    from qualmatrix.providers import get_provider_aliases

    overrides = {k: v for k, v in overrides.items() if v is not None}

    if "llm_provider" in overrides and isinstance(overrides["llm_provider"], str):
        provider = overrides["llm_provider"].lower()
        aliases = get_provider_aliases()
        overrides["llm_provider"] = aliases.get(provider, provider)

    return QualmatrixSettings(**overrides)  # type: ignore[arg-type]
