"""LLM providers the analysis can run against.

Each entry names the settings a provider needs before the client will
build, the setting that holds its model or deployment name, and the
aliases accepted on the command line and in ``QUALMATRIX_LLM_PROVIDER``.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ConfigField:
    """One setting a provider reads, and the env var that sets it."""

    name: str
    env_var: str
    setting: str
    required: bool = True


@dataclass(frozen=True)
class ProviderSpec:
    name: str
    display_name: str
    aliases: list[str] = field(default_factory=list)
    config_fields: list[ConfigField] = field(default_factory=list)
    model_setting: str = "llm_model"
    sdk_module: str = "openai"


PROVIDERS: dict[str, ProviderSpec] = {
    "azure": ProviderSpec(
        name="azure",
        display_name="Azure OpenAI",
        aliases=["azure-openai", "aoai"],
        config_fields=[
            ConfigField("api_key", "QUALMATRIX_AZURE_API_KEY", "azure_api_key"),
            ConfigField("endpoint", "QUALMATRIX_AZURE_ENDPOINT", "azure_endpoint"),
            ConfigField("deployment", "QUALMATRIX_AZURE_DEPLOYMENT", "azure_deployment"),
        ],
        model_setting="azure_deployment",
    ),
    "openai": ProviderSpec(
        name="openai",
        display_name="ChatGPT",
        aliases=["chatgpt", "gpt"],
        config_fields=[
            ConfigField("api_key", "QUALMATRIX_OPENAI_API_KEY", "openai_api_key"),
        ],
    ),
    "anthropic": ProviderSpec(
        name="anthropic",
        display_name="Claude",
        aliases=["claude"],
        config_fields=[
            ConfigField("api_key", "QUALMATRIX_ANTHROPIC_API_KEY", "anthropic_api_key"),
        ],
        sdk_module="anthropic",
    ),
    "local": ProviderSpec(
        name="local",
        display_name="Local (Ollama)",
        aliases=["ollama"],
        config_fields=[
            ConfigField("url", "QUALMATRIX_LOCAL_URL", "local_url", required=False),
            ConfigField("model", "QUALMATRIX_LOCAL_MODEL", "local_model", required=False),
        ],
        model_setting="local_model",
    ),
}


def get_provider_aliases() -> dict[str, str]:
    """Map every alias to its canonical provider name."""
    aliases: dict[str, str] = {}
    for provider_name, spec in PROVIDERS.items():
        for alias in spec.aliases:
            aliases[alias] = provider_name
    return aliases


def missing_config(provider: str, settings: object) -> list[str]:
    """Return the env vars of required fields that are empty for *provider*."""
    spec = PROVIDERS.get(provider)
    if spec is None:
        return []
    return [
        f.env_var
        for f in spec.config_fields
        if f.required and not getattr(settings, f.setting, "")
    ]
