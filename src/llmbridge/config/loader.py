# src/llmbridge/config/loader.py
"""
Layered configuration loading for LLMBridge, built on pydantic-settings.

Sources, highest precedence first:
    1. Explicit overrides dictionary (init arguments)
    2. Environment variables with the `LLMBRIDGE_` prefix; nested keys use "__"
       (LLMBRIDGE_RETRY__MAX_RETRIES=4 -> {"retry": {"max_retries": "4"}})
    3. User TOML file (explicit path, else ~/.config/llmbridge/config.toml if present)
    4. Packaged `default_config.toml`

Tables from different sources are merged key by key. Conventional vendor
variables such as OPENAI_API_KEY fill in API keys that no source has set.
"""

import logging
from pathlib import Path
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple, Type, Union

from pydantic import AliasChoices, Field, ValidationError
from pydantic_settings import (BaseSettings, PydanticBaseSettingsSource,
                               SettingsConfigDict, TomlConfigSettingsSource)

from ..exceptions import ConfigError
from ..models import Provider
from .models import VENDOR_KEY_ENV_VARS, ServiceConfig

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore[no-redef]

logger = logging.getLogger(__name__)

DEFAULT_ENV_PREFIX = "LLMBRIDGE"
DEFAULT_USER_CONFIG_PATH = Path("~/.config/llmbridge/config.toml")
PACKAGED_CONFIG_PATH = Path(__file__).with_name("default_config.toml")


def _vendor_key(provider: Provider) -> Any:
    return Field(None, validation_alias=AliasChoices(VENDOR_KEY_ENV_VARS[provider]), exclude=True)


class LLMBridgeSettings(BaseSettings, ServiceConfig):
    """
    `ServiceConfig` fields plus the `[logging]` table and the vendor API key
    variables, populated from the configuration sources listed above.
    """
    model_config = SettingsConfigDict(
        env_prefix=f"{DEFAULT_ENV_PREFIX}_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        toml_file=DEFAULT_USER_CONFIG_PATH,
    )

    # When False the environment is not read at all, vendor variables included.
    read_environment: ClassVar[bool] = True

    logging: Dict[str, Any] = Field(default_factory=dict, description="Settings for configure_logging().")

    openai_api_key: Optional[str] = _vendor_key(Provider.OPENAI)
    anthropic_api_key: Optional[str] = _vendor_key(Provider.ANTHROPIC)
    deepseek_api_key: Optional[str] = _vendor_key(Provider.DEEPSEEK)
    gemini_api_key: Optional[str] = _vendor_key(Provider.GEMINI)
    qwen_api_key: Optional[str] = _vendor_key(Provider.QWEN)
    groq_api_key: Optional[str] = _vendor_key(Provider.GROQ)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # Separate TOML sources so the user file is deep-merged over the packaged one.
        user_file = TomlConfigSettingsSource(settings_cls)
        packaged_file = TomlConfigSettingsSource(settings_cls, toml_file=PACKAGED_CONFIG_PATH)
        if cls.read_environment:
            return init_settings, env_settings, user_file, packaged_file
        return init_settings, user_file, packaged_file

    def to_service_config(self) -> ServiceConfig:
        """
        Returns the runtime `ServiceConfig`, with vendor API keys applied to
        providers that have no key of their own.
        """
        data = self.model_dump(include=set(ServiceConfig.model_fields))
        providers = data["providers"]
        for provider, var_name in VENDOR_KEY_ENV_VARS.items():
            key = getattr(self, f"{provider.value}_api_key")
            if not key or providers[provider].get("api_key"):
                continue
            providers[provider]["api_key"] = key
            logger.debug(f"Using API key for '{provider.value}' from {var_name}.")
        try:
            return ServiceConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid LLMBridge configuration: {e}")


def settings_class(
    config_file_path: Optional[Union[str, Path]] = None,
    env_prefix: Optional[str] = DEFAULT_ENV_PREFIX,
) -> Type[LLMBridgeSettings]:
    """
    Returns `LLMBridgeSettings`, or a subclass reading `config_file_path`
    instead of the default user file and `env_prefix` instead of LLMBRIDGE.
    A falsy `env_prefix` disables the environment source.

    Raises:
        ConfigError: `config_file_path` does not exist.
    """
    if config_file_path is None and env_prefix == DEFAULT_ENV_PREFIX:
        return LLMBridgeSettings

    toml_file = DEFAULT_USER_CONFIG_PATH
    if config_file_path is not None:
        toml_file = Path(config_file_path).expanduser()
        if not toml_file.is_file():
            raise ConfigError(f"Config file not found: {toml_file}")

    class _Settings(LLMBridgeSettings):
        model_config = SettingsConfigDict(
            env_prefix=f"{(env_prefix or DEFAULT_ENV_PREFIX).upper()}_",
            toml_file=toml_file,
        )
        read_environment: ClassVar[bool] = bool(env_prefix)

    return _Settings


def load_settings(
    config_file_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    env_prefix: Optional[str] = DEFAULT_ENV_PREFIX,
) -> LLMBridgeSettings:
    """
    Loads every configuration source.

    Args:
        config_file_path: Explicit user TOML file. Raises ConfigError if it does not exist.
        overrides: Highest precedence values; tables merge with the other sources.
        env_prefix: Prefix of environment variables to read; None disables the environment.

    Raises:
        ConfigError: The file is missing or not valid TOML, or a value is invalid.
    """
    cls = settings_class(config_file_path, env_prefix)
    try:
        settings = cls(**dict(overrides or {}))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in config file '{cls.model_config.get('toml_file')}': {e}")
    except ValidationError as e:
        raise ConfigError(f"Invalid LLMBridge configuration: {e}")
    logger.debug(f"Loaded configuration (user file: {cls.model_config.get('toml_file')}).")
    return settings


def load_service_config(
    config_file_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    env_prefix: Optional[str] = DEFAULT_ENV_PREFIX,
) -> ServiceConfig:
    """Loads and validates the layered configuration. See `load_settings()`."""
    return load_settings(config_file_path, overrides, env_prefix).to_service_config()


def load_default_config() -> Dict[str, Any]:
    """Reads the packaged default configuration."""
    with PACKAGED_CONFIG_PATH.open("rb") as f:
        return tomllib.load(f)
