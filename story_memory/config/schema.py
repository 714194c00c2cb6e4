from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    data_dir: Path = Field(default=Path("./data"))
    output_dir: Path = Field(default=Path("./output"))
    log_level: str = Field(default="INFO")


class LLMProviderConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["openai_compatible", "ollama"] = "openai_compatible"
    base_url: str | None = None
    api_key_env: str | None = None


class ChatEndpointConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    provider: str
    model: str
    temperature: float = 0.7
    timeout_s: int = 60
    max_concurrency: int = 4
    retries: int = 2
    max_tokens: int | None = None

    @field_validator("temperature")
    @classmethod
    def _temperature_range(cls, value: float) -> float:
        if not 0 <= value <= 2:
            raise ValueError("temperature must be between 0 and 2")
        return value

    @field_validator("timeout_s", "max_concurrency", "retries")
    @classmethod
    def _non_negative_int(cls, value: int) -> int:
        if value < 0:
            raise ValueError("endpoint integer settings must be non-negative")
        return value

    @field_validator("max_tokens")
    @classmethod
    def _positive_optional_max_tokens(cls, value: int | None) -> int | None:
        if value is not None and value <= 0:
            raise ValueError("max_tokens must be positive when provided")
        return value


class EmbeddingEndpointConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    provider: str
    model: str
    dimension: int = 1536
    timeout_s: int = 60
    max_concurrency: int = 6
    retries: int = 3

    @field_validator("timeout_s", "max_concurrency", "retries")
    @classmethod
    def _non_negative_int(cls, value: int) -> int:
        if value < 0:
            raise ValueError("endpoint integer settings must be non-negative")
        return value

    @field_validator("dimension")
    @classmethod
    def _positive_dimension(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("embedding dimension must be positive")
        return value


class LLMRoutesConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    storyteller_chat: str | None = "storyteller_default"
    embedding: str = "embedding_default"


class LLMConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    providers: dict[str, LLMProviderConfig]
    chat_endpoints: dict[str, ChatEndpointConfig] = Field(default_factory=dict)
    embedding_endpoints: dict[str, EmbeddingEndpointConfig]
    routes: LLMRoutesConfig = LLMRoutesConfig()

    @model_validator(mode="after")
    def _validate_references(self) -> "LLMConfig":
        if not self.providers:
            raise ValueError("llm.providers cannot be empty")
        if not self.embedding_endpoints:
            raise ValueError("llm.embedding_endpoints cannot be empty")

        for endpoint_name, endpoint in self.chat_endpoints.items():
            if endpoint.provider not in self.providers:
                raise ValueError(
                    f"chat endpoint '{endpoint_name}' references unknown provider '{endpoint.provider}'"
                )

        for endpoint_name, endpoint in self.embedding_endpoints.items():
            if endpoint.provider not in self.providers:
                raise ValueError(
                    f"embedding endpoint '{endpoint_name}' references unknown provider '{endpoint.provider}'"
                )

        if self.routes.storyteller_chat and self.routes.storyteller_chat not in self.chat_endpoints:
            raise ValueError(f"llm.routes.storyteller_chat not found: {self.routes.storyteller_chat}")
        if self.routes.embedding not in self.embedding_endpoints:
            raise ValueError(f"llm.routes.embedding not found: {self.routes.embedding}")

        return self

    def resolve_chat_route(self) -> tuple[str, ChatEndpointConfig, LLMProviderConfig] | None:
        endpoint_name = self.routes.storyteller_chat
        if not endpoint_name:
            return None
        endpoint = self.chat_endpoints[endpoint_name]
        provider = self.providers[endpoint.provider]
        return endpoint_name, endpoint, provider

    def resolve_embedding_route(self) -> tuple[str, EmbeddingEndpointConfig, LLMProviderConfig]:
        endpoint_name = self.routes.embedding
        endpoint = self.embedding_endpoints[endpoint_name]
        provider = self.providers[endpoint.provider]
        return endpoint_name, endpoint, provider


class VectorStoreConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["lancedb"] = "lancedb"
    uri: Path = Field(default=Path("./data/lancedb"))
    table_name: str = "story_memory"
    namespace: str | None = None
    timeout_s: float = 30.0
    max_concurrency: int = 8

    @field_validator("timeout_s")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("vector_store.timeout_s must be positive")
        return value

    @field_validator("max_concurrency")
    @classmethod
    def _positive_concurrency(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("vector_store.max_concurrency must be positive")
        return value

    @field_validator("table_name")
    @classmethod
    def _table_name_charset(cls, value: str) -> str:
        if not value or not value.replace("_", "").replace("-", "").isalnum():
            raise ValueError("vector_store.table_name must be alphanumeric (with - or _)")
        return value


class MemoryConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    serialize_writes: bool = True
    relevant_interactions_top_k: int = 10
    similar_memories_limit: int = 5
    user_search_limit: int = 10
    similar_profiles_limit: int = 5
    recurring_min_interactions: int = 3
    recurring_scan_top_k: int = 100
    unused_ideas_limit: int = 10
    default_setting: str = "modern city"
    default_theme: str = "adventure"

    @field_validator(
        "relevant_interactions_top_k",
        "similar_memories_limit",
        "user_search_limit",
        "similar_profiles_limit",
        "recurring_scan_top_k",
        "unused_ideas_limit",
    )
    @classmethod
    def _positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("memory limits must be positive")
        return value

    @field_validator("recurring_min_interactions")
    @classmethod
    def _non_negative_threshold(cls, value: int) -> int:
        if value < 0:
            raise ValueError("recurring_min_interactions must be non-negative")
        return value


class PlatformFormat(BaseModel):
    """Length budget of one publishing surface."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: str
    max_length: int
    chapter_length: int
    num_chapters: int = 3

    @field_validator("max_length", "chapter_length", "num_chapters")
    @classmethod
    def _positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("story format values must be positive")
        return value

    @model_validator(mode="after")
    def _chapter_fits_story(self) -> "PlatformFormat":
        if self.chapter_length > self.max_length:
            raise ValueError("chapter_length must not exceed max_length")
        return self


def default_story_formats() -> dict[str, PlatformFormat]:
    return {
        "arena_long": PlatformFormat(type="arena_thread", max_length=50_000, chapter_length=5_000, num_chapters=5),
        "tweet_series": PlatformFormat(type="tweet_thread", max_length=8_000, chapter_length=280, num_chapters=20),
        "discord_epic": PlatformFormat(type="discord_story", max_length=20_000, chapter_length=2_000, num_chapters=10),
    }


class StorytellerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    language: str = "en"
    style: Literal["epic", "casual", "noir", "cyberpunk", "defi_drama"] = "epic"
    default_format: str = "arena_long"
    temperature: float = 0.7
    include_hashtags: bool = True
    include_mentions: bool = True
    genre_elements: list[str] = Field(default_factory=lambda: ["adventure", "drama", "mystery"])
    adjust_length: bool = True
    store_segments: bool = False

    @field_validator("temperature")
    @classmethod
    def _temperature_range(cls, value: float) -> float:
        if not 0 <= value <= 2:
            raise ValueError("temperature must be between 0 and 2")
        return value


class CacheConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    backend: str = "sqlite"
    ttl_seconds: int = 2_592_000


class ObservabilityConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    log_json_error_payload: bool = True
    json_error_payload_max_chars: int = 0
    log_retry_attempts: bool = True

    @field_validator("json_error_payload_max_chars")
    @classmethod
    def _non_negative_chars(cls, value: int) -> int:
        if value < 0:
            raise ValueError("json_error_payload_max_chars must be non-negative")
        return value


def default_llm_config() -> LLMConfig:
    return LLMConfig.model_validate(
        {
            "providers": {
                "default": {
                    "kind": "openai_compatible",
                    "base_url": None,
                    "api_key_env": "OPENAI_API_KEY",
                }
            },
            "chat_endpoints": {
                "storyteller_default": {
                    "provider": "default",
                    "model": "gpt-4.1-mini",
                    "temperature": 0.7,
                    "timeout_s": 60,
                    "max_concurrency": 4,
                    "retries": 2,
                },
            },
            "embedding_endpoints": {
                "embedding_default": {
                    "provider": "default",
                    "model": "text-embedding-ada-002",
                    "dimension": 1536,
                    "timeout_s": 60,
                    "max_concurrency": 6,
                    "retries": 3,
                }
            },
            "routes": {
                "storyteller_chat": "storyteller_default",
                "embedding": "embedding_default",
            },
        }
    )


class AppConfigRoot(BaseModel):
    model_config = ConfigDict(extra="forbid")

    app: AppConfig = AppConfig()
    llm: LLMConfig = Field(default_factory=default_llm_config)
    vector_store: VectorStoreConfig = VectorStoreConfig()
    memory: MemoryConfig = MemoryConfig()
    storyteller: StorytellerConfig = StorytellerConfig()
    story_formats: dict[str, PlatformFormat] = Field(default_factory=default_story_formats)
    cache: CacheConfig = CacheConfig()
    observability: ObservabilityConfig = ObservabilityConfig()

    @model_validator(mode="before")
    @classmethod
    def _merge_story_formats(cls, data: object) -> object:
        if not isinstance(data, dict):
            return data

        payload = dict(data)
        # Configured formats extend or override the presets instead of replacing the table.
        overrides = payload.get("story_formats")
        if isinstance(overrides, dict):
            merged: dict[str, object] = {
                name: fmt.model_dump() for name, fmt in default_story_formats().items()
            }
            for name, value in overrides.items():
                base = merged.get(name)
                if isinstance(value, dict) and isinstance(base, dict):
                    merged[name] = {**base, **value}
                else:
                    merged[name] = value
            payload["story_formats"] = merged
        return payload

    @model_validator(mode="after")
    def _validate_default_format(self) -> "AppConfigRoot":
        if self.storyteller.default_format not in self.story_formats:
            raise ValueError(f"storyteller.default_format not found: {self.storyteller.default_format}")
        return self

    def resolve_format(self, name: str | None = None) -> PlatformFormat:
        format_name = name or self.storyteller.default_format
        try:
            return self.story_formats[format_name]
        except KeyError:
            known = ", ".join(sorted(self.story_formats))
            raise ValueError(f"Unknown story format '{format_name}' (known: {known})") from None


def resolve_paths(config: AppConfigRoot, base_dir: Path) -> AppConfigRoot:
    def _resolve(path_value: Path) -> Path:
        return path_value if path_value.is_absolute() else (base_dir / path_value).resolve()

    config.app.data_dir = _resolve(config.app.data_dir)
    config.app.output_dir = _resolve(config.app.output_dir)
    config.vector_store.uri = _resolve(config.vector_store.uri)
    return config
