from __future__ import annotations

from pathlib import Path
import textwrap

import pytest
from pydantic import ValidationError

from story_memory.config.loader import load_config, masked_env_snapshot
from story_memory.config.schema import (
    AppConfigRoot,
    ChatEndpointConfig,
    LLMConfig,
    MemoryConfig,
    PlatformFormat,
    resolve_paths,
)


def test_resolve_paths_makes_absolute(tmp_path: Path) -> None:
    config = AppConfigRoot()
    config.app.data_dir = Path("data")
    config.app.output_dir = Path("output")
    config.vector_store.uri = Path("data/lancedb")

    resolved = resolve_paths(config, tmp_path)

    assert resolved.app.data_dir == (tmp_path / "data").resolve()
    assert resolved.app.output_dir == (tmp_path / "output").resolve()
    assert resolved.vector_store.uri == (tmp_path / "data/lancedb").resolve()


def test_chat_endpoint_validates_temperature() -> None:
    with pytest.raises(ValidationError):
        ChatEndpointConfig(provider="p", model="m", temperature=2.5)


def test_llm_config_validates_endpoint_provider_reference() -> None:
    with pytest.raises(ValidationError):
        LLMConfig.model_validate(
            {
                "providers": {
                    "p1": {"kind": "openai_compatible", "base_url": "https://x", "api_key_env": "KEY"},
                },
                "chat_endpoints": {
                    "storyteller_default": {"provider": "missing_provider", "model": "m"},
                },
                "embedding_endpoints": {
                    "embedding_default": {"provider": "p1", "model": "e"},
                },
            }
        )


def test_llm_config_allows_missing_chat_route() -> None:
    config = LLMConfig.model_validate(
        {
            "providers": {"p1": {"kind": "ollama", "base_url": "http://localhost:11434"}},
            "embedding_endpoints": {"embedding_default": {"provider": "p1", "model": "e", "dimension": 768}},
            "routes": {"storyteller_chat": None, "embedding": "embedding_default"},
        }
    )

    assert config.resolve_chat_route() is None
    endpoint_name, endpoint, provider = config.resolve_embedding_route()
    assert endpoint_name == "embedding_default"
    assert endpoint.dimension == 768
    assert provider.kind == "ollama"


def test_memory_config_rejects_non_positive_limits() -> None:
    with pytest.raises(ValidationError):
        MemoryConfig(relevant_interactions_top_k=0)

    with pytest.raises(ValidationError):
        MemoryConfig(recurring_min_interactions=-1)


def test_platform_format_chapter_must_fit_story() -> None:
    with pytest.raises(ValidationError):
        PlatformFormat(type="t", max_length=100, chapter_length=200)


def test_default_story_formats_are_available() -> None:
    config = AppConfigRoot()

    assert set(config.story_formats) == {"arena_long", "tweet_series", "discord_epic"}
    assert config.resolve_format().type == "arena_thread"
    assert config.resolve_format("tweet_series").chapter_length == 280


def test_story_format_overrides_merge_with_presets() -> None:
    config = AppConfigRoot.model_validate(
        {
            "story_formats": {
                "tweet_series": {"max_length": 4_000},
                "mini": {"type": "mini_thread", "max_length": 500, "chapter_length": 100, "num_chapters": 2},
            }
        }
    )

    assert config.story_formats["tweet_series"].max_length == 4_000
    assert config.story_formats["tweet_series"].chapter_length == 280
    assert config.story_formats["mini"].num_chapters == 2
    assert "arena_long" in config.story_formats


def test_unknown_story_format_is_rejected() -> None:
    with pytest.raises(ValidationError):
        AppConfigRoot.model_validate({"storyteller": {"default_format": "missing"}})

    with pytest.raises(ValueError, match="Unknown story format"):
        AppConfigRoot().resolve_format("missing")


def test_observability_config_defaults_and_validation() -> None:
    config = AppConfigRoot()
    assert config.observability.log_json_error_payload is True
    assert config.observability.json_error_payload_max_chars == 0
    assert config.observability.log_retry_attempts is True

    with pytest.raises(ValidationError):
        AppConfigRoot.model_validate({"observability": {"json_error_payload_max_chars": -1}})


def test_load_config_merge_order(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    configs_dir = tmp_path / "configs"
    profiles_dir = configs_dir / "profiles"
    profiles_dir.mkdir(parents=True)

    (configs_dir / "default.yaml").write_text(
        textwrap.dedent(
            """
            app:
              data_dir: "./data-default"
              output_dir: "./out-default"
            llm:
              providers:
                openai:
                  kind: "openai_compatible"
                  base_url: "https://default-llm.example/v1"
                  api_key_env: "OPENAI_API_KEY"
              chat_endpoints:
                storyteller_default:
                  provider: "openai"
                  model: "gpt-story"
                  temperature: 0.4
              embedding_endpoints:
                embedding_default:
                  provider: "openai"
                  model: "embed-default"
                  dimension: 1536
              routes:
                storyteller_chat: "storyteller_default"
                embedding: "embedding_default"
            memory:
              relevant_interactions_top_k: 7
            """
        ).strip(),
        encoding="utf-8",
    )

    (profiles_dir / "fast.yaml").write_text(
        textwrap.dedent(
            """
            app:
              output_dir: "./out-profile"
            llm:
              chat_endpoints:
                storyteller_default:
                  model: "gpt-profile"
            memory:
              relevant_interactions_top_k: 8
            """
        ).strip(),
        encoding="utf-8",
    )

    (configs_dir / "custom.yaml").write_text(
        textwrap.dedent(
            """
            app:
              output_dir: "./out-custom"
            vector_store:
              namespace: "custom"
            """
        ).strip(),
        encoding="utf-8",
    )

    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("STORY_MEMORY_DATA_DIR", str(tmp_path / "env-data"))
    monkeypatch.setenv("STORY_MEMORY_VECTOR_STORE_URI", str(tmp_path / "env-store"))
    monkeypatch.setenv("STORY_MEMORY_LLM_PROVIDER_OPENAI_BASE_URL", "https://env-llm.example/v1")

    config = load_config(
        config_path=configs_dir / "custom.yaml",
        profile="fast",
        overrides={"app": {"output_dir": "./out-override"}},
    )

    assert config.app.data_dir == (tmp_path / "env-data").resolve()
    assert config.app.output_dir == (tmp_path / "out-override").resolve()
    assert config.vector_store.uri == (tmp_path / "env-store").resolve()
    assert config.vector_store.namespace == "custom"
    assert config.memory.relevant_interactions_top_k == 8
    assert config.llm.chat_endpoints["storyteller_default"].model == "gpt-profile"
    assert config.llm.providers["openai"].base_url == "https://env-llm.example/v1"


def test_masked_env_snapshot_hides_api_keys(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-secret")

    snapshot = masked_env_snapshot(AppConfigRoot())

    assert snapshot["OPENAI_API_KEY"] == "***"
    assert "sk-secret" not in snapshot.values()
