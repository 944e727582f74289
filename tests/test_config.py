import json
from pathlib import Path

from focusflow.config.loader import load_config, save_config
from focusflow.config.schema import Config
from focusflow.session.backends import InMemoryThreadBackend, JsonlThreadBackend
from focusflow.session.store import ThreadStore


def test_missing_file_gives_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "absent.json")
    assert config.store.max_attempts == 3
    assert config.memory.history_window == 10
    assert config.memory.prior_messages == 10
    assert config.agent.turn_timeout == 180.0


def test_camel_case_file_is_loaded(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "workspace": str(tmp_path / "ws"),
                "store": {"backend": "memory", "maxAttempts": 5, "backoffBase": 0},
                "memory": {"historyWindow": 4, "relatedNotesLimit": 0},
                "provider": {"model": "anthropic/claude-sonnet-4-5", "maxTokens": 512},
                "agent": {"turnTimeout": None},
            }
        ),
        encoding="utf-8",
    )
    config = load_config(path)
    assert config.store.backend == "memory"
    assert config.store.max_attempts == 5
    assert config.memory.history_window == 4
    assert config.memory.related_notes_limit == 0
    assert config.provider.max_tokens == 512
    assert config.agent.turn_timeout is None
    assert config.threads_path == tmp_path / "ws" / "threads"


def test_invalid_file_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{ nope", encoding="utf-8")
    assert load_config(path).store.backend == "jsonl"

    path.write_text(json.dumps({"store": {"maxAttempts": 0}}), encoding="utf-8")
    assert load_config(path).store.max_attempts == 3


def test_save_then_load_uses_camel_case(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "config.json"
    config = Config()
    config.memory.history_window = 7
    save_config(config, path)

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw["memory"]["historyWindow"] == 7
    assert load_config(path).memory.history_window == 7


def test_store_from_config_picks_backend(tmp_path: Path) -> None:
    config = Config.model_validate({"workspace": str(tmp_path), "store": {"path": str(tmp_path / "t")}})
    store = ThreadStore.from_config(config)
    assert isinstance(store.active_backend, JsonlThreadBackend)
    assert store.active_backend.directory == tmp_path / "t"

    config.store.backend = "memory"
    assert isinstance(ThreadStore.from_config(config).active_backend, InMemoryThreadBackend)
