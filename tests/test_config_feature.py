import yaml

from asr_optimizer import config


def test_partial_config_file_is_merged_over_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"anthropic": {"model": "claude-custom"}, "server": {"port": 8080}}))

    cfg = config.load_config(path=str(path))

    assert cfg["anthropic"]["model"] == "claude-custom"
    assert cfg["anthropic"]["max_tokens"] == 1024
    assert cfg["server"]["port"] == 8080
    assert cfg["voiceflow"]["transcript_range"] == "Last 7 Days"


def test_missing_or_broken_config_file_falls_back_to_defaults(tmp_path):
    broken = tmp_path / "config.yaml"
    broken.write_text("anthropic: [unclosed")

    assert config.load_config(path=str(tmp_path / "absent.yaml")) == config.DEFAULT_CONFIG
    assert config.load_config(path=str(broken)) == config.DEFAULT_CONFIG


def test_environment_overrides_anthropic_settings(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-env")
    monkeypatch.setenv("ANTHROPIC_BASE_URL", "https://proxy.test/v1/")
    monkeypatch.delenv("ANTHROPIC_MODEL", raising=False)

    runtime = config.resolve_anthropic_runtime(config.DEFAULT_CONFIG)

    assert runtime["api_key"] == "sk-env"
    assert runtime["api_base_url"] == "https://proxy.test/v1"
    assert runtime["model"] == config.DEFAULT_CONFIG["anthropic"]["model"]


def test_db_path_prefers_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("DB_PATH", str(tmp_path / "db"))
    assert config.resolve_db_path(config.DEFAULT_CONFIG) == str(tmp_path / "db")

    monkeypatch.delenv("DB_PATH")
    assert config.resolve_db_path(config.DEFAULT_CONFIG).endswith("optimization_results")


def test_server_port_from_environment(monkeypatch):
    monkeypatch.setenv("PORT", "4100")
    monkeypatch.delenv("HOST", raising=False)

    settings = config.resolve_server_settings(config.DEFAULT_CONFIG)

    assert settings["port"] == 4100
    assert settings["host"] == "0.0.0.0"
