import pytest

from cachewatch.cli import parse_args
from cachewatch.config import Config


class TestConfigFromEnv:
    def test_defaults(self, monkeypatch: "pytest.MonkeyPatch") -> "None":
        for name in (
            "CACHEWATCH_WEBHOOK_URL",
            "CACHEWATCH_STATE_FILE",
            "CACHEWATCH_SUPPORTED_CLIS",
            "CACHEWATCH_SUBTRACT_CACHE_READ_CLIS",
        ):
            monkeypatch.delenv(name, raising=False)
        config = Config.from_env()
        assert config.webhook_url == ""
        assert config.state_file == ""
        assert config.supported_clis == ("claude", "codex")
        assert config.subtract_cache_read_clis == ("codex",)

    def test_reads_env_vars(self, monkeypatch: "pytest.MonkeyPatch") -> "None":
        monkeypatch.setenv("CACHEWATCH_WEBHOOK_URL", "https://hooks.example.test")
        monkeypatch.setenv("CACHEWATCH_STATE_FILE", "/tmp/cachewatch.json")
        monkeypatch.setenv("CACHEWATCH_SUPPORTED_CLIS", "claude, codex ,gemini")
        monkeypatch.setenv("CACHEWATCH_SUBTRACT_CACHE_READ_CLIS", "")
        config = Config.from_env()
        assert config.webhook_url == "https://hooks.example.test"
        assert config.state_file == "/tmp/cachewatch.json"
        assert config.supported_clis == ("claude", "codex", "gemini")
        assert config.subtract_cache_read_clis == ()


class TestWebhookEnabled:
    def test_enabled_when_url_set(self) -> "None":
        assert Config(webhook_url="https://x").webhook_enabled is True

    def test_disabled_when_url_empty(self) -> "None":
        assert Config(webhook_url="").webhook_enabled is False


class TestParseArgs:
    def test_defaults(self) -> "None":
        config = parse_args([])
        assert config.listen_address == ":9186"
        assert config.events_file == "-"
        assert config.notice_timeout == 5.0
        assert config.log_level == "info"
        assert config.log_format == "console"

    def test_flags(self) -> "None":
        config = parse_args(
            [
                "--web.listen-address=127.0.0.1:9999",
                "--events.file=/var/log/gateway.jsonl",
                "--notice.timeout=1.5",
                "--log.level=debug",
                "--log.format=json",
            ]
        )
        assert config.listen_address == "127.0.0.1:9999"
        assert config.events_file == "/var/log/gateway.jsonl"
        assert config.notice_timeout == 1.5
        assert config.log_level == "debug"
        assert config.log_format == "json"

    def test_rejects_unknown_log_format(self) -> "None":
        with pytest.raises(SystemExit):
            parse_args(["--log.format=xml"])
