"""
Unit tests for the worker entrypoint configuration helpers.
"""

import pytest

from storehub_common.errors import ConfigError
from storehub_worker import __main__ as worker_main

S3_ENV = {
    "S3_ENDPOINT": "http://minio:9000",
    "AWS_ACCESS_KEY_ID": "ak",
    "AWS_SECRET_ACCESS_KEY": "sk",
    "S3_BUCKET": "bucket",
    "S3_PUBLIC_BASE_URL": "http://cdn.local:9000",
}


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every variable the worker reads."""
    for name in [
        *S3_ENV,
        "STOREHUB_DB_PATH",
        "JOB_POLL_INTERVAL_MS",
        "STOREHUB_HEARTBEAT_INTERVAL",
        "BUILD_TMP_DIR",
        "GITHUB_API_URL",
    ]:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestConfigHelpers:
    """Test suite for CLI/environment configuration resolution."""

    def test_defaults(self, clean_env):
        args = worker_main.parse_args([])

        assert worker_main.get_database_path(args) == "storehub.db"
        assert worker_main.get_poll_interval(args) == 1.0
        assert worker_main.get_heartbeat_interval(args) == 30.0
        assert worker_main.get_github_api_url() == "https://api.github.com"

    def test_environment(self, clean_env):
        clean_env.setenv("STOREHUB_DB_PATH", "/data/jobs.db")
        clean_env.setenv("JOB_POLL_INTERVAL_MS", "250")
        clean_env.setenv("BUILD_TMP_DIR", "/scratch")
        args = worker_main.parse_args([])

        assert worker_main.get_database_path(args) == "/data/jobs.db"
        assert worker_main.get_poll_interval(args) == 0.25
        assert worker_main.get_scratch_dir(args) == "/scratch"

    def test_flags_override_environment(self, clean_env):
        clean_env.setenv("JOB_POLL_INTERVAL_MS", "250")
        args = worker_main.parse_args(
            ["--poll-interval-ms", "2000", "--scratch-dir", "/tmp/x", "--db-path", "a.db"]
        )

        assert worker_main.get_poll_interval(args) == 2.0
        assert worker_main.get_scratch_dir(args) == "/tmp/x"
        assert worker_main.get_database_path(args) == "a.db"

    @pytest.mark.parametrize("raw", ["abc", "0", "-5"])
    def test_invalid_poll_interval_uses_default(self, clean_env, raw):
        clean_env.setenv("JOB_POLL_INTERVAL_MS", raw)
        assert worker_main.get_poll_interval(worker_main.parse_args([])) == 1.0

    def test_storage_settings(self, clean_env):
        for name, value in S3_ENV.items():
            clean_env.setenv(name, value)

        settings = worker_main.get_storage_settings()

        assert settings.endpoint == "http://minio:9000"
        assert settings.bucket == "bucket"

    def test_missing_storage_settings(self, clean_env):
        clean_env.setenv("S3_ENDPOINT", "minio:9000")

        with pytest.raises(ConfigError) as exc_info:
            worker_main.get_storage_settings()

        assert "S3_BUCKET" in str(exc_info.value)
        assert "S3_ENDPOINT" not in str(exc_info.value)


class TestMain:
    def test_missing_config_exits_with_error(self, clean_env, tmp_path):
        """Test that the worker refuses to start without object store settings."""
        code = worker_main.main(["--db-path", str(tmp_path / "w.db")])

        assert code == 1
        assert not (tmp_path / "w.db").exists()
