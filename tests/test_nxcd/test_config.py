"""설정 로드/검증 단위 테스트"""

from __future__ import annotations

import pytest

from nxcd.config import (
    DEFAULT_PRIVATE_KEY_PATH,
    ConfigurationError,
    from_env,
    from_file,
    load_config,
)

BASE_ENV = {
    "NIX_HOST": "web01",
    "GIT_REPO": "acme/infra",
}


def _env(**overrides) -> dict[str, str]:
    env = dict(BASE_ENV)
    env.update(overrides)
    return env


class TestLoadFromEnv:
    def test_minimal_env_fills_defaults(self):
        settings = load_config(_env())
        assert settings.nix_host == "web01"
        assert settings.poll_duration == 60
        assert settings.git.branch == "main"
        assert settings.git.private_key_paths == [DEFAULT_PRIVATE_KEY_PATH]
        assert settings.git.host == "github.com"
        assert settings.git.user == "git"
        assert settings.git.port == 22
        assert settings.rebuild_command == ["nixos-rebuild", "switch"]
        assert not settings.matrix.enabled
        assert not settings.dashboard.enabled

    def test_repository_identity(self):
        settings = load_config(_env(GIT_BRANCH="prod"))
        repo = settings.repository
        assert (repo.owner, repo.name, repo.branch) == ("acme", "infra", "prod")

    def test_poll_duration(self):
        assert load_config(_env(POLL_DURATION="5")).poll_duration == 5

    def test_key_paths_comma_separated(self):
        settings = load_config(_env(GIT_SSH_PRIVATE_KEY_PATH="/k/one, /k/two,"))
        assert settings.git.private_key_paths == ["/k/one", "/k/two"]

    def test_ssh_overrides(self):
        settings = load_config(_env(
            GIT_HOST="git.example.com", GIT_SSH_USER="gitea", GIT_SSH_PORT="2222",
        ))
        assert settings.git.host == "git.example.com"
        assert settings.git.user == "gitea"
        assert settings.git.port == 2222

    def test_dashboard(self):
        settings = load_config(_env(
            NXCD_DASHBOARD_ENABLED="true", NXCD_DASHBOARD_PORT="9000",
        ))
        assert settings.dashboard.enabled
        assert settings.dashboard.host == "127.0.0.1"
        assert settings.dashboard.port == 9000

    def test_matrix_complete(self):
        settings = load_config(_env(
            MATRIX_ENABLED="1",
            MATRIX_HOMESERVER="https://matrix.example.org",
            MATRIX_USERNAME="@bot:example.org",
            MATRIX_PASSWORD="secret",
            MATRIX_ROOMID="!room:example.org",
        ))
        assert settings.matrix.enabled
        assert settings.matrix.room_id == "!room:example.org"

    def test_slack_webhook(self):
        settings = load_config(_env(SLACK_WEBHOOK_URL="https://hooks.slack.com/x"))
        assert settings.slack.webhook_url == "https://hooks.slack.com/x"


class TestValidation:
    def test_missing_repo(self):
        env = _env()
        del env["GIT_REPO"]
        with pytest.raises(ConfigurationError, match="missing git repo"):
            load_config(env)

    def test_invalid_repo(self):
        with pytest.raises(ConfigurationError, match="invalid repo"):
            load_config(_env(GIT_REPO="acme"))

    def test_missing_nix_host(self):
        env = _env()
        del env["NIX_HOST"]
        with pytest.raises(ConfigurationError, match="missing nix machine hostname"):
            load_config(env)

    @pytest.mark.parametrize("value", ["0", "-3", "soon"])
    def test_invalid_poll_duration(self, value):
        with pytest.raises(ConfigurationError, match="invalid poll duration"):
            load_config(_env(POLL_DURATION=value))

    @pytest.mark.parametrize("repo", ["acme/infra\n", "acme\n/infra"])
    def test_repo_with_newline(self, repo):
        with pytest.raises(ConfigurationError, match="invalid repo"):
            load_config(_env(GIT_REPO=repo))

    def test_whitespace_branch(self):
        with pytest.raises(ConfigurationError, match="invalid branch"):
            load_config(_env(GIT_BRANCH="feature x"))

    def test_invalid_port(self):
        with pytest.raises(ConfigurationError, match="invalid git ssh port"):
            load_config(_env(GIT_SSH_PORT="70000"))

    def test_matrix_missing_fields_collected(self):
        """Matrix 활성화 시 누락 항목을 한 번에 모두 보고"""
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(_env(MATRIX_ENABLED="true"))
        errors = exc_info.value.errors
        assert "missing matrix homeserver address" in errors
        assert "missing matrix user id" in errors
        assert "missing matrix password" in errors
        assert "missing matrix room id" in errors

    def test_all_errors_collected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            load_config({})
        assert len(exc_info.value.errors) == 2

    def test_from_env_does_not_validate(self):
        settings = from_env({})
        assert settings.git.repo == ""
        assert settings.poll_duration == ""


class TestLoadFromFile:
    def test_yaml_file(self, tmp_path):
        path = tmp_path / "nxcd.yaml"
        path.write_text(
            "nix_host: web01\n"
            "poll_duration: 30\n"
            "git:\n"
            "  repo: acme/infra\n"
            "  branch: prod\n"
            "  private_key_paths:\n"
            "    - /k/one\n"
            "    - /k/two\n"
            "matrix:\n"
            "  enabled: false\n"
            "rebuild_command: [nixos-rebuild, boot]\n",
            encoding="utf-8",
        )
        settings = load_config({"APP_CONFIG": str(path), "NIX_HOST": "ignored"})
        assert settings.nix_host == "web01"
        assert settings.poll_duration == 30
        assert settings.repository.branch == "prod"
        assert settings.git.private_key_paths == ["/k/one", "/k/two"]
        assert settings.rebuild_command == ["nixos-rebuild", "boot"]

    def test_single_key_path(self, tmp_path):
        path = tmp_path / "nxcd.yaml"
        path.write_text(
            "nix_host: web01\ngit:\n  repo: acme/infra\n  private_key_path: /k/only\n",
            encoding="utf-8",
        )
        assert from_file(path).git.private_key_paths == ["/k/only"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="failed to read config file"):
            load_config({"APP_CONFIG": str(tmp_path / "nope.yaml")})

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("git: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="invalid YAML"):
            from_file(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="must be a YAML mapping"):
            from_file(path)

    def test_empty_file_reports_missing_fields(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="missing nix machine hostname"):
            load_config({"APP_CONFIG": str(path)})

    @pytest.mark.parametrize("section", ["git", "matrix", "slack", "dashboard"])
    def test_section_not_a_mapping(self, tmp_path, section):
        """하위 섹션이 스칼라/리스트면 설정 오류"""
        path = tmp_path / "nxcd.yaml"
        path.write_text(f"nix_host: web01\n{section}: [a, b]\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match=f"config section '{section}'"):
            load_config({"APP_CONFIG": str(path)})

    def test_scalar_git_section(self, tmp_path):
        path = tmp_path / "nxcd.yaml"
        path.write_text("nix_host: web01\ngit: acme/infra\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="must be a mapping"):
            from_file(path)
