"""nxcd 설정 - YAML 파일 또는 환경변수

APP_CONFIG가 지정되면 해당 YAML 파일을, 아니면 환경변수를 읽는다.
어느 쪽이든 validate()를 거친 Settings만 엔진에 전달된다.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .models import DEFAULT_BRANCH, RepositoryIdentity, is_valid_repo_path

DEFAULT_POLL_DURATION = 60  # 초
DEFAULT_PRIVATE_KEY_PATH = "/etc/ssh/ssh_host_ed25519_key"
DEFAULT_REBUILD_COMMAND = ["nixos-rebuild", "switch"]
DEFAULT_DASHBOARD_HOST = "127.0.0.1"
DEFAULT_DASHBOARD_PORT = 8043


class ConfigurationError(Exception):
    """설정 오류 예외

    필수 값 누락, 형식 오류 등 기동 전에 발견되는 오류 시 발생합니다.
    """

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


def _parse_bool(value: Any, default: bool = False) -> bool:
    """문자열/bool을 bool로 변환"""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes", "on")


def _split_paths(value: Any) -> list[str]:
    """쉼표 구분 문자열 또는 리스트를 경로 리스트로 변환"""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = [str(v) for v in value]
    return [item.strip() for item in items if item and item.strip()]


@dataclass
class GitSettings:
    """감시 대상 저장소와 SSH 접속 설정"""
    repo: str = ""
    branch: str = ""
    private_key_paths: list[str] = field(default_factory=list)
    host: str = "github.com"
    user: str = "git"
    port: int | str = 22


@dataclass
class MatrixSettings:
    """Matrix 알림 설정"""
    enabled: bool = False
    home_server: str = ""
    username: str = ""
    password: str = ""
    room_id: str = ""


@dataclass
class SlackSettings:
    """Slack 웹훅 알림 설정"""
    webhook_url: str = ""


@dataclass
class DashboardSettings:
    enabled: bool = False
    host: str = DEFAULT_DASHBOARD_HOST
    port: int | str = DEFAULT_DASHBOARD_PORT


@dataclass
class Settings:
    """nxcd 전체 설정"""
    nix_host: str = ""
    poll_duration: int | str = ""
    git: GitSettings = field(default_factory=GitSettings)
    matrix: MatrixSettings = field(default_factory=MatrixSettings)
    slack: SlackSettings = field(default_factory=SlackSettings)
    dashboard: DashboardSettings = field(default_factory=DashboardSettings)
    rebuild_command: list[str] = field(
        default_factory=lambda: list(DEFAULT_REBUILD_COMMAND)
    )

    @property
    def repository(self) -> RepositoryIdentity:
        return RepositoryIdentity.parse(self.git.repo, self.git.branch)

    def validate(self) -> Settings:
        """기본값을 채우고 검증한다. 오류는 모아서 한 번에 보고한다.

        Raises:
            ConfigurationError: 하나 이상의 설정 오류가 있을 때
        """
        errors: list[str] = []

        if self.matrix.enabled:
            if not self.matrix.home_server:
                errors.append("missing matrix homeserver address")
            if not self.matrix.username:
                errors.append("missing matrix user id")
            if not self.matrix.password:
                errors.append("missing matrix password")
            if not self.matrix.room_id:
                errors.append("missing matrix room id")

        if not self.git.repo:
            errors.append("missing git repo in the format owner/name")
        elif not is_valid_repo_path(self.git.repo):
            errors.append(f"invalid repo {self.git.repo!r}, need 'owner/name'")

        if not self.nix_host:
            errors.append("missing nix machine hostname")

        if self.poll_duration in ("", None):
            self.poll_duration = DEFAULT_POLL_DURATION
        try:
            self.poll_duration = int(self.poll_duration)
            if self.poll_duration <= 0:
                raise ValueError
        except (TypeError, ValueError):
            errors.append(f"invalid poll duration: {self.poll_duration!r}")

        if not self.git.branch:
            self.git.branch = DEFAULT_BRANCH
        elif any(c.isspace() for c in self.git.branch):
            errors.append(f"invalid branch: {self.git.branch!r}")
        if not self.git.private_key_paths:
            self.git.private_key_paths = [DEFAULT_PRIVATE_KEY_PATH]

        for name, holder in (("git ssh port", self.git), ("dashboard port", self.dashboard)):
            try:
                holder.port = int(holder.port)
                if not 0 < holder.port < 65536:
                    raise ValueError
            except (TypeError, ValueError):
                errors.append(f"invalid {name}: {holder.port!r}")

        if not self.rebuild_command:
            errors.append("empty rebuild command")

        if errors:
            raise ConfigurationError(errors)
        return self


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    """하위 섹션을 매핑으로 꺼낸다. 비어 있으면 빈 dict."""
    section = data.get(name)
    if section is None:
        return {}
    if not isinstance(section, Mapping):
        raise ConfigurationError([
            f"config section {name!r} must be a mapping, got {type(section).__name__}"
        ])
    return section


def from_mapping(data: Mapping[str, Any]) -> Settings:
    """YAML 파일의 매핑으로부터 Settings 생성 (검증 전)

    Raises:
        ConfigurationError: 하위 섹션이 매핑이 아닐 때
    """
    git = _section(data, "git")
    matrix = _section(data, "matrix")
    slack = _section(data, "slack")
    dashboard = _section(data, "dashboard")

    keys = git.get("private_key_paths", git.get("private_key_path"))
    settings = Settings(
        nix_host=str(data.get("nix_host") or ""),
        poll_duration=data.get("poll_duration", ""),
        git=GitSettings(
            repo=str(git.get("repo") or ""),
            branch=str(git.get("branch") or ""),
            private_key_paths=_split_paths(keys),
            host=str(git.get("host") or "github.com"),
            user=str(git.get("user") or "git"),
            port=git.get("port", 22),
        ),
        matrix=MatrixSettings(
            enabled=_parse_bool(matrix.get("enabled")),
            home_server=str(matrix.get("home_server") or ""),
            username=str(matrix.get("username") or ""),
            password=str(matrix.get("password") or ""),
            room_id=str(matrix.get("room_id") or ""),
        ),
        slack=SlackSettings(webhook_url=str(slack.get("webhook_url") or "")),
        dashboard=DashboardSettings(
            enabled=_parse_bool(dashboard.get("enabled")),
            host=str(dashboard.get("host") or DEFAULT_DASHBOARD_HOST),
            port=dashboard.get("port", DEFAULT_DASHBOARD_PORT),
        ),
    )
    if data.get("rebuild_command"):
        settings.rebuild_command = [str(arg) for arg in data["rebuild_command"]]
    return settings


def from_file(path: str | Path) -> Settings:
    """YAML 설정 파일 로드 (검증 전)"""
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigurationError([f"failed to read config file {path}: {exc}"]) from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError([f"invalid YAML in {path}: {exc}"]) from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError([
            f"config must be a YAML mapping, got {type(data).__name__}: {path}"
        ])
    return from_mapping(data)


def from_env(environ: Mapping[str, str]) -> Settings:
    """환경변수로부터 Settings 생성 (검증 전)"""
    return Settings(
        nix_host=environ.get("NIX_HOST", ""),
        poll_duration=environ.get("POLL_DURATION", ""),
        git=GitSettings(
            repo=environ.get("GIT_REPO", ""),
            branch=environ.get("GIT_BRANCH", ""),
            private_key_paths=_split_paths(environ.get("GIT_SSH_PRIVATE_KEY_PATH")),
            host=environ.get("GIT_HOST") or "github.com",
            user=environ.get("GIT_SSH_USER") or "git",
            port=environ.get("GIT_SSH_PORT") or 22,
        ),
        matrix=MatrixSettings(
            enabled=_parse_bool(environ.get("MATRIX_ENABLED")),
            home_server=environ.get("MATRIX_HOMESERVER", ""),
            username=environ.get("MATRIX_USERNAME", ""),
            password=environ.get("MATRIX_PASSWORD", ""),
            room_id=environ.get("MATRIX_ROOMID", ""),
        ),
        slack=SlackSettings(webhook_url=environ.get("SLACK_WEBHOOK_URL", "")),
        dashboard=DashboardSettings(
            enabled=_parse_bool(environ.get("NXCD_DASHBOARD_ENABLED")),
            host=environ.get("NXCD_DASHBOARD_HOST") or DEFAULT_DASHBOARD_HOST,
            port=environ.get("NXCD_DASHBOARD_PORT") or DEFAULT_DASHBOARD_PORT,
        ),
    )


def load_config(environ: Mapping[str, str] | None = None) -> Settings:
    """설정 로드 + 검증. APP_CONFIG가 있으면 YAML 파일 우선."""
    if environ is None:
        environ = os.environ
    config_path = environ.get("APP_CONFIG")
    if config_path:
        settings = from_file(config_path)
    else:
        settings = from_env(environ)
    return settings.validate()
