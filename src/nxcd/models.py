"""데이터 모델: RepositoryIdentity, DeployRecord"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

# owner/name 각 부분에 허용되는 문자 (원격 명령에 그대로 삽입되므로 엄격하게 제한)
_SEGMENT_PATTERN = re.compile(r"[A-Za-z0-9._-]+")

DEFAULT_BRANCH = "main"


def is_valid_repo_path(repo: str) -> bool:
    """'owner/name' 형식인지 확인."""
    owner, sep, name = repo.partition("/")
    return bool(sep) and bool(_SEGMENT_PATTERN.fullmatch(owner)) and bool(
        _SEGMENT_PATTERN.fullmatch(name)
    )


@dataclass(frozen=True)
class RepositoryIdentity:
    """감시 대상 저장소 (owner, name, branch)"""
    owner: str
    name: str
    branch: str = DEFAULT_BRANCH

    def __post_init__(self) -> None:
        if not _SEGMENT_PATTERN.fullmatch(self.owner):
            raise ValueError(f"유효하지 않은 저장소 owner: {self.owner!r}")
        if not _SEGMENT_PATTERN.fullmatch(self.name):
            raise ValueError(f"유효하지 않은 저장소 이름: {self.name!r}")
        if not self.branch or any(c.isspace() for c in self.branch):
            raise ValueError(f"유효하지 않은 브랜치: {self.branch!r}")

    @classmethod
    def parse(cls, repo: str, branch: str = DEFAULT_BRANCH) -> RepositoryIdentity:
        """'owner/name' 문자열로부터 생성."""
        if not is_valid_repo_path(repo):
            raise ValueError(f"유효하지 않은 저장소, 'owner/name' 형식 필요: {repo!r}")
        owner, _, name = repo.partition("/")
        return cls(owner=owner, name=name, branch=branch)

    @property
    def path(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class DeployRecord:
    """재빌드 1회 실행 기록 (대시보드용, 저장하지 않음)"""
    commit_hash: str
    started_at: datetime
    finished_at: datetime
    returncode: int | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.returncode == 0

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()
