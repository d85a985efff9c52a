"""DeployExecutor - nixos-rebuild 실행"""

from __future__ import annotations

import logging
import subprocess
import threading
import urllib.parse
from collections import deque
from collections.abc import Sequence
from datetime import datetime

from .models import DeployRecord, RepositoryIdentity

logger = logging.getLogger("nxcd")

# 대시보드에 보관하는 최근 배포 기록 수
_HISTORY_SIZE = 20


def build_flake_locator(
    repository: RepositoryIdentity,
    commit_hash: str,
    target: str,
    *,
    scheme: str = "git+ssh",
    user: str = "git",
    host: str = "github.com",
) -> str:
    """flake 참조 문자열 생성.

    ``git+ssh://git@github.com/owner/name?ref=main&rev=<hash>#<target>``

    브랜치 이름은 쿼리 값으로 URL 인코딩한다.
    """
    ref = urllib.parse.quote(repository.branch, safe="/")
    return (
        f"{scheme}://{user}@{host}/{repository.owner}/{repository.name}"
        f"?ref={ref}&rev={commit_hash}#{target}"
    )


class DeployExecutor:
    """커밋 해시로 고정된 flake로 머신을 재빌드한다.

    실패(비정상 종료, 실행 불가)는 로그만 남기고 완료로 취급한다.
    호출은 DeployDispatcher가 직렬화하므로 동시에 두 번 실행되지 않는다.
    """

    def __init__(
        self,
        target: str,
        command: Sequence[str] = ("nixos-rebuild", "switch"),
        *,
        git_host: str = "github.com",
        git_user: str = "git",
        history_size: int = _HISTORY_SIZE,
    ) -> None:
        self.target = target
        self.command = list(command)
        self.git_host = git_host
        self.git_user = git_user
        self.current: str | None = None
        self._history: deque[DeployRecord] = deque(maxlen=history_size)
        self._history_lock = threading.Lock()

    def build_command(
        self, repository: RepositoryIdentity, commit_hash: str,
    ) -> list[str]:
        locator = build_flake_locator(
            repository,
            commit_hash,
            self.target,
            user=self.git_user,
            host=self.git_host,
        )
        return [*self.command, "--flake", locator]

    def apply(
        self, repository: RepositoryIdentity, commit_hash: str,
    ) -> DeployRecord:
        """재빌드 실행. stdout/stderr은 엔진의 것을 그대로 사용한다."""
        cmd = self.build_command(repository, commit_hash)
        self.current = commit_hash
        started_at = datetime.now()
        returncode: int | None = None
        error: str | None = None

        logger.info("재빌드 시작: %s", " ".join(cmd))
        try:
            result = subprocess.run(cmd)
            returncode = result.returncode
            if returncode != 0:
                error = f"rc={returncode}"
                logger.warning("재빌드 실패 (rc=%d): %s", returncode, commit_hash)
            else:
                logger.info("재빌드 완료: %s", commit_hash)
        except (subprocess.SubprocessError, OSError) as exc:
            error = str(exc)
            logger.error("재빌드 명령 실행 실패: %s", exc)
        finally:
            self.current = None

        record = DeployRecord(
            commit_hash=commit_hash,
            started_at=started_at,
            finished_at=datetime.now(),
            returncode=returncode,
            error=error,
        )
        with self._history_lock:
            self._history.append(record)
        return record

    def recent(self, n: int = _HISTORY_SIZE) -> list[DeployRecord]:
        """최근 배포 기록 (최신이 마지막)."""
        with self._history_lock:
            records = list(self._history)
        return records[-n:] if n > 0 else []
