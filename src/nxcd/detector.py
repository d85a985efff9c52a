"""ChangeDetector - 주기적 폴링으로 새 커밋 감지"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .git_poller import GitPoller

logger = logging.getLogger("nxcd")


class BaselineError(Exception):
    """기동 시 기준 커밋을 조회하지 못함. 엔진을 시작할 수 없다."""

    def __init__(self, cause: Exception | None):
        self.cause = cause
        super().__init__(f"기준 커밋 조회 실패: {cause}")


class ChangeDetector:
    """기준 커밋과 비교하여 바뀐 경우에만 새 해시를 내보낸다.

    폴링 실패는 로그만 남기고 해당 주기를 건너뛴다 (기준 커밋 유지).
    단, 최초 기준 커밋 조회 실패는 BaselineError로 즉시 실패한다.
    """

    def __init__(
        self,
        poller: GitPoller,
        interval: float,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.poller = poller
        self.interval = interval
        self._stop_event = stop_event or threading.Event()
        self._started = False
        self.baseline: str | None = None
        self.last_error: str | None = None
        self.consecutive_failures = 0

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """다음 대기 지점에서 폴링 루프를 끝낸다. 진행 중인 폴링은 중단하지 않는다."""
        self._stop_event.set()

    def establish_baseline(self) -> str:
        """기준 커밋 조회.

        Raises:
            BaselineError: 조회 실패 시
        """
        result = self.poller.poll()
        if not result.ok:
            self.last_error = str(result.error)
            raise BaselineError(result.error)
        self.baseline = result.commit_hash
        self.last_error = None
        logger.info("기준 커밋: %s", self.baseline)
        return self.baseline

    def check(self) -> str | None:
        """폴링 1회. 커밋이 바뀌었으면 새 해시, 아니면 None."""
        result = self.poller.poll()
        if not result.ok:
            self.consecutive_failures += 1
            self.last_error = str(result.error)
            logger.warning(
                "HEAD 조회 실패 (이번 주기 건너뜀, 연속 %d회): %s",
                self.consecutive_failures, result.error,
            )
            return None

        self.consecutive_failures = 0
        self.last_error = None
        if result.commit_hash == self.baseline:
            return None

        logger.info("새 커밋 감지: %s → %s", self.baseline, result.commit_hash)
        self.baseline = result.commit_hash
        return self.baseline

    def changes(self) -> Iterator[str]:
        """새 커밋 해시의 지연 무한 시퀀스. 한 번만 호출할 수 있다."""
        if self._started:
            raise RuntimeError("changes()는 한 번만 호출할 수 있습니다")
        self._started = True
        return self._watch()

    def _watch(self) -> Iterator[str]:
        if self.baseline is None:
            self.establish_baseline()
        while not self._stop_event.wait(timeout=self.interval):
            commit_hash = self.check()
            if commit_hash is not None:
                yield commit_hash
        logger.info("폴링 루프 종료")
