"""Engine - 변경 감지 → 알림 + 배포 디스패치 연결

폴링은 전용 스레드에서 돌고, 감지된 해시는 큐를 통해 메인 스레드로 넘어온다.
메인 스레드는 해시를 받은 순서대로 알림을 보내고 디스패처에 전달한다.
재빌드 실행만 디스패처의 워커 스레드로 넘어간다.
"""

from __future__ import annotations

import functools
import logging
import queue
import threading
from typing import TYPE_CHECKING

from .dispatcher import DeployDispatcher
from .notifier import format_new_commit_message

if TYPE_CHECKING:
    from .deployer import DeployExecutor
    from .detector import ChangeDetector
    from .models import RepositoryIdentity
    from .notifier import Notifier

logger = logging.getLogger("nxcd")

_DONE = object()


class Engine:
    """nxcd 엔진. 디스패치 상태는 이 인스턴스가 소유한다."""

    def __init__(
        self,
        repository: RepositoryIdentity,
        detector: ChangeDetector,
        executor: DeployExecutor,
        notifier: Notifier,
    ) -> None:
        self.repository = repository
        self.detector = detector
        self.executor = executor
        self.notifier = notifier
        self.dispatcher = DeployDispatcher(
            functools.partial(executor.apply, repository),
        )
        self._events: queue.Queue = queue.Queue()
        self._poll_thread: threading.Thread | None = None
        self._poll_error: BaseException | None = None

    def run(self) -> None:
        """기준 커밋 조회 후 stop()이 호출될 때까지 실행한다.

        Raises:
            BaselineError: 기준 커밋 조회 실패
            RuntimeError: stop() 없이 폴링 루프가 끝났을 때
        """
        self.detector.establish_baseline()
        self.notifier.start()

        self._poll_thread = threading.Thread(
            target=self._poll_loop, name="nxcd-poller", daemon=True,
        )
        self._poll_thread.start()
        logger.info(
            "감시 시작: %s (%s), 주기 %s초",
            self.repository.path, self.repository.branch, self.detector.interval,
        )

        unexpected = False
        try:
            while True:
                item = self._events.get()
                if item is _DONE:
                    unexpected = not self.detector.stopped or self._poll_error is not None
                    break
                self.handle(item)
        finally:
            self.detector.stop()
            if not self.dispatcher.join(timeout=0):
                logger.info("진행 중인 재빌드 종료 대기")
                self.dispatcher.join()
            self.notifier.stop()

        if unexpected:
            raise RuntimeError(f"폴링 루프가 예기치 않게 종료됨: {self._poll_error}")

    def handle(self, commit_hash: str) -> None:
        """HashChanged 이벤트 하나 처리."""
        self.notifier.notify(format_new_commit_message(commit_hash))
        self.dispatcher.submit(commit_hash)

    def stop(self) -> None:
        """폴링 루프를 다음 대기 지점에서 끝낸다."""
        logger.info("엔진 종료 요청")
        self.detector.stop()

    def _poll_loop(self) -> None:
        try:
            for commit_hash in self.detector.changes():
                self._events.put(commit_hash)
        except Exception as exc:
            logger.exception("폴링 루프 예외")
            self._poll_error = exc
        finally:
            self._events.put(_DONE)

    def status(self) -> dict:
        """엔진 전체 상태 (대시보드용)."""
        poller = self.detector.poller
        return {
            "repository": {
                "owner": self.repository.owner,
                "name": self.repository.name,
                "branch": self.repository.branch,
            },
            "dispatch": {
                **self.dispatcher.status(),
                "current": self.executor.current,
            },
            "detector": {
                "baseline": self.detector.baseline,
                "interval": self.detector.interval,
                "last_polled_at": poller.last_polled_at,
                "last_error": self.detector.last_error,
                "consecutive_failures": self.detector.consecutive_failures,
            },
        }
