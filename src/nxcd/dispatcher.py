"""DeployDispatcher - 재빌드 직렬화 + 대기 중 변경 병합 상태 머신

    IDLE    --HashChanged(h)-->  RUNNING   재빌드 시작 (h)
    RUNNING --HashChanged(h)-->  PENDING   h를 대기 해시로 기억
    PENDING --HashChanged(h)-->  PENDING   대기 해시를 h로 덮어씀
    RUNNING --RebuildFinished--> IDLE
    PENDING --RebuildFinished--> RUNNING   대기 해시로 다시 재빌드

모든 전이는 _compare_and_swap()을 통해서만 일어난다.
재빌드가 끝나는 순간과 새 해시 도착이 경합해도, 대기 해시가 있으면
반드시 RUNNING으로 돌아가고 없을 때만 IDLE로 간다.
"""

from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Callable

logger = logging.getLogger("nxcd")

_KEEP = object()


class DispatchState(enum.Enum):
    """배포 디스패치 상태"""
    IDLE = "idle"
    RUNNING = "running"
    PENDING = "pending"


class DeployDispatcher:
    """재빌드를 한 번에 하나만 실행하고, 실행 중 들어온 해시는 최신 것 하나만 남긴다."""

    def __init__(
        self,
        rebuild: Callable[[str], object],
        thread_name: str = "nxcd-rebuild",
    ) -> None:
        self._rebuild = rebuild
        self._thread_name = thread_name
        self._state = DispatchState.IDLE
        self._pending: str | None = None
        # compare-and-swap 한 번만 감싸는 락 (그 외 구간에서는 잡지 않음)
        self._swap_lock = threading.Lock()
        self._worker: threading.Thread | None = None

    @property
    def state(self) -> DispatchState:
        return self._state

    @property
    def pending_hash(self) -> str | None:
        return self._pending

    def _compare_and_swap(
        self,
        expected: DispatchState,
        new: DispatchState,
        pending: object = _KEEP,
    ) -> tuple[bool, str | None]:
        """상태가 expected일 때만 new로 바꾸고 대기 해시를 갱신한다.

        Returns:
            (성공 여부, 교체 전 대기 해시)
        """
        with self._swap_lock:
            if self._state is not expected:
                return False, None
            previous = self._pending
            self._state = new
            if pending is not _KEEP:
                self._pending = pending
            return True, previous

    def submit(self, commit_hash: str) -> DispatchState:
        """HashChanged 이벤트 처리. 전이 후 상태를 반환한다."""
        while True:
            current = self._state
            if current is DispatchState.IDLE:
                swapped, _ = self._compare_and_swap(
                    DispatchState.IDLE, DispatchState.RUNNING, pending=None,
                )
                if swapped:
                    logger.info("배포 상태: idle → running (%s)", commit_hash)
                    self._start_worker(commit_hash)
                    return DispatchState.RUNNING
            elif current is DispatchState.RUNNING:
                swapped, _ = self._compare_and_swap(
                    DispatchState.RUNNING, DispatchState.PENDING, pending=commit_hash,
                )
                if swapped:
                    logger.info("배포 상태: running → pending (%s)", commit_hash)
                    return DispatchState.PENDING
            else:
                swapped, previous = self._compare_and_swap(
                    DispatchState.PENDING, DispatchState.PENDING, pending=commit_hash,
                )
                if swapped:
                    logger.info(
                        "배포 상태: pending 유지, 대기 해시 교체 %s → %s",
                        previous, commit_hash,
                    )
                    return DispatchState.PENDING

    def _finish(self) -> str | None:
        """RebuildFinished 전이. 이어서 재빌드할 해시가 있으면 반환."""
        while True:
            current = self._state
            if current is DispatchState.PENDING:
                swapped, pending = self._compare_and_swap(
                    DispatchState.PENDING, DispatchState.RUNNING, pending=None,
                )
                if swapped:
                    logger.info("배포 상태: pending → running (%s)", pending)
                    return pending
            elif current is DispatchState.RUNNING:
                swapped, _ = self._compare_and_swap(
                    DispatchState.RUNNING, DispatchState.IDLE,
                )
                if swapped:
                    logger.info("배포 상태: running → idle")
                    return None
            else:
                raise RuntimeError("재빌드 실행 중인데 상태가 idle입니다")

    def _start_worker(self, commit_hash: str) -> None:
        worker = threading.Thread(
            target=self._run,
            args=(commit_hash,),
            name=self._thread_name,
            daemon=True,
        )
        self._worker = worker
        worker.start()

    def _run(self, commit_hash: str | None) -> None:
        while commit_hash is not None:
            try:
                self._rebuild(commit_hash)
            except Exception:
                # 실패도 완료로 취급한다. 재시도는 새 커밋이 올 때만.
                logger.exception("재빌드 실행 중 예외 (%s)", commit_hash)
            commit_hash = self._finish()

    def join(self, timeout: float | None = None) -> bool:
        """현재 재빌드 워커가 끝날 때까지 대기. idle이면 True."""
        worker = self._worker
        if worker is not None:
            worker.join(timeout)
        return self._state is DispatchState.IDLE

    def status(self) -> dict:
        """현재 디스패치 상태 반환 (대시보드용)."""
        return {
            "state": self._state.value,
            "pending": self._pending,
        }
