"""Notifier - 새 커밋 알림 (Slack 웹훅 / Matrix)

notify()는 절대 블로킹하지 않는다. 메시지는 크기가 정해진 큐에 들어가고
전용 스레드 하나가 순서대로 전송한다. 큐가 가득 차면 가장 오래된
메시지를 버린다.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import urllib.parse
import urllib.request
import uuid
from collections.abc import Sequence
from typing import Any, Protocol

logger = logging.getLogger("nxcd")

DEFAULT_BUFFER_SIZE = 32
_HTTP_TIMEOUT = 10
_STOP = object()


def format_new_commit_message(commit_hash: str) -> str:
    """새 커밋 알림 메시지를 생성한다."""
    return f"new commit on repo: {commit_hash}"


def _request_json(
    method: str,
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str] | None = None,
) -> dict[str, Any]:
    """JSON 요청을 보내고 JSON 응답을 반환한다 (본문이 없으면 빈 dict)."""
    body = json.dumps(payload).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=body,
        headers={
            "Content-Type": "application/json; charset=utf-8",
            **(headers or {}),
        },
        method=method,
    )
    with urllib.request.urlopen(req, timeout=_HTTP_TIMEOUT) as resp:
        raw = resp.read()
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class MessageSender(Protocol):
    def send(self, message: str) -> None: ...


class SlackWebhookSender:
    """Slack 웹훅으로 메시지를 전송한다."""

    def __init__(self, url: str) -> None:
        self.url = url

    def send(self, message: str) -> None:
        _request_json("POST", self.url, {"text": message})
        logger.debug("Slack 웹훅 전송 완료")


class MatrixSender:
    """Matrix 방에 텍스트 메시지를 전송한다.

    첫 전송 시(또는 login() 호출 시) 비밀번호로 로그인하여
    access token을 얻는다. 로그인 실패는 다음 전송에서 다시 시도한다.
    """

    def __init__(
        self,
        home_server: str,
        username: str,
        password: str,
        room_id: str,
    ) -> None:
        self.home_server = home_server.rstrip("/")
        self.username = username
        self._password = password
        self.room_id = room_id
        self._access_token: str | None = None

    @property
    def logged_in(self) -> bool:
        return self._access_token is not None

    def login(self) -> None:
        data = _request_json(
            "POST",
            f"{self.home_server}/_matrix/client/v3/login",
            {
                "type": "m.login.password",
                "identifier": {"type": "m.id.user", "user": self.username},
                "password": self._password,
            },
        )
        token = data.get("access_token")
        if not token:
            raise RuntimeError("Matrix 로그인 응답에 access_token이 없습니다")
        self._access_token = token
        logger.info("Matrix 로그인 완료: %s", self.username)

    def send(self, message: str) -> None:
        if self._access_token is None:
            self.login()
        room = urllib.parse.quote(self.room_id, safe="")
        txn_id = uuid.uuid4().hex
        _request_json(
            "PUT",
            f"{self.home_server}/_matrix/client/v3/rooms/{room}"
            f"/send/m.room.message/{txn_id}",
            {"msgtype": "m.text", "body": message},
            headers={"Authorization": f"Bearer {self._access_token}"},
        )
        logger.debug("Matrix 메시지 전송 완료")


class Notifier:
    """비동기 알림 채널. 전송 실패는 로그만 남긴다."""

    def __init__(
        self,
        senders: Sequence[MessageSender] = (),
        buffer_size: int = DEFAULT_BUFFER_SIZE,
    ) -> None:
        self._senders = list(senders)
        self._queue: queue.Queue = queue.Queue(maxsize=buffer_size)
        self._thread: threading.Thread | None = None
        self.dropped = 0

    @property
    def enabled(self) -> bool:
        return bool(self._senders)

    def start(self) -> None:
        """전송 스레드 시작. 전송 대상이 없으면 아무것도 하지 않는다."""
        if not self._senders or self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run, name="nxcd-notifier", daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """대기 중인 메시지를 보내고 전송 스레드를 끝낸다."""
        thread = self._thread
        if thread is None:
            return
        self._thread = None
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.warning("알림 전송 스레드가 응답하지 않음, 남은 메시지 폐기")
            return
        thread.join(timeout)

    def notify(self, message: str) -> None:
        """메시지를 큐에 넣는다. 블로킹하지 않는다."""
        logger.info("알림: %s", message)
        if self._senders:
            self._enqueue(message)

    def _enqueue(self, item: object) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except queue.Full:
                pass
            try:
                oldest = self._queue.get_nowait()
            except queue.Empty:
                continue
            self.dropped += 1
            logger.warning("알림 버퍼가 가득 차 가장 오래된 메시지를 버림: %s", oldest)

    def _run(self) -> None:
        while True:
            message = self._queue.get()
            if message is _STOP:
                return
            for sender in self._senders:
                try:
                    sender.send(message)
                except Exception:
                    logger.exception("알림 전송 실패 (%s)", type(sender).__name__)
