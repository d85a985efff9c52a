"""SSH 전송 계층 - OpenSSH 클라이언트로 원격 명령 실행

세션 하나는 ``ssh`` 자식 프로세스 하나에 대응한다.
원격 명령의 stdout을 바이트 스트림으로 노출하고, 세션을 닫으면
프로세스를 종료/회수한다.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Iterable
from pathlib import Path
from typing import BinaryIO

from .config import ConfigurationError

logger = logging.getLogger("nxcd")

DEFAULT_GIT_HOST = "github.com"
DEFAULT_GIT_USER = "git"
DEFAULT_SSH_PORT = 22

# 세션 종료 시 프로세스 회수 대기 (초)
_CLOSE_TIMEOUT = 5.0
# 파싱 실패 후 ssh 종료 코드 확인 대기 (초)
_EXIT_WAIT = 2.0
# ssh-keygen 키 검증 타임아웃 (초)
_KEYGEN_TIMEOUT = 10

# 접속할 때마다 호스트 키를 검증하지 않는다 (known_hosts 관리 없음)
_SSH_OPTIONS = [
    "-o", "BatchMode=yes",
    "-o", "IdentitiesOnly=yes",
    "-o", "StrictHostKeyChecking=no",
    "-o", "UserKnownHostsFile=/dev/null",
    "-o", "LogLevel=ERROR",
]


class TransportError(Exception):
    """SSH 접속/세션/원격 명령 실행 실패."""


def _key_usable(path: Path, keygen: str | None) -> bool:
    """개인키 파일을 읽고 파싱할 수 있는지 확인."""
    try:
        data = path.read_bytes()
    except OSError as exc:
        logger.warning("개인키 파일 읽기 실패 (건너뜀): %s", exc)
        return False

    if b"PRIVATE KEY" not in data:
        logger.warning("개인키 형식이 아님 (건너뜀): %s", path)
        return False

    if keygen is None:
        return True

    try:
        subprocess.run(
            [keygen, "-y", "-P", "", "-f", str(path)],
            capture_output=True,
            timeout=_KEYGEN_TIMEOUT,
        ).check_returncode()
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError):
        logger.warning("개인키 파싱 실패 (건너뜀): %s", path)
        return False
    return True


def load_usable_keys(key_paths: Iterable[str | Path]) -> list[Path]:
    """사용 가능한 개인키 목록을 반환한다.

    읽을 수 없거나 파싱되지 않는 키는 경고만 남기고 건너뛴다.
    하나도 남지 않으면 설정 오류로 취급한다.

    Raises:
        ConfigurationError: 사용 가능한 키가 없을 때
    """
    keygen = shutil.which("ssh-keygen")
    if keygen is None:
        logger.debug("ssh-keygen 없음, 키 파싱 검증 생략")

    usable = [
        Path(p) for p in key_paths
        if str(p).strip() and _key_usable(Path(p), keygen)
    ]
    if not usable:
        raise ConfigurationError(["사용 가능한 SSH 개인키가 없습니다"])
    return usable


class SSHSession:
    """원격 명령 1회 실행 세션. context manager로 사용한다."""

    def __init__(self, argv: list[str]) -> None:
        self._argv = argv
        self._proc: subprocess.Popen | None = None

    def __enter__(self) -> SSHSession:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def returncode(self) -> int | None:
        if self._proc is None:
            return None
        return self._proc.poll()

    def start(self, command: str) -> BinaryIO:
        """원격 명령을 시작하고 stdout 스트림을 반환한다."""
        if self._proc is not None:
            raise TransportError("이미 명령이 시작된 세션입니다")
        try:
            self._proc = subprocess.Popen(
                [*self._argv, command],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            raise TransportError(f"ssh 실행 실패: {exc}") from exc
        return self._proc.stdout

    def raise_for_status(self, timeout: float = _EXIT_WAIT) -> None:
        """ssh가 비정상 종료했다면 TransportError를 발생시킨다.

        아직 실행 중이면(응답을 읽다 멈춘 경우) 아무것도 하지 않는다.
        """
        if self._proc is None:
            return
        try:
            returncode = self._proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return
        if returncode != 0:
            stderr = self._proc.stderr.read() if self._proc.stderr else b""
            message = stderr.decode("utf-8", errors="replace").strip()
            raise TransportError(f"ssh 종료 (rc={returncode}): {message}")

    def close(self) -> None:
        """프로세스를 종료하고 회수한다. 여러 번 호출해도 안전."""
        proc = self._proc
        if proc is None:
            return
        if proc.poll() is None:
            proc.terminate()
        try:
            proc.communicate(timeout=_CLOSE_TIMEOUT)
        except subprocess.TimeoutExpired:
            logger.warning("ssh 세션 종료 대기 초과, 강제 종료")
            proc.kill()
            proc.communicate()


class SSHTransport:
    """인증된 SSH 세션을 여는 전송 계층."""

    def __init__(
        self,
        key_paths: Iterable[str | Path],
        host: str = DEFAULT_GIT_HOST,
        user: str = DEFAULT_GIT_USER,
        port: int = DEFAULT_SSH_PORT,
        ssh_command: str = "ssh",
    ) -> None:
        ssh = shutil.which(ssh_command)
        if ssh is None:
            raise ConfigurationError([f"ssh 클라이언트를 찾을 수 없습니다: {ssh_command}"])
        self.ssh = ssh
        self.host = host
        self.user = user
        self.port = port
        self.key_paths = load_usable_keys(key_paths)

    def _argv(self) -> list[str]:
        argv = [self.ssh, "-p", str(self.port), *_SSH_OPTIONS]
        for key in self.key_paths:
            argv += ["-i", str(key)]
        argv.append(f"{self.user}@{self.host}")
        return argv

    def open_session(self) -> SSHSession:
        return SSHSession(self._argv())
