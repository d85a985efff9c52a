"""GitPoller - 원격 저장소 HEAD 조회 (clone 없이 ref advertisement만 읽음)"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from .models import RepositoryIdentity
from .pktline import ProtocolError, extract_ref_hash
from .transport import SSHTransport, TransportError

logger = logging.getLogger("nxcd")

# 원격에서 실행하는 ref advertisement 명령
UPLOAD_PACK_COMMAND = "git-upload-pack '{path}'"


@dataclass(frozen=True)
class PollResult:
    """폴링 1회 결과. commit_hash 또는 error 중 하나만 채워진다."""
    commit_hash: str | None = None
    error: TransportError | ProtocolError | None = None

    @property
    def ok(self) -> bool:
        return self.commit_hash is not None


def build_upload_pack_command(repository: RepositoryIdentity) -> str:
    """원격 명령 문자열 생성. 경로는 작은따옴표로 감싼다."""
    return UPLOAD_PACK_COMMAND.format(path=repository.path)


def fetch_head(transport: SSHTransport, repository: RepositoryIdentity) -> PollResult:
    """원격 저장소의 현재 HEAD 커밋 해시를 조회한다.

    세션은 성공/파싱 실패/전송 실패 모든 경우에 닫힌다.
    재시도는 하지 않는다 (ChangeDetector 책임).
    """
    command = build_upload_pack_command(repository)
    try:
        with transport.open_session() as session:
            stream = session.start(command)
            try:
                commit_hash = extract_ref_hash(stream)
            except ProtocolError:
                # ssh 자체가 실패했다면 파싱 오류보다 전송 오류로 보고
                session.raise_for_status()
                raise
    except TransportError as exc:
        return PollResult(error=exc)
    except ProtocolError as exc:
        return PollResult(error=exc)
    except OSError as exc:
        return PollResult(error=TransportError(f"세션 I/O 실패: {exc}"))
    return PollResult(commit_hash=commit_hash)


class GitPoller:
    """전송 계층과 저장소를 묶어 HEAD를 조회한다."""

    def __init__(
        self,
        transport: SSHTransport,
        repository: RepositoryIdentity,
    ) -> None:
        self.transport = transport
        self.repository = repository
        self.last_result: PollResult | None = None
        self.last_polled_at: datetime | None = None

    def poll(self) -> PollResult:
        """HEAD 조회 1회."""
        result = fetch_head(self.transport, self.repository)
        self.last_result = result
        self.last_polled_at = datetime.now()
        if result.ok:
            logger.debug("HEAD 조회: %s %s", self.repository.path, result.commit_hash)
        else:
            logger.debug("HEAD 조회 실패: %s (%s)", self.repository.path, result.error)
        return result
