"""nxcd 진입점 - 설정 로드 후 엔진 실행"""

from __future__ import annotations

import logging
import os
import signal
import sys
import threading

from .config import ConfigurationError, Settings, load_config
from .deployer import DeployExecutor
from .detector import BaselineError, ChangeDetector
from .engine import Engine
from .git_poller import GitPoller
from .notifier import MatrixSender, MessageSender, Notifier, SlackWebhookSender
from .transport import SSHTransport

logger = logging.getLogger("nxcd")

EXIT_CODE_OK = 0
EXIT_CODE_FAILURE = 1
EXIT_CODE_CONFIG = 2


def _setup_logging() -> None:
    """로깅 설정"""
    level = os.environ.get("NXCD_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] nxcd: [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _load_env() -> None:
    """현재 디렉토리의 .env 파일을 로드하여 환경변수에 반영."""
    from dotenv import find_dotenv, load_dotenv

    env_file = find_dotenv(usecwd=True)
    if env_file:
        load_dotenv(env_file, override=False)
        logger.info(".env 로드 완료: %s", env_file)
    else:
        logger.debug(".env 파일을 찾을 수 없습니다")


def _build_senders(settings: Settings) -> list[MessageSender]:
    senders: list[MessageSender] = []
    if settings.slack.webhook_url:
        senders.append(SlackWebhookSender(settings.slack.webhook_url))
    if settings.matrix.enabled:
        matrix = MatrixSender(
            settings.matrix.home_server,
            settings.matrix.username,
            settings.matrix.password,
            settings.matrix.room_id,
        )
        try:
            matrix.login()
        except Exception:
            logger.exception("Matrix 로그인 실패, 첫 알림 전송 시 재시도")
        senders.append(matrix)
    return senders


def build_engine(settings: Settings) -> Engine:
    """검증된 설정으로 엔진 구성.

    Raises:
        ConfigurationError: ssh 클라이언트 또는 사용 가능한 개인키가 없을 때
    """
    repository = settings.repository
    transport = SSHTransport(
        settings.git.private_key_paths,
        host=settings.git.host,
        user=settings.git.user,
        port=settings.git.port,
    )
    detector = ChangeDetector(
        GitPoller(transport, repository),
        interval=settings.poll_duration,
    )
    executor = DeployExecutor(
        settings.nix_host,
        settings.rebuild_command,
        git_host=settings.git.host,
        git_user=settings.git.user,
    )
    return Engine(repository, detector, executor, Notifier(_build_senders(settings)))


def _start_dashboard(engine: Engine, host: str, port: int) -> None:
    """대시보드 서버를 데몬 스레드로 실행."""
    import uvicorn

    from .dashboard import create_app

    config = uvicorn.Config(
        create_app(engine=engine),
        host=host,
        port=port,
        log_level="warning",
    )
    server = uvicorn.Server(config)
    thread = threading.Thread(target=server.run, name="nxcd-dashboard", daemon=True)
    thread.start()
    logger.info("대시보드 시작: http://%s:%d", host, port)


def main() -> int:
    """메인 루프"""
    _setup_logging()
    _load_env()

    try:
        settings = load_config()
        engine = build_engine(settings)
    except ConfigurationError as exc:
        logger.error("설정 오류: %s", exc)
        print(f"invalid config: {exc}", file=sys.stderr)
        return EXIT_CODE_CONFIG

    if settings.dashboard.enabled:
        _start_dashboard(engine, settings.dashboard.host, settings.dashboard.port)

    def _on_shutdown(signum, frame):
        logger.info("시그널 수신: %s, 종료 시작", signal.Signals(signum).name)
        engine.stop()

    signal.signal(signal.SIGTERM, _on_shutdown)
    signal.signal(signal.SIGINT, _on_shutdown)

    try:
        engine.run()
    except BaselineError as exc:
        logger.error("%s", exc)
        print(f"failed to get baseline commit: {exc.cause}", file=sys.stderr)
        return EXIT_CODE_FAILURE
    except RuntimeError:
        logger.exception("엔진 비정상 종료")
        return EXIT_CODE_FAILURE

    logger.info("nxcd 종료")
    return EXIT_CODE_OK


if __name__ == "__main__":
    sys.exit(main())
