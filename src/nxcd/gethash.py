"""원격 저장소 HEAD 해시 조회 CLI

사용법:
    python -m nxcd.gethash owner/name
    python -m nxcd.gethash --key ~/.ssh/id_ed25519 owner/name
"""

from __future__ import annotations

import argparse
import sys

from .config import DEFAULT_PRIVATE_KEY_PATH, ConfigurationError
from .git_poller import fetch_head
from .models import RepositoryIdentity
from .transport import DEFAULT_GIT_HOST, DEFAULT_SSH_PORT, SSHTransport


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="nxcd-gethash",
        description="원격 저장소의 현재 HEAD 커밋 해시를 출력합니다",
    )
    parser.add_argument("repo", help="저장소 (owner/name)")
    parser.add_argument(
        "-k", "--key", dest="keys", action="append", default=None,
        help=f"SSH 개인키 경로, 여러 번 지정 가능 (기본: {DEFAULT_PRIVATE_KEY_PATH})",
    )
    parser.add_argument(
        "--host", default=DEFAULT_GIT_HOST,
        help=f"git 호스트 (기본: {DEFAULT_GIT_HOST})",
    )
    parser.add_argument(
        "-p", "--port", type=int, default=DEFAULT_SSH_PORT,
        help=f"SSH 포트 (기본: {DEFAULT_SSH_PORT})",
    )

    args = parser.parse_args(argv)

    try:
        repository = RepositoryIdentity.parse(args.repo)
    except ValueError as exc:
        print(exc, file=sys.stderr)
        parser.print_usage(sys.stderr)
        return 1

    try:
        transport = SSHTransport(
            args.keys or [DEFAULT_PRIVATE_KEY_PATH],
            host=args.host,
            port=args.port,
        )
    except ConfigurationError as exc:
        print(exc, file=sys.stderr)
        return 1

    result = fetch_head(transport, repository)
    if not result.ok:
        print(result.error, file=sys.stderr)
        return 1

    sys.stdout.write(result.commit_hash)
    return 0


if __name__ == "__main__":
    sys.exit(main())
