"""pkt-line 파서 - ref advertisement에서 HEAD 커밋 해시 추출

git-upload-pack의 응답은 pkt-line 프레임의 연속이다.
각 프레임은 4자리 16진수 길이 헤더(헤더 포함 전체 길이)로 시작한다.

    001e# service=git-upload-pack\\n
    00a4<hash> HEAD\\0<capabilities>\\n
    ...

첫 번째 프레임은 배너/capability 라인이므로 버리고,
두 번째 프레임 payload의 첫 토큰을 커밋 해시로 취한다.
"""

from __future__ import annotations

from typing import BinaryIO

_HEADER_SIZE = 4
_HASH_FRAME_INDEX = 1


class ProtocolError(Exception):
    """ref advertisement 파싱 실패."""


class MalformedFrame(ProtocolError):
    """길이 헤더 또는 payload 형식이 잘못된 프레임."""


class UnexpectedEof(ProtocolError):
    """두 번째 프레임을 다 읽기 전에 스트림이 끝남."""


def encode_pkt_line(payload: bytes) -> bytes:
    """payload에 4자리 16진수 길이 헤더를 붙인 프레임을 만든다."""
    length = len(payload) + _HEADER_SIZE
    if length > 0xFFFF:
        raise ValueError(f"pkt-line payload가 너무 큼: {len(payload)} bytes")
    return f"{length:04x}".encode("ascii") + payload


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    """정확히 size 바이트를 읽는다. 부족하면 UnexpectedEof."""
    chunks: list[bytes] = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            raise UnexpectedEof(
                f"스트림 종료: {size} bytes 중 {size - remaining} bytes만 읽음"
            )
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _parse_length(header: bytes) -> int:
    try:
        length = int(header.decode("ascii"), 16)
    except (UnicodeDecodeError, ValueError):
        raise MalformedFrame(f"길이 헤더가 16진수가 아님: {header!r}") from None
    if length < _HEADER_SIZE:
        raise MalformedFrame(f"프레임 길이가 헤더보다 짧음: {length}")
    return length


def read_frame(stream: BinaryIO) -> bytes:
    """프레임 하나를 읽어 payload를 반환한다."""
    length = _parse_length(_read_exact(stream, _HEADER_SIZE))
    return _read_exact(stream, length - _HEADER_SIZE)


def extract_ref_hash(stream: BinaryIO) -> str:
    """두 번째 프레임에서 광고된 커밋 해시를 추출한다.

    Raises:
        MalformedFrame: 길이 헤더가 잘못됐거나 해시 토큰이 없을 때
        UnexpectedEof: 두 프레임을 다 읽기 전에 스트림이 끝났을 때
    """
    for _ in range(_HASH_FRAME_INDEX):
        read_frame(stream)
    payload = read_frame(stream)

    line = payload.split(b"\0", 1)[0]
    tokens = line.split()
    if not tokens:
        raise MalformedFrame("두 번째 프레임에 해시 토큰이 없음")
    try:
        return tokens[0].decode("ascii")
    except UnicodeDecodeError:
        raise MalformedFrame(f"해시 토큰이 ASCII가 아님: {tokens[0]!r}") from None
