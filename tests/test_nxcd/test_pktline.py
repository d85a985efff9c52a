"""pkt-line 파서 단위 테스트"""

from __future__ import annotations

import io

import pytest

from nxcd.pktline import (
    MalformedFrame,
    ProtocolError,
    UnexpectedEof,
    encode_pkt_line,
    extract_ref_hash,
    read_frame,
)

HASH = "3f1c2e9a7b6d5c4e3f2a1b0c9d8e7f6a5b4c3d2e"


def _advertisement(hash_line: bytes) -> io.BytesIO:
    return io.BytesIO(
        encode_pkt_line(b"# service=git-upload-pack\n")
        + encode_pkt_line(hash_line)
        + encode_pkt_line(b"ffff refs/heads/dev\n")
        + b"0000"
    )


class _TrickleStream:
    """read()가 한 번에 1바이트씩만 돌려주는 스트림 (네트워크 흉내)"""

    def __init__(self, data: bytes) -> None:
        self._buf = io.BytesIO(data)

    def read(self, size: int = -1) -> bytes:
        return self._buf.read(min(size, 1) if size > 0 else size)


class TestEncodePktLine:
    def test_header_counts_itself(self):
        assert encode_pkt_line(b"abc") == b"0007abc"

    def test_empty_payload(self):
        assert encode_pkt_line(b"") == b"0004"

    def test_too_large(self):
        with pytest.raises(ValueError):
            encode_pkt_line(b"x" * 0x10000)


class TestReadFrame:
    def test_reads_payload(self):
        stream = io.BytesIO(b"0009hello0000")
        assert read_frame(stream) == b"hello"

    def test_uppercase_hex_header(self):
        payload = b"x" * (0x1A - 4)
        stream = io.BytesIO(b"001A" + payload)
        assert read_frame(stream) == payload

    def test_flush_packet_is_malformed(self):
        """0000 (flush)은 헤더보다 짧은 길이로 취급"""
        with pytest.raises(MalformedFrame):
            read_frame(io.BytesIO(b"0000"))

    @pytest.mark.parametrize("header", [b"0001", b"0003"])
    def test_length_below_header_size(self, header):
        with pytest.raises(MalformedFrame):
            read_frame(io.BytesIO(header + b"payload"))

    def test_non_hex_header(self):
        with pytest.raises(MalformedFrame):
            read_frame(io.BytesIO(b"zz12payload"))

    def test_short_header(self):
        with pytest.raises(UnexpectedEof):
            read_frame(io.BytesIO(b"00"))

    def test_short_payload(self):
        with pytest.raises(UnexpectedEof):
            read_frame(io.BytesIO(b"0010abc"))


class TestExtractRefHash:
    def test_extracts_hash_from_second_frame(self):
        stream = _advertisement(
            HASH.encode() + b" HEAD\0multi_ack thin-pack side-band symref=HEAD:refs/heads/main\n"
        )
        assert extract_ref_hash(stream) == HASH

    def test_hash_without_capabilities(self):
        stream = _advertisement(HASH.encode() + b" refs/heads/main\n")
        assert extract_ref_hash(stream) == HASH

    def test_short_opaque_token(self):
        """해시 길이/형식을 가정하지 않는다"""
        stream = _advertisement(b"aaa111 HEAD\0caps\n")
        assert extract_ref_hash(stream) == "aaa111"

    def test_token_is_case_sensitive(self):
        stream = _advertisement(b"AbC123 HEAD\0caps\n")
        assert extract_ref_hash(stream) == "AbC123"

    def test_token_ends_at_nul(self):
        stream = _advertisement(b"aaa111\0caps\n")
        assert extract_ref_hash(stream) == "aaa111"

    def test_reads_across_partial_reads(self):
        data = _advertisement(b"bbb222 HEAD\0caps\n").getvalue()
        assert extract_ref_hash(_TrickleStream(data)) == "bbb222"

    def test_stops_after_second_frame(self):
        stream = _advertisement(b"ccc333 HEAD\0caps\n")
        extract_ref_hash(stream)
        # 세 번째 프레임은 읽지 않음
        assert read_frame(stream) == b"ffff refs/heads/dev\n"

    def test_single_frame_is_eof(self):
        stream = io.BytesIO(encode_pkt_line(b"# service=git-upload-pack\n"))
        with pytest.raises(UnexpectedEof):
            extract_ref_hash(stream)

    def test_empty_stream_is_eof(self):
        with pytest.raises(UnexpectedEof):
            extract_ref_hash(io.BytesIO(b""))

    def test_truncated_second_frame_is_eof(self):
        data = encode_pkt_line(b"banner\n") + encode_pkt_line(b"aaa111 HEAD\n")[:-3]
        with pytest.raises(UnexpectedEof):
            extract_ref_hash(io.BytesIO(data))

    def test_invalid_length_in_first_frame(self):
        with pytest.raises(MalformedFrame):
            extract_ref_hash(io.BytesIO(b"0002" + encode_pkt_line(b"aaa111 HEAD\n")))

    def test_flush_as_second_frame(self):
        data = encode_pkt_line(b"banner\n") + b"0000"
        with pytest.raises(MalformedFrame):
            extract_ref_hash(io.BytesIO(data))

    def test_empty_token_before_nul(self):
        stream = _advertisement(b"\0caps\n")
        with pytest.raises(MalformedFrame):
            extract_ref_hash(stream)

    def test_whitespace_only_payload(self):
        stream = _advertisement(b"   \n")
        with pytest.raises(MalformedFrame):
            extract_ref_hash(stream)

    def test_non_ascii_token(self):
        """비 ASCII 바이트가 섞인 토큰은 치환하지 않고 오류"""
        stream = _advertisement(b"abc\xff123 HEAD\0caps\n")
        with pytest.raises(MalformedFrame):
            extract_ref_hash(stream)

    def test_errors_share_base_class(self):
        assert issubclass(MalformedFrame, ProtocolError)
        assert issubclass(UnexpectedEof, ProtocolError)
