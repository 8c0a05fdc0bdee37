"""
Unit tests for HTTP request parsing.
"""

import pytest

from wiredhttp.http.request import (
    BodyReadError,
    BodyTooLargeError,
    HTTPParseError,
    MemorySource,
    RequestBody,
    RequestParser,
    parse_request,
)


def head_of(raw: bytes) -> bytes:
    return raw[:raw.index(b"\r\n\r\n")]


class TestRequestParser:
    """Tests for RequestParser.parse_head."""

    def test_parse_simple_get(self, sample_get_request: bytes):
        parser = RequestParser()
        request = parser.parse_head(head_of(sample_get_request), ("127.0.0.1", 12345))

        assert request.method == "GET"
        assert request.path == "/hello"
        assert request.target == "/hello?page=1&limit=10"
        assert request.version == "HTTP/1.1"
        assert request.client_address == ("127.0.0.1", 12345)

    def test_parse_headers(self, sample_get_request: bytes):
        request = parse_request(sample_get_request)

        assert request.host == "localhost:8080"
        assert request.user_agent == "pytest"
        assert request.headers["accept"] == "text/plain"
        assert request.get_header("ACCEPT") == "text/plain"
        assert request.is_keep_alive is True

    def test_parse_query_params(self, sample_get_request: bytes):
        request = parse_request(sample_get_request)

        assert request.get_query("page") == "1"
        assert request.get_query("limit") == "10"
        assert request.get_query("missing") is None
        assert request.get_query("missing", "default") == "default"

    def test_parse_post_with_body(self, sample_post_request: bytes):
        request = parse_request(sample_post_request)

        assert request.method == "POST"
        assert request.content_type == "text/plain"
        assert request.content_length == 5
        assert request.body.read() == b"world"
        assert request.body.complete

    def test_path_is_percent_decoded(self):
        request = parse_request(b"GET /caf%C3%A9?q=hello%20world HTTP/1.1\r\nHost: t\r\n\r\n")

        assert request.path == "/café"
        assert request.get_query("q") == "hello world"

    def test_absolute_form_target(self):
        request = parse_request(b"GET http://example.com/echo?x=1 HTTP/1.1\r\nHost: example.com\r\n\r\n")

        assert request.path == "/echo"
        assert request.get_query("x") == "1"

    @pytest.mark.parametrize("method", ["GET", "POST", "PUT", "DELETE", "PATCH", "PURGE", "M-SEARCH"])
    def test_any_token_method_accepted(self, method: str):
        request = parse_request(f"{method} /echo HTTP/1.1\r\nHost: t\r\n\r\n".encode())
        assert request.method == method

    def test_parse_invalid_request_line(self):
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(b"GET\r\nHost: test\r\n\r\n")

        assert exc_info.value.status_code == 400

    def test_relative_target_rejected(self):
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(b"GET echo HTTP/1.1\r\nHost: test\r\n\r\n")

        assert exc_info.value.status_code == 400

    def test_unsupported_version(self):
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(b"GET / HTTP/2.0\r\nHost: test\r\n\r\n")

        assert exc_info.value.status_code == 505

    def test_http11_requires_host(self):
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(b"GET / HTTP/1.1\r\nAccept: */*\r\n\r\n")

        assert exc_info.value.status_code == 400

    def test_http10_without_host(self):
        request = parse_request(b"GET /hello HTTP/1.0\r\n\r\n")

        assert request.version == "HTTP/1.0"
        assert request.host == ""

    def test_head_too_large(self):
        parser = RequestParser(max_header_size=1024)
        head = b"GET / HTTP/1.1\r\nHost: t\r\nX-Big: " + b"a" * 2000

        with pytest.raises(HTTPParseError) as exc_info:
            parser.parse_head(head)

        assert exc_info.value.status_code == 431

    def test_invalid_header_line(self):
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(b"GET / HTTP/1.1\r\nHost: t\r\nno colon here\r\n\r\n")

        assert exc_info.value.status_code == 400

    @pytest.mark.parametrize("value", [b"a\rX-Injected: 1", b"a\nb", b"a\x00b", b"a\n"])
    def test_control_characters_in_value_rejected(self, value: bytes):
        raw = b"GET / HTTP/1.1\r\nHost: t\r\nContent-Type: " + value + b"\r\n\r\n"

        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(raw)

        assert exc_info.value.status_code == 400

    def test_tab_in_value_allowed(self):
        request = parse_request(b"GET / HTTP/1.1\r\nHost: t\r\nX-A: one\ttwo\r\n\r\n")

        assert request.headers["x-a"] == "one\ttwo"

    def test_obsolete_line_folding_rejected(self):
        with pytest.raises(HTTPParseError):
            parse_request(b"GET / HTTP/1.1\r\nHost: t\r\nX-A: one\r\n two\r\n\r\n")

    def test_repeated_headers_joined(self):
        request = parse_request(b"GET / HTTP/1.1\r\nHost: t\r\nAccept: a\r\nAccept: b\r\n\r\n")

        assert request.headers["accept"] == "a, b"

    def test_header_whitespace_trimmed(self):
        request = parse_request(b"GET / HTTP/1.1\r\nHost:   t  \r\nX-Empty:\r\n\r\n")

        assert request.host == "t"
        assert request.headers["x-empty"] == ""

    def test_leading_blank_lines_ignored(self):
        parser = RequestParser()
        request = parser.parse_head(b"\r\n\r\nGET / HTTP/1.1\r\nHost: t")

        assert request.path == "/"


class TestFraming:
    """Content-Length / Transfer-Encoding validation."""

    def test_invalid_content_length(self):
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(b"POST / HTTP/1.1\r\nHost: t\r\nContent-Length: abc\r\n\r\n")

        assert exc_info.value.status_code == 400

    @pytest.mark.parametrize("value", [b"\xb2", b"1\xb9", b"\xbd"])
    def test_non_ascii_digits_in_content_length(self, value: bytes):
        raw = b"POST / HTTP/1.1\r\nHost: t\r\nContent-Length: " + value + b"\r\n\r\nab"

        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(raw)

        assert exc_info.value.status_code == 400

    def test_negative_content_length(self):
        with pytest.raises(HTTPParseError):
            parse_request(b"POST / HTTP/1.1\r\nHost: t\r\nContent-Length: -1\r\n\r\n")

    def test_conflicting_content_lengths(self):
        raw = b"POST / HTTP/1.1\r\nHost: t\r\nContent-Length: 5\r\nContent-Length: 6\r\n\r\nhello!"

        with pytest.raises(HTTPParseError):
            parse_request(raw)

    def test_identical_content_lengths_accepted(self):
        raw = b"POST / HTTP/1.1\r\nHost: t\r\nContent-Length: 5\r\nContent-Length: 5\r\n\r\nhello"

        request = parse_request(raw)

        assert request.content_length == 5
        assert request.body.read() == b"hello"

    def test_unknown_transfer_encoding(self):
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(b"POST / HTTP/1.1\r\nHost: t\r\nTransfer-Encoding: gzip\r\n\r\n")

        assert exc_info.value.status_code == 501

    def test_chunked_overrides_content_length(self):
        raw = (
            b"POST / HTTP/1.1\r\nHost: t\r\n"
            b"Transfer-Encoding: chunked\r\nContent-Length: 100\r\n\r\n"
            b"3\r\nabc\r\n0\r\n\r\n"
        )
        request = parse_request(raw)

        assert request.is_chunked
        assert request.content_length is None
        assert request.body.read() == b"abc"

    def test_no_body_without_framing(self):
        request = parse_request(b"GET / HTTP/1.1\r\nHost: t\r\n\r\n")

        assert request.body.complete
        assert request.body.read() == b""


class TestConnectionSemantics:

    @pytest.mark.parametrize("version,connection,expected", [
        ("HTTP/1.1", None, True),
        ("HTTP/1.1", "close", False),
        ("HTTP/1.1", "Keep-Alive", True),
        ("HTTP/1.0", None, False),
        ("HTTP/1.0", "keep-alive", True),
        ("HTTP/1.0", "close", False),
    ])
    def test_keep_alive(self, version, connection, expected):
        lines = [f"GET / {version}", "Host: t"]
        if connection:
            lines.append(f"Connection: {connection}")
        request = parse_request(("\r\n".join(lines) + "\r\n\r\n").encode())

        assert request.is_keep_alive is expected

    def test_expects_continue(self):
        request = parse_request(b"POST / HTTP/1.1\r\nHost: t\r\nExpect: 100-Continue\r\nContent-Length: 1\r\n\r\nx")
        assert request.expects_continue

    def test_expect_ignored_on_http10(self):
        request = parse_request(b"POST / HTTP/1.0\r\nExpect: 100-continue\r\nContent-Length: 1\r\n\r\nx")
        assert not request.expects_continue


class TestRequestBody:
    """Tests for streaming body reads."""

    def test_read_in_pieces(self):
        body = RequestBody.from_bytes(b"hello world")

        assert body.read(5) == b"hello"
        assert not body.complete
        assert body.read() == b" world"
        assert body.complete
        assert body.read() == b""
        assert body.bytes_read == 11

    def test_read_zero(self):
        body = RequestBody.from_bytes(b"abc")
        assert body.read(0) == b""
        assert body.read() == b"abc"

    def test_chunked_decoding(self):
        body = RequestBody.from_bytes(b"5\r\nhello\r\n6\r\n world\r\n0\r\n\r\n", chunked=True)

        assert body.read() == b"hello world"
        assert body.complete

    def test_chunked_incremental_reads(self):
        body = RequestBody.from_bytes(b"a\r\n0123456789\r\n0\r\n\r\n", chunked=True)

        assert body.read(4) == b"0123"
        assert body.read(100) == b"456789"
        assert body.read(100) == b""
        assert body.complete

    def test_chunk_extensions_and_trailers(self):
        raw = b"5;name=value\r\nhello\r\n0\r\nX-Checksum: abc\r\n\r\n"
        body = RequestBody.from_bytes(raw, chunked=True)

        assert body.read() == b"hello"

    def test_uppercase_hex_chunk_size(self):
        body = RequestBody.from_bytes(b"A\r\n0123456789\r\n0\r\n\r\n", chunked=True)
        assert body.read() == b"0123456789"

    @pytest.mark.parametrize("raw", [
        b"zz\r\nhello\r\n0\r\n\r\n",      # not hex
        b"\r\nhello\r\n0\r\n\r\n",        # empty size
        b"5\r\nhelloXX0\r\n\r\n",          # missing CRLF after data
        b"5\r\nhel",                       # truncated data
        b"5\r\nhello\r\n",                 # no last chunk
    ])
    def test_malformed_chunked(self, raw: bytes):
        body = RequestBody.from_bytes(raw, chunked=True)

        with pytest.raises(BodyReadError):
            body.read()

    def test_errors_are_sticky(self):
        body = RequestBody.from_bytes(b"zz\r\n", chunked=True)

        with pytest.raises(BodyReadError):
            body.read()
        with pytest.raises(BodyReadError):
            body.read(1)

    def test_truncated_content_length(self):
        request = parse_request(b"POST / HTTP/1.1\r\nHost: t\r\nContent-Length: 10\r\n\r\nshort")

        with pytest.raises(BodyReadError, match="unexpected EOF"):
            request.body.read()

    def test_max_size_content_length(self):
        body = RequestBody.from_bytes(b"x" * 100, max_size=10)

        with pytest.raises(BodyTooLargeError, match="too large"):
            body.read()

    def test_max_size_chunked(self):
        raw = b"8\r\n12345678\r\n8\r\n12345678\r\n0\r\n\r\n"
        body = RequestBody.from_bytes(raw, chunked=True, max_size=10)

        assert body.read(8) == b"12345678"
        with pytest.raises(BodyReadError, match="too large"):
            body.read()

    def test_transport_error_becomes_body_read_error(self):
        class ResetSource:
            def read_some(self, max_bytes):
                raise ConnectionResetError(104, "Connection reset by peer")

            def read_line(self, limit):
                raise ConnectionResetError(104, "Connection reset by peer")

        body = RequestBody(ResetSource(), content_length=5)

        with pytest.raises(BodyReadError) as exc_info:
            body.read()
        assert isinstance(exc_info.value.__cause__, ConnectionResetError)

    def test_first_read_callback_runs_once(self):
        calls = []
        body = RequestBody(MemorySource(b"abcdef"), content_length=6, on_first_read=lambda: calls.append(1))

        assert body.awaiting_continue
        body.read(3)
        body.read(3)

        assert calls == [1]
        assert not body.awaiting_continue

    def test_first_read_callback_skipped_for_empty_body(self):
        calls = []
        body = RequestBody(MemorySource(b""), content_length=0, on_first_read=lambda: calls.append(1))

        assert body.read() == b""
        assert calls == []

    def test_drain(self):
        body = RequestBody.from_bytes(b"x" * 100)
        body.read(10)

        assert body.drain(limit=1000) is True
        assert body.complete

    def test_drain_over_limit(self):
        body = RequestBody.from_bytes(b"x" * 1000)

        assert body.drain(limit=10) is False

    def test_drain_refused_while_awaiting_continue(self):
        body = RequestBody(MemorySource(b"abc"), content_length=3, on_first_read=lambda: None)

        assert body.drain(limit=1000) is False

    def test_parser_attaches_continue_callback_only_when_expected(self):
        parser = RequestParser()
        calls = []

        plain = parser.parse_head(b"POST / HTTP/1.1\r\nHost: t\r\nContent-Length: 1")
        parser.attach_body(plain, MemorySource(b"x"), on_first_read=lambda: calls.append("plain"))
        plain.body.read()

        expecting = parser.parse_head(b"POST / HTTP/1.1\r\nHost: t\r\nExpect: 100-continue\r\nContent-Length: 1")
        parser.attach_body(expecting, MemorySource(b"x"), on_first_read=lambda: calls.append("expect"))
        expecting.body.read()

        assert calls == ["expect"]
