"""
Unit tests for the route table.
"""

import pytest

from wiredhttp.config import ConfigurationError
from wiredhttp.http import DuplicateRouteError, Route, RouteTable


class PathRoute:
    """Answers with its own pattern."""

    def __init__(self, pattern: str):
        self.pattern = pattern

    def serve(self, request, writer):
        writer.write(f"{request.method} {self.pattern}")


class OtherRoute(PathRoute):
    pass


class TestRouteTable:

    def test_dispatch_by_path(self, exchange):
        table = RouteTable([PathRoute("/a"), PathRoute("/b")])

        response = exchange(table, b"GET /b HTTP/1.1\r\nHost: t\r\n\r\n").response()
        assert response.status == 200
        assert response.body == b"GET /b"

    def test_query_string_is_ignored(self, exchange):
        table = RouteTable([PathRoute("/a")])

        response = exchange(table, b"GET /a?x=1 HTTP/1.1\r\nHost: t\r\n\r\n").response()
        assert response.body == b"GET /a"

    @pytest.mark.parametrize("method", ["GET", "POST", "PUT", "DELETE", "PATCH"])
    def test_any_method_matches(self, exchange, method):
        table = RouteTable([PathRoute("/a")])

        response = exchange(table, f"{method} /a HTTP/1.1\r\nHost: t\r\n\r\n".encode()).response()
        assert response.body == f"{method} /a".encode()

    def test_miss_is_404(self, exchange):
        table = RouteTable([PathRoute("/a")])

        response = exchange(table, b"GET /missing HTTP/1.1\r\nHost: t\r\n\r\n").response()
        assert response.status == 404
        assert response.body == b"404 page not found\n"
        assert response.headers["content-type"] == "text/plain; charset=utf-8"

    @pytest.mark.parametrize("path", ["/echo/", "/ECHO", "/echo/x", "/"])
    def test_exact_match_only(self, path):
        table = RouteTable([PathRoute("/echo")])
        assert table.match(path) is None

    def test_empty_table_answers_404(self, exchange):
        response = exchange(RouteTable([]), b"GET / HTTP/1.1\r\nHost: t\r\n\r\n").response()
        assert response.status == 404


class TestRegistration:

    def test_duplicate_pattern_rejected(self):
        with pytest.raises(DuplicateRouteError) as exc_info:
            RouteTable([PathRoute("/a"), OtherRoute("/a")])

        error = exc_info.value
        assert isinstance(error, ConfigurationError)
        assert error.pattern == "/a"
        assert "PathRoute" in str(error)
        assert "OtherRoute" in str(error)

    @pytest.mark.parametrize("pattern", ["echo", "", None])
    def test_pattern_must_be_absolute(self, pattern):
        with pytest.raises(ConfigurationError):
            RouteTable([PathRoute(pattern)])

    def test_patterns_keep_registration_order(self):
        table = RouteTable([PathRoute("/z"), PathRoute("/a")])

        assert table.patterns == ["/z", "/a"]
        assert len(table) == 2
        assert "/a" in table
        assert "/b" not in table
        assert repr(table) == "RouteTable(['/z', '/a'])"

    def test_route_protocol(self):
        assert isinstance(PathRoute("/a"), Route)
        assert not isinstance(object(), Route)
