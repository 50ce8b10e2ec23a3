import pytest

from wsclient.core.Endpoint import Endpoint, resolve_endpoint
from wscommon.errors import InvalidEndpoint


@pytest.mark.parametrize(
    "uri, expected",
    [
        ("ws://example.com", Endpoint("ws", "example.com", 80, "/")),
        ("wss://example.com", Endpoint("wss", "example.com", 443, "/")),
        ("ws://example.com:8080/game", Endpoint("ws", "example.com", 8080, "/game")),
        ("wss://example.com:8443/a/b?x=1", Endpoint("wss", "example.com", 8443, "/a/b?x=1")),
        ("ws://127.0.0.1:9000", Endpoint("ws", "127.0.0.1", 9000, "/")),
    ],
)
def test_resolve_endpoint(uri, expected):
    assert resolve_endpoint(uri) == expected


@pytest.mark.parametrize(
    "uri",
    [
        "http://example.com/",
        "ftp://example.com/",
        "example.com:80",
        "ws://",
        "ws://example.com:notaport/",
    ],
)
def test_invalid_uris_are_rejected(uri):
    with pytest.raises(InvalidEndpoint):
        resolve_endpoint(uri)


def test_invalid_endpoint_is_a_value_error():
    with pytest.raises(ValueError):
        resolve_endpoint("https://example.com/")


def test_authority_omits_default_port():
    assert resolve_endpoint("wss://example.com/").authority == "example.com"
    assert resolve_endpoint("wss://example.com:444/").authority == "example.com:444"
    assert resolve_endpoint("ws://example.com/").hostport == "example.com:80"


def test_ipv6_host_is_bracketed():
    endpoint = resolve_endpoint("ws://[::1]:8765/")
    assert endpoint.host == "::1"
    assert endpoint.hostport == "[::1]:8765"
    assert endpoint.authority == "[::1]:8765"


def test_endpoint_is_immutable():
    endpoint = resolve_endpoint("ws://example.com/")
    with pytest.raises(AttributeError):
        endpoint.port = 81
