"""
Shared pytest fixtures and configuration for all tests.
"""

import socket
from unittest.mock import patch

import httpx
import pytest


def addrinfo(*ips: str) -> list[tuple]:
    """Fake socket.getaddrinfo answer for the given addresses."""
    return [
        (
            socket.AF_INET6 if ":" in ip else socket.AF_INET,
            socket.SOCK_STREAM,
            socket.IPPROTO_TCP,
            "",
            (ip, 0),
        )
        for ip in ips
    ]


@pytest.fixture
def public_dns():
    """Every hostname resolves to a public address."""
    with patch(
        "linkpeek.utils.security.socket.getaddrinfo",
        return_value=addrinfo("93.184.216.34"),
    ) as mock:
        yield mock


@pytest.fixture
def mock_client_factory():
    """Build an httpx.AsyncClient whose requests are answered by ``handler``."""

    def _make(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make


@pytest.fixture
def sample_html():
    """A page carrying every kind of preview metadata."""
    return """<!doctype html>
<html>
  <head>
    <title>Fallback Title</title>
    <meta property="og:title" content="OG Title" />
    <meta property="og:description" content="OG Description" />
    <meta property="og:image" content="/images/hero.png" />
    <meta property="og:image:width" content="1200" />
    <meta property="og:image:height" content="630" />
    <meta property="og:site_name" content="Example Site" />
    <link rel="icon" href="/favicon.ico" />
  </head>
  <body><p>Hello</p></body>
</html>"""
