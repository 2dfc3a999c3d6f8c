"""Site analyzer: scoring rules, header audit, fingerprinting and fault tolerance."""
import asyncio
import time
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from dxmonitor.models import MonitorState
from dxmonitor.services.analyzer import (
    SiteAnalyzer,
    audit_security_headers,
    days_until,
    fingerprint_technology,
    load_grade,
    performance_score,
)

ALL_SECURITY_HEADERS = {
    "strict-transport-security": "max-age=63072000",
    "content-security-policy": "default-src 'self'",
    "x-frame-options": "DENY",
    "x-content-type-options": "nosniff",
    "x-xss-protection": "1; mode=block",
    "referrer-policy": "no-referrer",
    "permissions-policy": "camera=()",
}


def test_no_security_headers_scores_zero():
    audit = audit_security_headers({"content-type": "text/html"})

    assert audit.score == 0
    assert not audit.has_hsts
    assert not audit.has_cors


def test_all_security_headers_score_hundred():
    audit = audit_security_headers(ALL_SECURITY_HEADERS)

    assert audit.score == 100
    assert audit.has_hsts and audit.has_csp and audit.has_permissions_policy


def test_cors_header_is_reported_but_not_scored():
    audit = audit_security_headers({"access-control-allow-origin": "*"})

    assert audit.has_cors
    assert audit.score == 0


def test_partial_security_headers_round_half_up():
    # 3 of 7 -> 42.86 -> 43
    headers = {
        "strict-transport-security": "max-age=1",
        "x-frame-options": "SAMEORIGIN",
        "referrer-policy": "same-origin",
    }
    assert audit_security_headers(headers).score == 43


@pytest.mark.parametrize(
    "response_time, is_secure, compressed, security, expected",
    [
        (100, True, True, 100, 100),  # 100 + 20 clamped
        (150, True, True, 0, 100),
        (250, True, True, 0, 95),
        (600, True, True, 0, 90),
        (1500, True, True, 0, 75),
        (3500, False, False, 0, 30),
        (None, False, False, 0, 20),
        (5000, False, False, 50, 40),
    ],
)
def test_performance_score(response_time, is_secure, compressed, security, expected):
    assert performance_score(response_time, is_secure, compressed, security) == expected


def test_performance_score_never_negative():
    assert performance_score(None, False, False, 0) >= 0
    assert performance_score(10000, False, False, 0) == 30


@pytest.mark.parametrize(
    "response_time, is_secure, compressed, expected",
    [
        (None, True, True, "F"),
        (100, True, True, "A+"),
        (100, True, False, "A+"),  # exactly 90
        (250, True, False, "A"),  # 85
        (100, False, True, "A"),  # 85
        (600, False, True, "B"),  # 75
        (1500, True, False, "C"),  # 65
        (1500, False, True, "C"),  # 60
        (3500, True, True, "C"),  # 60
        (3500, True, False, "D"),  # 50
        (3500, False, False, "F"),  # 35
    ],
)
def test_load_grade(response_time, is_secure, compressed, expected):
    assert load_grade(response_time, is_secure, compressed) == expected


def test_fingerprint_cloudflare_express():
    stack = fingerprint_technology({
        "server": "cloudflare",
        "cf-ray": "8a1b2c3d4e5f-AMS",
        "x-powered-by": "Express",
    })

    assert stack.server == "Cloudflare"
    assert stack.cdn == "Cloudflare"
    assert stack.framework == "Express"
    assert stack.languages == ("JavaScript",)
    assert stack.cms is None


def test_fingerprint_wordpress_on_nginx():
    stack = fingerprint_technology({
        "server": "nginx/1.24.0",
        "x-powered-by": "PHP/8.2.1",
        "x-pingback": "https://blog.example.com/xmlrpc.php",
    })

    assert stack.server == "Nginx"
    assert stack.cms == "WordPress"
    assert stack.framework is None
    assert stack.languages == ("PHP",)


def test_fingerprint_unknown_server_kept_verbatim():
    stack = fingerprint_technology({"server": "HomeGrown/0.1", "x-vercel-id": "fra1::abc"})

    assert stack.server == "HomeGrown/0.1"
    assert stack.cdn == "Vercel"


def test_fingerprint_empty_headers():
    stack = fingerprint_technology({})

    assert stack.server is None
    assert stack.framework is None
    assert stack.cdn is None
    assert stack.cms is None
    assert stack.languages == ()


@pytest.fixture
def offline_analyzer(monkeypatch):
    """Analyzer whose DNS and TLS steps do not touch the network."""

    def build(handler):
        analyzer = SiteAnalyzer(transport=httpx.MockTransport(handler))

        async def fake_resolve(hostname):
            return "203.0.113.10", 4

        async def no_tls(hostname, port):
            return None

        monkeypatch.setattr(analyzer, "_resolve", fake_resolve)
        monkeypatch.setattr(analyzer, "_inspect_tls", no_tls)
        return analyzer

    return build


async def test_analyze_collects_report(offline_analyzer):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/":
            return httpx.Response(302, headers={"Location": "http://www.example.com/home"})
        headers = dict(ALL_SECURITY_HEADERS)
        headers.update({
            "Server": "nginx",
            "Content-Type": "text/html; charset=utf-8",
            "Cache-Control": "max-age=600",
        })
        return httpx.Response(200, headers=headers, content=b"<html>hello</html>")

    report = await offline_analyzer(handler).analyze("http://www.example.com/")

    assert report.status == MonitorState.UP
    assert report.status_code == 200
    assert report.status_text == "OK"
    assert report.hostname == "www.example.com"
    assert report.protocol == "http"
    assert report.ip_address == "203.0.113.10"
    assert report.dns_time == 4
    assert report.is_secure is False
    assert report.ssl_info is None
    assert report.redirected is True
    assert report.redirect_count == 1
    assert report.headers["server"] == "nginx"
    assert report.content_type == "text/html; charset=utf-8"
    assert report.cache_control == "max-age=600"
    assert report.content_length == len(b"<html>hello</html>")
    assert report.compression is None
    assert report.security_headers.score == 100
    assert report.tech_stack.server == "Nginx"
    assert report.response_time is not None
    assert report.timing.ttfb == report.ttfb
    assert report.timing.total == report.response_time
    # Fast but insecure and uncompressed: 100 - 20 - 10 + 20
    assert report.performance_score == 90
    assert report.load_grade == "B"


async def test_analyze_error_status_is_down(offline_analyzer):
    report = await offline_analyzer(lambda request: httpx.Response(500)).analyze("http://broken.example.com/")

    assert report.status == MonitorState.DOWN
    assert report.status_code == 500


async def test_analyze_fetch_failure_yields_worst_case(offline_analyzer):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    report = await offline_analyzer(handler).analyze("https://down.example.com/")

    assert report.status == MonitorState.DOWN
    assert report.performance_score == 0
    assert report.security_headers.score == 0
    assert report.load_grade == "F"
    assert report.status_code is None
    assert report.response_time is None
    assert report.is_secure is True
    assert report.tested_at is not None


@pytest.mark.parametrize("url", ["not a url", "ftp://files.example.com/", ""])
async def test_analyze_invalid_url_does_not_raise(url):
    report = await SiteAnalyzer().analyze(url)

    assert report.status == MonitorState.DOWN
    assert report.load_grade == "F"
    assert report.performance_score == 0


async def test_http2_flag_follows_negotiated_version(offline_analyzer):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, extensions={"http_version": b"HTTP/2"})

    report = await offline_analyzer(handler).analyze("https://h2.example.com/")

    assert report.http_version == "HTTP/2"
    assert report.http2 is True


async def test_http11_response_is_not_http2(offline_analyzer):
    report = await offline_analyzer(lambda request: httpx.Response(200)).analyze("http://www.example.com/")

    assert report.http2 is False


async def test_endless_body_degrades_to_down_report(dripping_server):
    analyzer = SiteAnalyzer(timeout=1.0)
    started = time.monotonic()

    report = await asyncio.wait_for(analyzer.analyze(f"{dripping_server}/live.mp3"), timeout=6)

    assert report.status == MonitorState.DOWN
    assert report.load_grade == "F"
    assert report.ip_address == "127.0.0.1"
    assert time.monotonic() - started < 4


async def test_resolve_localhost_measures_lookup():
    address, elapsed = await SiteAnalyzer()._resolve("localhost")

    assert address in ("127.0.0.1", "::1")
    assert elapsed is not None and elapsed >= 0


async def test_resolve_failure_yields_nothing():
    assert await SiteAnalyzer(dns_timeout=5.0)._resolve("no-such-host.invalid") == (None, None)


async def test_tls_inspection_of_closed_port_is_none(closed_port):
    assert await SiteAnalyzer(tls_timeout=2.0)._inspect_tls("127.0.0.1", closed_port) is None


async def test_tls_inspection_of_silent_server_times_out():
    async def silent(reader, writer):
        await reader.read()
        writer.close()

    server = await asyncio.start_server(silent, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        started = time.monotonic()
        handshake = await SiteAnalyzer(tls_timeout=0.5)._inspect_tls("127.0.0.1", port)
    finally:
        server.close()

    assert handshake is None
    assert time.monotonic() - started < 3


@pytest.mark.parametrize(
    "remaining, expected",
    [
        (timedelta(days=1, hours=4, minutes=48), 2),  # 1.2 days
        (timedelta(days=30), 30),
        (timedelta(seconds=1), 1),
        (timedelta(0), 0),
        (-timedelta(days=2, hours=12), -2),
    ],
)
def test_days_until_rounds_up(remaining, expected):
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    assert days_until(now + remaining, now) == expected
