"""Site analyzer - one-shot deep diagnostics for the "test this site" feature.

The analysis runs several independent steps against a URL:

1. DNS resolution (latency and first resolved address)
2. TLS inspection for https URLs (certificate, protocol, cipher, handshake timing)
3. Full GET of the page (TTFB and download timing, headers, redirects)
4. Security header audit, technology fingerprinting, scoring and grading

Each step degrades to ``None`` on failure instead of aborting the analysis,
and :meth:`SiteAnalyzer.analyze` never raises. Nothing here touches stored
monitor state.
"""
import asyncio
import logging
import math
import socket
import ssl
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Tuple

import httpx
from cryptography import x509
from cryptography.x509.oid import NameOID

from ..config import settings
from ..models import MonitorState
from ..utils.mathutils import clamp, round_half_up
from ..utils.timeutils import utcnow

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400

# (report field, response header) pairs counted by the security score
SECURITY_HEADER_CHECKS = (
    ("has_hsts", "strict-transport-security"),
    ("has_csp", "content-security-policy"),
    ("has_x_frame_options", "x-frame-options"),
    ("has_x_content_type_options", "x-content-type-options"),
    ("has_x_xss_protection", "x-xss-protection"),
    ("has_referrer_policy", "referrer-policy"),
    ("has_permissions_policy", "permissions-policy"),
)
# Reported alongside the audit, not scored
CORS_HEADER = "access-control-allow-origin"

# (threshold ms, penalty) checked from slowest down; first match applies
RESPONSE_TIME_PENALTIES = (
    (3000, 40),
    (1000, 25),
    (500, 10),
    (200, 5),
)

GRADE_THRESHOLDS = (
    (90, "A+"),
    (80, "A"),
    (70, "B"),
    (60, "C"),
    (50, "D"),
)

# Substring of the Server header -> label
SERVER_SIGNATURES = (
    ("cloudflare", "Cloudflare"),
    ("nginx", "Nginx"),
    ("openresty", "OpenResty"),
    ("apache", "Apache"),
    ("microsoft-iis", "Microsoft IIS"),
    ("litespeed", "LiteSpeed"),
    ("caddy", "Caddy"),
    ("envoy", "Envoy"),
    ("gunicorn", "Gunicorn"),
    ("uvicorn", "Uvicorn"),
    ("gws", "Google Web Server"),
    ("amazons3", "Amazon S3"),
    ("vercel", "Vercel"),
    ("netlify", "Netlify"),
)

# Substring of X-Powered-By -> (framework, language)
POWERED_BY_SIGNATURES = (
    ("next.js", "Next.js", "JavaScript"),
    ("nuxt", "Nuxt", "JavaScript"),
    ("express", "Express", "JavaScript"),
    ("asp.net", "ASP.NET", "C#"),
    ("php", None, "PHP"),
    ("django", "Django", "Python"),
    ("flask", "Flask", "Python"),
    ("phusion passenger", "Ruby on Rails", "Ruby"),
    ("rails", "Ruby on Rails", "Ruby"),
    ("servlet", None, "Java"),
    ("jsp", None, "Java"),
)

# Header present -> CDN / hosting platform
CDN_HEADER_SIGNATURES = (
    ("cf-ray", "Cloudflare"),
    ("x-amz-cf-id", "Amazon CloudFront"),
    ("x-vercel-id", "Vercel"),
    ("x-nf-request-id", "Netlify"),
    ("x-fastly-request-id", "Fastly"),
    ("x-akamai-transformed", "Akamai"),
    ("x-azure-ref", "Azure Front Door"),
)

# Header present -> CMS
CMS_HEADER_SIGNATURES = (
    ("x-drupal-cache", "Drupal"),
    ("x-drupal-dynamic-cache", "Drupal"),
    ("x-shopify-stage", "Shopify"),
    ("x-wix-request-id", "Wix"),
    ("x-pingback", "WordPress"),
)

# Substring of X-Generator -> CMS
GENERATOR_SIGNATURES = (
    ("wordpress", "WordPress"),
    ("drupal", "Drupal"),
    ("joomla", "Joomla"),
    ("ghost", "Ghost"),
    ("hugo", "Hugo"),
)

# Session cookie name -> language
COOKIE_LANGUAGE_SIGNATURES = (
    ("phpsessid", "PHP"),
    ("jsessionid", "Java"),
    ("asp.net_sessionid", "C#"),
)


@dataclass(frozen=True)
class SecurityHeaders:
    has_hsts: bool = False
    has_csp: bool = False
    has_x_frame_options: bool = False
    has_x_content_type_options: bool = False
    has_x_xss_protection: bool = False
    has_referrer_policy: bool = False
    has_permissions_policy: bool = False
    has_cors: bool = False
    score: int = 0


@dataclass(frozen=True)
class SSLInfo:
    valid: bool
    issuer: Optional[str] = None
    subject: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    days_until_expiry: Optional[int] = None
    protocol: Optional[str] = None
    cipher: Optional[str] = None


@dataclass(frozen=True)
class TechStack:
    server: Optional[str] = None
    framework: Optional[str] = None
    cdn: Optional[str] = None
    cms: Optional[str] = None
    languages: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TimingBreakdown:
    """Phase timings in milliseconds."""
    dns: Optional[int] = None
    connection: Optional[int] = None
    tls: Optional[int] = None
    ttfb: Optional[int] = None
    download: Optional[int] = None
    total: Optional[int] = None


@dataclass(frozen=True)
class SiteReport:
    """Everything learned about a URL in one analysis."""
    status: MonitorState
    tested_at: datetime
    protocol: str
    hostname: Optional[str] = None
    ip_address: Optional[str] = None
    is_secure: bool = False
    response_time: Optional[int] = None
    status_code: Optional[int] = None
    status_text: Optional[str] = None
    http_version: Optional[str] = None
    http2: bool = False
    headers: Dict[str, str] = field(default_factory=dict)
    server_info: Optional[str] = None
    content_type: Optional[str] = None
    content_length: Optional[int] = None
    compression: Optional[str] = None
    cache_control: Optional[str] = None
    redirected: bool = False
    redirect_count: int = 0
    dns_time: Optional[int] = None
    ttfb: Optional[int] = None
    timing: TimingBreakdown = field(default_factory=TimingBreakdown)
    ssl_info: Optional[SSLInfo] = None
    security_headers: SecurityHeaders = field(default_factory=SecurityHeaders)
    tech_stack: TechStack = field(default_factory=TechStack)
    performance_score: int = 0
    load_grade: str = "F"


@dataclass(frozen=True)
class _TLSHandshake:
    info: SSLInfo
    connect_ms: int
    handshake_ms: int


@dataclass(frozen=True)
class _FetchResult:
    status_code: int
    status_text: str
    http_version: str
    headers: Dict[str, str]
    redirect_count: int
    body_size: int
    ttfb_ms: int
    download_ms: int

    @property
    def total_ms(self) -> int:
        return self.ttfb_ms + self.download_ms


def audit_security_headers(headers: Mapping[str, str]) -> SecurityHeaders:
    """Check which protective headers are present (``headers`` keys lower-cased)."""
    present = {name: header in headers for name, header in SECURITY_HEADER_CHECKS}
    passed = sum(1 for ok in present.values() if ok)
    score = round_half_up(100 * passed / len(SECURITY_HEADER_CHECKS))
    return SecurityHeaders(has_cors=CORS_HEADER in headers, score=score, **present)


def fingerprint_technology(headers: Mapping[str, str]) -> TechStack:
    """Best-effort server/framework/CDN/CMS/language labels from response headers."""
    server_header = headers.get("server")
    powered_by = headers.get("x-powered-by", "").lower()
    languages: List[str] = []

    server = None
    if server_header:
        lowered = server_header.lower()
        server = next((label for sig, label in SERVER_SIGNATURES if sig in lowered), server_header)

    framework = None
    for sig, fw, language in POWERED_BY_SIGNATURES:
        if sig in powered_by:
            framework = framework or fw
            if language not in languages:
                languages.append(language)

    if "x-aspnet-version" in headers and "C#" not in languages:
        framework = framework or "ASP.NET"
        languages.append("C#")

    cookies = headers.get("set-cookie", "").lower()
    for sig, language in COOKIE_LANGUAGE_SIGNATURES:
        if sig in cookies and language not in languages:
            languages.append(language)

    cdn = next((label for header, label in CDN_HEADER_SIGNATURES if header in headers), None)
    if cdn is None and "cache-" in headers.get("x-served-by", ""):
        cdn = "Fastly"
    if cdn is None and server in ("Cloudflare", "Vercel", "Netlify"):
        cdn = server

    cms = next((label for header, label in CMS_HEADER_SIGNATURES if header in headers), None)
    generator = headers.get("x-generator", "").lower()
    if generator:
        cms = next((label for sig, label in GENERATOR_SIGNATURES if sig in generator), cms)
    if cms is None and "wp engine" in powered_by:
        cms = "WordPress"
    if cms == "WordPress" and "PHP" not in languages:
        languages.append("PHP")

    return TechStack(
        server=server,
        framework=framework,
        cdn=cdn,
        cms=cms,
        languages=tuple(languages),
    )


def _response_time_penalty(response_time: int) -> int:
    for threshold, penalty in RESPONSE_TIME_PENALTIES:
        if response_time > threshold:
            return penalty
    return 0


def performance_score(
    response_time: Optional[int],
    is_secure: bool,
    compressed: bool,
    security_score: int,
) -> int:
    """0-100 score from latency, transport security, compression and headers."""
    score = 100.0
    if response_time is None:
        score -= 50
    else:
        score -= _response_time_penalty(response_time)
    if not is_secure:
        score -= 20
    if not compressed:
        score -= 10
    score += security_score * 0.2
    return clamp(round_half_up(score), 0, 100)


def load_grade(response_time: Optional[int], is_secure: bool, compressed: bool) -> str:
    """Letter grade A+..F; an unmeasured response is always F."""
    if response_time is None:
        return "F"
    score = 100 - _response_time_penalty(response_time)
    if not is_secure:
        score -= 15
    if not compressed:
        score -= 10
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return "F"


def days_until(moment: datetime, now: datetime) -> int:
    """Whole days from ``now`` to ``moment``, rounded up (1.2 days -> 2)."""
    return math.ceil((moment - now).total_seconds() / SECONDS_PER_DAY)


def _name_attribute(name: x509.Name, *oids) -> Optional[str]:
    for oid in oids:
        attributes = name.get_attributes_for_oid(oid)
        if attributes:
            return str(attributes[0].value)
    return None


class SiteAnalyzer:
    """Runs the deep analysis; every network step is bounded by a timeout."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        tls_timeout: Optional[float] = None,
        dns_timeout: Optional[float] = None,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout if timeout is not None else settings.probe_timeout_seconds
        self.tls_timeout = tls_timeout if tls_timeout is not None else settings.tls_timeout_seconds
        self.dns_timeout = dns_timeout if dns_timeout is not None else settings.dns_timeout_seconds
        self.user_agent = user_agent or settings.user_agent
        self._transport = transport

    async def analyze(self, url: str) -> SiteReport:
        """Analyze ``url``. Always returns a report, never raises."""
        tested_at = utcnow()
        try:
            return await self._analyze(url, tested_at)
        except Exception:
            logger.exception(f"Site analysis failed for {url}")
            return SiteReport(status=MonitorState.DOWN, tested_at=tested_at, protocol="")

    async def _analyze(self, url: str, tested_at: datetime) -> SiteReport:
        try:
            parsed = httpx.URL(url)
        except (httpx.InvalidURL, TypeError):
            parsed = None
        if parsed is None or parsed.scheme not in ("http", "https") or not parsed.host:
            logger.info(f"Site analysis skipped, not an http(s) URL: {url!r}")
            return SiteReport(status=MonitorState.DOWN, tested_at=tested_at, protocol="")

        hostname = parsed.host
        is_secure = parsed.scheme == "https"

        ip_address, dns_ms = await self._resolve(hostname)

        handshake = None
        if is_secure:
            handshake = await self._inspect_tls(hostname, parsed.port or 443)

        fetch = await self._fetch(url)

        if fetch is None:
            return SiteReport(
                status=MonitorState.DOWN,
                tested_at=tested_at,
                protocol=parsed.scheme,
                hostname=hostname,
                ip_address=ip_address,
                is_secure=is_secure,
                dns_time=dns_ms,
                timing=TimingBreakdown(
                    dns=dns_ms,
                    connection=handshake.connect_ms if handshake else None,
                    tls=handshake.handshake_ms if handshake else None,
                ),
                ssl_info=handshake.info if handshake else None,
            )

        headers = fetch.headers
        compression = headers.get("content-encoding")
        security = audit_security_headers(headers)
        content_length = headers.get("content-length")

        return SiteReport(
            status=MonitorState.UP if fetch.status_code < 400 else MonitorState.DOWN,
            tested_at=tested_at,
            protocol=parsed.scheme,
            hostname=hostname,
            ip_address=ip_address,
            is_secure=is_secure,
            response_time=fetch.total_ms,
            status_code=fetch.status_code,
            status_text=fetch.status_text,
            http_version=fetch.http_version,
            http2=fetch.http_version == "HTTP/2",
            headers=headers,
            server_info=headers.get("server"),
            content_type=headers.get("content-type"),
            content_length=int(content_length) if content_length and content_length.isdigit() else fetch.body_size,
            compression=compression,
            cache_control=headers.get("cache-control"),
            redirected=fetch.redirect_count > 0,
            redirect_count=fetch.redirect_count,
            dns_time=dns_ms,
            ttfb=fetch.ttfb_ms,
            timing=TimingBreakdown(
                dns=dns_ms,
                connection=handshake.connect_ms if handshake else None,
                tls=handshake.handshake_ms if handshake else None,
                ttfb=fetch.ttfb_ms,
                download=fetch.download_ms,
                total=fetch.total_ms,
            ),
            ssl_info=handshake.info if handshake else None,
            security_headers=security,
            tech_stack=fingerprint_technology(headers),
            performance_score=performance_score(
                fetch.total_ms, is_secure, bool(compression), security.score
            ),
            load_grade=load_grade(fetch.total_ms, is_secure, bool(compression)),
        )

    async def _resolve(self, hostname: str) -> Tuple[Optional[str], Optional[int]]:
        """Resolve ``hostname``; returns (address, lookup ms) or (None, None)."""
        loop = asyncio.get_running_loop()
        start = time.monotonic()
        try:
            infos = await asyncio.wait_for(
                loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM),
                timeout=self.dns_timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug(f"DNS lookup failed for {hostname}: {e}")
            return None, None
        elapsed = int((time.monotonic() - start) * 1000)
        if not infos:
            return None, elapsed
        return infos[0][4][0], elapsed

    async def _inspect_tls(self, hostname: str, port: int) -> Optional[_TLSHandshake]:
        """Read the peer certificate; None on any connection or parse failure."""
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, self._read_certificate, hostname, port),
                timeout=self.tls_timeout,
            )
        except asyncio.TimeoutError:
            logger.debug(f"TLS inspection timeout for {hostname}:{port}")
        except (OSError, ssl.SSLError, ValueError) as e:
            logger.debug(f"TLS inspection failed for {hostname}:{port}: {e}")
        return None

    def _read_certificate(self, hostname: str, port: int) -> _TLSHandshake:
        """Blocking TLS handshake; runs in the default executor."""
        # The chain is not verified; the certificate is read and reported as-is
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

        start = time.monotonic()
        with socket.create_connection((hostname, port), timeout=self.tls_timeout) as sock:
            connected = time.monotonic()
            with context.wrap_socket(sock, server_hostname=hostname) as ssock:
                negotiated = time.monotonic()
                cert_der = ssock.getpeercert(binary_form=True)
                protocol = ssock.version()
                cipher = ssock.cipher()

        if not cert_der:
            raise ValueError("server presented no certificate")

        cert = x509.load_der_x509_certificate(cert_der)
        valid_from = cert.not_valid_before_utc
        valid_to = cert.not_valid_after_utc
        now = utcnow()

        info = SSLInfo(
            valid=valid_from <= now <= valid_to,
            issuer=_name_attribute(cert.issuer, NameOID.ORGANIZATION_NAME, NameOID.COMMON_NAME)
            or cert.issuer.rfc4514_string(),
            subject=_name_attribute(cert.subject, NameOID.COMMON_NAME)
            or cert.subject.rfc4514_string(),
            valid_from=valid_from,
            valid_to=valid_to,
            days_until_expiry=days_until(valid_to, now),
            protocol=protocol,
            cipher=cipher[0] if cipher else None,
        )
        return _TLSHandshake(
            info=info,
            connect_ms=int((connected - start) * 1000),
            handshake_ms=int((negotiated - connected) * 1000),
        )

    async def _fetch(self, url: str) -> Optional[_FetchResult]:
        """GET the page following redirects; None when no full response arrived.

        The body download counts against the same deadline as the request, so
        an endless body degrades to a failed fetch.
        """
        try:
            return await asyncio.wait_for(self._download(url), timeout=self.timeout)
        except (httpx.TimeoutException, asyncio.TimeoutError):
            logger.debug(f"Fetch timeout for {url}")
        except httpx.HTTPError as e:
            logger.debug(f"Fetch failed for {url}: {e}")
        return None

    async def _download(self, url: str) -> _FetchResult:
        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers={
                "User-Agent": self.user_agent,
                "Accept-Encoding": "gzip, deflate, br",
            },
            transport=self._transport,
        ) as client:
            start = time.monotonic()
            async with client.stream("GET", url) as response:
                headers_received = time.monotonic()
                body_size = 0
                async for chunk in response.aiter_bytes():
                    body_size += len(chunk)
                finished = time.monotonic()

                return _FetchResult(
                    status_code=response.status_code,
                    status_text=response.reason_phrase,
                    http_version=response.http_version,
                    headers={k.lower(): v for k, v in response.headers.items()},
                    redirect_count=len(response.history),
                    body_size=body_size,
                    ttfb_ms=int((headers_received - start) * 1000),
                    download_ms=int((finished - headers_received) * 1000),
                )


# Global instance
site_analyzer = SiteAnalyzer()


async def test_url(url: str) -> SiteReport:
    """Entry point for ad-hoc site tests."""
    return await site_analyzer.analyze(url)
