"""
Device service — derive device identity from request signals.

Everything here is pure: no database access, no side effects.  The
fingerprint → existing device_id lookup lives in the session service
because it needs the store.

Fingerprint
    SHA-256 over a position-fixed ``|``-joined list of
    user-agent, platform, language, timezone and
    ``{width}x{height}x{color_depth}``.  The IP address is NOT part of
    it — a device that changes networks is still the same device.

User-agent parsing
    Best-effort substring matching.  Anything unrecognised becomes
    ``"Unknown"``; nothing in here raises on odd input.
"""

import hashlib
from collections.abc import Mapping
from dataclasses import dataclass, field

from device_auth.core.security import generate_secure_token

UNKNOWN = "Unknown"


@dataclass(frozen=True)
class ScreenInfo:
    width: int
    height: int
    color_depth: int


@dataclass(frozen=True)
class FingerprintSignals:
    user_agent: str
    platform: str
    language: str | None = None
    timezone: str | None = None
    screen: ScreenInfo | None = None
    # Carried for completeness; deliberately ignored by the hash.
    ip_address: str | None = None


@dataclass
class DeviceInfo:
    device_id: str
    device_name: str
    device_type: str
    platform: str
    browser: str = UNKNOWN
    os: str = UNKNOWN
    ip_address: str | None = None
    user_agent: str | None = None
    location: str | None = None
    fingerprint: str | None = None
    # True when device_id came from an existing session, not freshly minted.
    reused: bool = field(default=False)


# ── Fingerprint ──────────────────────────────────────────────────────


def _norm(value: object | None) -> str:
    if value is None:
        return ""
    return " ".join(str(value).split())


def generate_fingerprint(signals: FingerprintSignals) -> str:
    screen = ""
    if signals.screen is not None:
        screen = f"{signals.screen.width}x{signals.screen.height}x{signals.screen.color_depth}"
    parts = [
        _norm(signals.user_agent),
        _norm(signals.platform),
        _norm(signals.language),
        _norm(signals.timezone),
        screen,
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


# ── User-agent parsing ───────────────────────────────────────────────


def parse_browser(user_agent: str | None) -> str:
    ua = user_agent or ""
    # Order matters: Edge and Opera UAs also contain "Chrome", and
    # Chrome UAs also contain "Safari".
    if "Edg" in ua:
        return "Edge"
    if "OPR" in ua or "Opera" in ua:
        return "Opera"
    if "Firefox" in ua or "FxiOS" in ua:
        return "Firefox"
    if "Chrome" in ua or "CriOS" in ua:
        return "Chrome"
    if "Safari" in ua:
        return "Safari"
    return UNKNOWN


def parse_os(user_agent: str | None) -> str:
    ua = user_agent or ""
    if "Windows" in ua:
        return "Windows"
    # iOS and Android UAs mention "Mac OS X" / "Linux" respectively.
    if "iPhone" in ua or "iPad" in ua or "iPod" in ua or "iOS" in ua:
        return "iOS"
    if "Android" in ua:
        return "Android"
    if "Mac OS" in ua or "Macintosh" in ua:
        return "macOS"
    if "CrOS" in ua:
        return "ChromeOS"
    if "Linux" in ua:
        return "Linux"
    return UNKNOWN


def parse_device_type(user_agent: str | None) -> str:
    ua = user_agent or ""
    if not ua.strip():
        return UNKNOWN
    if "iPad" in ua or "Tablet" in ua:
        return "tablet"
    if "Mobile" in ua or "iPhone" in ua:
        return "mobile"
    if "Android" in ua:
        # Android without "Mobile" is a tablet by convention.
        return "tablet"
    return "desktop"


def default_device_name(browser: str | None, os: str | None) -> str:
    browser_name = browser if browser and browser != UNKNOWN else "Browser"
    os_name = os if os and os != UNKNOWN else "Unknown OS"
    return f"{browser_name} on {os_name}"


def generate_device_id() -> str:
    return generate_secure_token(32)


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return value


def extract_device_info(
    headers: Mapping[str, str],
    client_ip: str | None,
    *,
    device_name: str | None = None,
    device_id: str | None = None,
) -> DeviceInfo:
    """Build a `DeviceInfo` from request headers and the peer address."""
    user_agent = _header(headers, "User-Agent") or UNKNOWN
    platform_header = _header(headers, "Sec-CH-UA-Platform")
    platform = platform_header.replace('"', "").strip() if platform_header else ""

    browser = parse_browser(user_agent)
    os_name = parse_os(user_agent)

    return DeviceInfo(
        device_id=device_id or generate_device_id(),
        device_name=device_name or default_device_name(browser, os_name),
        device_type=parse_device_type(user_agent),
        platform=platform or UNKNOWN,
        browser=browser,
        os=os_name,
        ip_address=client_ip,
        user_agent=user_agent,
        location=_header(headers, "CF-IPCountry"),
    )
