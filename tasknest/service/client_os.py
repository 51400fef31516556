from __future__ import annotations

import re
from typing import Mapping, Optional

UNKNOWN = "Unknown"
# Width of the refresh_token.client_os column
CLIENT_OS_MAX_LENGTH = 64

_IOS_VERSION = re.compile(r"(?:iPhone|iPad|iPod).*OS\s([\d_]+)")
_ANDROID_VERSION = re.compile(r"Android\s([\d.]+)")
_WINDOWS_NT = re.compile(r"Windows NT ([\d.]+)")
_MAC_OS_X = re.compile(r"Mac OS X ([\d_.]+)")

_WINDOWS_NT_NAMES = {
    "10.0": "Windows 10/11",
    "6.3": "Windows 8.1",
    "6.2": "Windows 8",
    "6.1": "Windows 7",
    "6.0": "Windows Vista",
    "5.1": "Windows XP",
}


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    # Starlette headers are case-insensitive; plain dicts in tests may not be
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    if value is None:
        return None
    value = value.strip().strip('"').strip()
    return value or None


def _from_client_hints(platform: str, version: Optional[str]) -> str:
    if platform.lower() == "windows":
        try:
            major = int((version or "").split(".")[0])
        except ValueError:
            major = -1
        if major >= 13:
            name = "Windows 11"
        elif major > 0:
            name = "Windows 10"
        else:
            name = "Windows"
        return f"{name} {version}" if version else name
    return f"{platform} {version}" if version else platform


def _from_user_agent(user_agent: str) -> str:
    # iPadOS in desktop mode reports a Mac user agent that still says Mobile
    if "Macintosh" in user_agent and "Mobile" in user_agent:
        return "iPadOS"
    match = _IOS_VERSION.search(user_agent)
    if match:
        return "iOS " + match.group(1).replace("_", ".")
    match = _ANDROID_VERSION.search(user_agent)
    if match:
        return f"Android {match.group(1)}"
    match = _WINDOWS_NT.search(user_agent)
    if match:
        return _WINDOWS_NT_NAMES.get(match.group(1), "Windows")
    match = _MAC_OS_X.search(user_agent)
    if match:
        return "macOS " + match.group(1).replace("_", ".")
    if "CrOS " in user_agent:
        return "ChromeOS"
    if "Linux" in user_agent:
        return "Linux"
    return UNKNOWN


def detect_client_os(headers: Mapping[str, str]) -> str:
    """Describe the caller's operating system from request headers.

    User-agent client hints win when present; otherwise the classic
    ``User-Agent`` string is pattern matched. Hints are caller supplied, so
    the result is cut to ``CLIENT_OS_MAX_LENGTH``.
    """

    platform = _header(headers, "sec-ch-ua-platform")
    if platform:
        version = _header(headers, "sec-ch-ua-platform-version")
        descriptor = _from_client_hints(platform, version)
    else:
        user_agent = _header(headers, "user-agent")
        descriptor = _from_user_agent(user_agent) if user_agent else UNKNOWN
    return descriptor[:CLIENT_OS_MAX_LENGTH].rstrip()
