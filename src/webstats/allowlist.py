from __future__ import annotations

from typing import Iterable


def is_whitelisted(host: str, domains: Iterable[str]) -> bool:
    """
    True when host is one of the domains or a subdomain of one.
    Matching is literal and case-sensitive.
    """
    for domain in domains:
        if host == domain or host.endswith("." + domain):
            return True
    return False


def host_without_port(host: str) -> str:
    """
    Supports:
      "example.com"       -> "example.com"
      "example.com:8080"  -> "example.com"
      "[::1]:8080"        -> "::1"
    """
    if host.startswith("["):
        end = host.find("]")
        if end != -1:
            return host[1:end]
        return host
    if host.count(":") == 1:
        return host.split(":", 1)[0]
    return host
