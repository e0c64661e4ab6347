from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

from user_agents import parse as parse_user_agent

from .geo import country_for_ip

SOCIAL_MEDIA = (
    "facebook.com", "twitter.com", "x.com", "instagram.com", "linkedin.com",
    "pinterest.com", "reddit.com", "tiktok.com", "youtube.com",
)
SEARCH_ENGINES = ("google.com", "bing.com", "yahoo.com", "duckduckgo.com")


@dataclass(frozen=True)
class ClickEvent:
    code: str
    ip_address: Optional[str]
    user_agent: Optional[str]
    referrer: Optional[str]
    device_type: str
    browser: str
    country: str
    traffic_source: str


def device_type(ua) -> str:
    # Mobile wins over tablet, matching how the dashboards group devices
    if ua.is_mobile:
        return "mobile"
    if ua.is_tablet:
        return "tablet"
    return "desktop"


def browser_family(ua) -> str:
    family = ua.browser.family
    if not family or family == "Other":
        return "unknown"
    return family


def traffic_source(referrer: Optional[str]) -> str:
    if not referrer:
        return "direct"
    try:
        host = (urlsplit(referrer).hostname or "").lower()
    except ValueError:
        return "unknown"
    if not host:
        return "unknown"
    host = host.removeprefix("www.")

    for domain in SOCIAL_MEDIA + SEARCH_ENGINES:
        if host == domain or host.endswith("." + domain):
            return domain
    return host


def describe_visit(code: str, ip: Optional[str], user_agent: Optional[str], referrer: Optional[str]) -> ClickEvent:
    """Derive the analytics fields of a click. Pure apart from the in-memory country table."""
    ua = parse_user_agent(user_agent or "")
    return ClickEvent(
        code=code,
        ip_address=ip or None,
        user_agent=user_agent or None,
        referrer=referrer or None,
        device_type=device_type(ua),
        browser=browser_family(ua),
        country=country_for_ip(ip),
        traffic_source=traffic_source(referrer),
    )
