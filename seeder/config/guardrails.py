"""
Staging guardrails: refuse to seed anything that does not look like staging.
"""

import re
from urllib.parse import urlsplit, urlunsplit

from seeder.core.errors import StagingGuardrailError

from .env import EnvConfig

STAGING_DB_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (r"staging", r"stage", r"test", r"dev", r"uat")
]

STAGING_SHOP_PATTERNS = STAGING_DB_PATTERNS + [re.compile(r"\.myshopify\.com$", re.IGNORECASE)]


def mask_url(url: str) -> str:
    """Hide the password of a URL for display."""
    parts = urlsplit(url)
    if parts.password:
        netloc = parts.netloc.replace(f":{parts.password}@", ":***@", 1)
        return urlunsplit(parts._replace(netloc=netloc))
    return re.sub(r":[^:@/]+@", ":***@", url)


def is_staging_database(url: str) -> bool:
    return any(p.search(url) for p in STAGING_DB_PATTERNS)


def is_staging_shop(domain: str) -> bool:
    return any(p.search(domain) for p in STAGING_SHOP_PATTERNS)


def assert_staging_environment(env: EnvConfig, override: bool = False) -> None:
    """
    Check that both targets look like staging.

    Args:
        env: Environment configuration
        override: Skip the check (--i-know-this-is-staging)

    Raises:
        StagingGuardrailError: If either target does not match a staging pattern
    """
    if override:
        return

    if not is_staging_database(env.database_url):
        raise StagingGuardrailError(
            "Database URL does not match staging patterns. "
            f"Detected: {mask_url(env.database_url)}. "
            "Use --i-know-this-is-staging to override (not recommended)."
        )
    if not is_staging_shop(env.shopify_store_domain):
        raise StagingGuardrailError(
            "Shopify domain does not match staging patterns. "
            f"Detected: {env.shopify_store_domain}. "
            "Use --i-know-this-is-staging to override (not recommended)."
        )
