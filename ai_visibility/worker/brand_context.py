"""
Brand terms to search for in an answer.

A job linked to a demo run searches for the demo run's brand and domain.
Otherwise the workspace brand name and primary domain are expanded into
variants. The workspace row may not be visible yet when the job starts
(it's created in the same request that enqueues the job), so the lookup
is retried a fixed number of times with a fixed delay before giving up
with an empty set.
"""

import asyncio
import logging
import re
import sqlite3
from collections.abc import Awaitable, Callable

from ai_visibility.config.constants import BRAND_LOOKUP_ATTEMPTS, BRAND_LOOKUP_DELAY_SECONDS
from ai_visibility.storage.db import connect, get_demo_run, get_workspace
from ai_visibility.utils.logging import log_with_context

logger = logging.getLogger(__name__)

SleepCallable = Callable[[float], Awaitable[None]]

_PROTOCOL_RE = re.compile(r"^https?://", re.IGNORECASE)
_WWW_RE = re.compile(r"^www\.", re.IGNORECASE)


def bare_domain(domain: str) -> str:
    """
    Strip protocol, www. and any path from a domain.

    Example:
        >>> bare_domain("https://www.booking.com/hotels")
        'booking.com'
    """
    domain = _WWW_RE.sub("", _PROTOCOL_RE.sub("", domain.strip()))
    return domain.split("/", 1)[0]


def _capitalize(value: str) -> str:
    return value[:1].upper() + value[1:]


def _unique(terms: list[str]) -> list[str]:
    """Drop blanks and exact duplicates, keeping order."""
    return list(dict.fromkeys(t for t in terms if t and t.strip()))


def demo_run_brands(brand: str | None, domain: str | None) -> list[str]:
    """
    Brand terms for a demo run: brand, bare domain, first domain label.

    Example:
        >>> demo_run_brands("Airbnb", "https://www.airbnb.com")
        ['Airbnb', 'airbnb.com', 'airbnb']
    """
    terms: list[str] = []
    if brand:
        terms.append(brand.strip())
    if domain:
        bare = bare_domain(domain)
        terms.append(bare)
        if "." in bare:
            terms.append(bare.split(".")[0])
    return _unique(terms)


def workspace_brands(brand_name: str | None, primary_domain: str | None) -> list[str]:
    """
    Brand terms for a workspace, with capitalized variants.

    Example:
        >>> workspace_brands("booking", "https://booking.com")
        ['booking', 'Booking', 'booking.com', 'Booking.com']
    """
    terms: list[str] = []
    if brand_name:
        brand_name = brand_name.strip()
        terms.append(brand_name)
        terms.append(brand_name[:1].upper() + brand_name[1:].lower())
    if primary_domain:
        bare = bare_domain(primary_domain)
        terms.append(bare)
        terms.append(_capitalize(bare))
        base = bare.split(".")[0]
        terms.append(base)
        terms.append(_capitalize(base))
    return _unique(terms)


async def resolve_brand_context(
    db_path: str,
    workspace_id: str,
    demo_run_id: str | None = None,
    attempts: int = BRAND_LOOKUP_ATTEMPTS,
    delay_seconds: float = BRAND_LOOKUP_DELAY_SECONDS,
    sleep: SleepCallable = asyncio.sleep,
) -> list[str]:
    """
    Resolve the brand terms for a job.

    Never raises: lookup errors are retried like a missing row, and an
    exhausted retry yields an empty list.

    Args:
        db_path: Database path
        workspace_id: Workspace of the job
        demo_run_id: Demo run the job belongs to, if any
        attempts: Workspace lookups before giving up
        delay_seconds: Fixed delay between lookups
        sleep: Awaitable sleep (injectable for tests)

    Returns:
        Ordered, de-duplicated brand terms (possibly empty)
    """
    if demo_run_id:
        try:
            with connect(db_path) as conn:
                demo_run = get_demo_run(conn, demo_run_id)
        except sqlite3.Error as e:
            logger.warning(f"Demo run lookup failed for {demo_run_id}: {e}")
            demo_run = None
        if demo_run:
            terms = demo_run_brands(demo_run["brand"], demo_run["domain"])
            if terms:
                return terms

    for attempt in range(1, attempts + 1):
        try:
            with connect(db_path) as conn:
                workspace = get_workspace(conn, workspace_id)
        except sqlite3.Error as e:
            logger.warning(f"Workspace lookup failed (attempt {attempt}/{attempts}): {e}")
            workspace = None

        if workspace is not None:
            terms = workspace_brands(workspace["brand_name"], workspace["primary_domain"])
            log_with_context(
                logger,
                logging.DEBUG,
                "Resolved brand context",
                context={"workspace_id": workspace_id, "brands": terms},
            )
            return terms

        if attempt < attempts:
            await sleep(delay_seconds)

    logger.warning(
        f"Workspace {workspace_id} not found after {attempts} attempts, "
        f"extracting without brand terms"
    )
    return []
