"""Offline IP-to-country lookup.

The table is read once from a DB-IP style CSV (``start_ip,end_ip,country``,
IPv4 and IPv6 rows mixed) and then only read from, so it is shared between
requests without locking.
"""
import bisect
import csv
import ipaddress
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

UNKNOWN_COUNTRY = "unknown"


@dataclass(frozen=True)
class CountryTable:
    # Parallel tuples sorted by range start; keys are (ip version, int value)
    starts: tuple
    ends: tuple
    countries: tuple

    def lookup(self, ip: Optional[str]) -> str:
        if not ip:
            return UNKNOWN_COUNTRY
        try:
            addr = ipaddress.ip_address(ip)
        except ValueError:
            return UNKNOWN_COUNTRY

        key = (addr.version, int(addr))
        idx = bisect.bisect_right(self.starts, key) - 1
        if idx < 0 or key > self.ends[idx]:
            return UNKNOWN_COUNTRY
        return self.countries[idx]


def load_country_table(path: str) -> CountryTable:
    rows = []
    with open(path, newline="", encoding="utf-8") as f:
        for line_no, row in enumerate(csv.reader(f), start=1):
            if len(row) < 3 or not row[0].strip():
                continue
            try:
                start = ipaddress.ip_address(row[0].strip())
                end = ipaddress.ip_address(row[1].strip())
            except ValueError:
                # Header line or garbage
                logger.debug(f"Skipping line {line_no} of {path}")
                continue
            if start.version != end.version:
                continue
            rows.append(((start.version, int(start)), (end.version, int(end)), row[2].strip().upper()))

    rows.sort(key=lambda r: r[0])
    table = CountryTable(
        starts=tuple(r[0] for r in rows),
        ends=tuple(r[1] for r in rows),
        countries=tuple(r[2] for r in rows),
    )
    logger.info(f"Loaded {len(rows)} IP ranges from {path}")
    return table


_table: Optional[CountryTable] = None


def init_country_table(path: Optional[str]) -> None:
    """Load the process-wide table. Called once from the application lifespan."""
    global _table
    if not path:
        logger.info("IP_COUNTRY_DB_PATH not set, countries will be reported as unknown")
        return
    _table = load_country_table(path)


def country_for_ip(ip: Optional[str]) -> str:
    if _table is None:
        return UNKNOWN_COUNTRY
    return _table.lookup(ip)
