"""Candidate feed parser.

Turns the raw CSV-like feed into validated ``Candidate`` records. The parser
never raises on bad input: rows that fail validation are skipped, counted and
logged at DEBUG.

The feed layout has drifted over time, so each row is dispatched on its
column count:

- 6 columns (compact): hostname, ip, speed, country, country code, sessions
- 11+ columns (legacy): hostname, ip, score, ping, speed, country,
  country code, sessions, uptime, total users, total traffic, and in the
  mirror variant an SSTP capability flag at column 12

Any other column count is a malformed row. A feed with data rows but no row
in a recognized layout is reported as ``unrecognized_layout``.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from smartconnect.errors import ParseError
from smartconnect.models.candidate import NOT_MEASURED, Candidate

logger = logging.getLogger(__name__)

COMPACT_COLUMNS = 6
LEGACY_MIN_COLUMNS = 11
SSTP_FLAG_COLUMN = 12

_HOSTNAME_RE = re.compile(r"^[A-Za-z0-9._-]+$")
_HEADER_FIRST_CELL = "hostname"


def is_valid_hostname(hostname: str) -> bool:
    """Return ``True`` for a non-empty hostname of length >= 3 in ``[A-Za-z0-9._-]``."""
    return len(hostname) >= 3 and _HOSTNAME_RE.match(hostname) is not None


def is_valid_ipv4(ip: str) -> bool:
    """Return ``True`` for four dot-separated decimal octets in 0..255."""
    parts = ip.split(".")
    if len(parts) != 4:
        return False
    for part in parts:
        if not part or not part.isascii() or not part.isdigit():
            return False
        if int(part) > 255:
            return False
    return True


def _to_int(value: str) -> int:
    """Parse a numeric cell, defaulting to 0 and clamping negatives to 0."""
    try:
        return max(0, int(value.strip()))
    except ValueError:
        return 0


def _rows(text: str) -> Iterator[list[str]]:
    """Yield CSV rows, stopping at the first row the csv module rejects."""
    reader = csv.reader(io.StringIO(text, newline=""))
    try:
        yield from reader
    except csv.Error as exc:
        logger.warning("Feed truncated at line %d: %s", reader.line_num, exc)


@dataclass
class ParseReport:
    """Outcome of parsing one feed payload."""

    candidates: list[Candidate] = field(default_factory=list)
    data_rows: int = 0
    skipped: int = 0
    filtered: int = 0
    unrecognized_layout: bool = False


class CandidateParser:
    """Parses the raw feed into candidates.

    Parameters
    ----------
    domain_suffix:
        Canonical domain appended to hostnames that do not already end with it.
    pool_pattern:
        Regex matched (case-insensitively) against the bare hostname; matches
        are tagged ``is_pool_tagged``.
    excluded_country_codes:
        Country codes whose rows are filtered out.
    """

    def __init__(
        self,
        domain_suffix: str = ".opengw.net",
        pool_pattern: str = r"^public-vpn-\d+",
        excluded_country_codes: Iterable[str] = (),
    ) -> None:
        self._domain_suffix = domain_suffix
        self._pool_re = re.compile(pool_pattern, re.IGNORECASE)
        self._excluded = {code.strip().upper() for code in excluded_country_codes}

    def parse(self, raw: bytes) -> list[Candidate]:
        return self.parse_with_report(raw).candidates

    def parse_with_report(self, raw: bytes) -> ParseReport:
        report = ParseReport()
        recognized_rows = 0
        seen: set[str] = set()

        text = raw.decode("utf-8", errors="replace").replace("\x00", "")
        for cells in _rows(text):
            if not cells or not any(cell.strip() for cell in cells):
                continue
            first = cells[0].strip()
            if first.startswith(("*", "#")) or first.lower() == _HEADER_FIRST_CELL:
                continue

            report.data_rows += 1
            column_count = len(cells)
            if column_count == COMPACT_COLUMNS or column_count >= LEGACY_MIN_COLUMNS:
                recognized_rows += 1

            try:
                candidate = self._parse_row(cells)
            except ParseError as exc:
                report.skipped += 1
                logger.debug("Skipping malformed feed row: %s", exc.message, extra=exc.details)
                continue

            if candidate is None or candidate.hostname in seen:
                report.filtered += 1
                continue

            seen.add(candidate.hostname)
            report.candidates.append(candidate)

        if report.data_rows and not recognized_rows:
            report.unrecognized_layout = True
            logger.warning(
                "Feed layout not recognized: %d data rows, none with %d or >= %d columns",
                report.data_rows,
                COMPACT_COLUMNS,
                LEGACY_MIN_COLUMNS,
            )

        logger.info(
            "Parsed feed: %d candidates, %d skipped, %d filtered",
            len(report.candidates),
            report.skipped,
            report.filtered,
            extra={"candidate_count": len(report.candidates)},
        )
        return report

    # ------------------------------------------------------------------
    # Row handling
    # ------------------------------------------------------------------

    def _parse_row(self, cells: list[str]) -> Candidate | None:
        """Build a candidate from one row.

        Returns ``None`` for valid rows that are filtered out by policy and
        raises ``ParseError`` for malformed rows.
        """
        cells = [cell.strip() for cell in cells]
        column_count = len(cells)

        if column_count == COMPACT_COLUMNS:
            fields = self._compact_fields(cells)
        elif column_count >= LEGACY_MIN_COLUMNS:
            if column_count > SSTP_FLAG_COLUMN and cells[SSTP_FLAG_COLUMN] == "0":
                return None
            fields = self._legacy_fields(cells)
        else:
            raise ParseError("unexpected column count", columns=column_count)

        bare_hostname = fields.pop("hostname")
        if not is_valid_hostname(bare_hostname):
            raise ParseError("invalid hostname", hostname=bare_hostname)
        if not is_valid_ipv4(fields["ip"]):
            raise ParseError("invalid ip", hostname=bare_hostname)

        if fields["country_code"].upper() in self._excluded:
            return None

        return Candidate(
            hostname=self._canonical_hostname(bare_hostname),
            is_pool_tagged=self._pool_re.search(bare_hostname) is not None,
            measured_latency_ms=NOT_MEASURED,
            **fields,
        )

    def _canonical_hostname(self, hostname: str) -> str:
        if self._domain_suffix and not hostname.lower().endswith(self._domain_suffix.lower()):
            return hostname + self._domain_suffix
        return hostname

    @staticmethod
    def _compact_fields(cells: list[str]) -> dict:
        return {
            "hostname": cells[0],
            "ip": cells[1],
            "speed_bps": _to_int(cells[2]),
            "country": cells[3],
            "country_code": cells[4],
            "session_count": _to_int(cells[5]),
        }

    @staticmethod
    def _legacy_fields(cells: list[str]) -> dict:
        return {
            "hostname": cells[0],
            "ip": cells[1],
            "feed_score": _to_int(cells[2]),
            "reported_ping_ms": _to_int(cells[3]),
            "speed_bps": _to_int(cells[4]),
            "country": cells[5],
            "country_code": cells[6],
            "session_count": _to_int(cells[7]),
            "uptime_ms": _to_int(cells[8]),
            "total_users": _to_int(cells[9]),
            "total_traffic": _to_int(cells[10]),
        }
