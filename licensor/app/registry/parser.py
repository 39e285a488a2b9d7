"""
Registry content parsing.

The registry is a newline-delimited text blob. Each non-blank,
non-comment line is either:

- a bare key (presence means valid), or
- a structured record ``key,role_id,redeemed_by,redeemed_at``.

Structured records carrying fewer than four fields are skipped rather
than destructured into missing values. Fields past the fourth are
ignored. Keys are compared exactly (case-sensitive, no normalization)
and the first occurrence of a key wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from licensor.app.schemas.verdict import KeyStatus

logger = logging.getLogger("licensor.registry.parser")

COMMENT_MARKER = "#"
FIELD_SEPARATOR = ","
STRUCTURED_FIELD_COUNT = 4


@dataclass(frozen=True)
class RegistryEntry:
    """One parsed registry line."""

    key: str
    structured: bool = False
    role_id: Optional[str] = None
    redeemed_by: Optional[str] = None
    redeemed_at: Optional[str] = None

    def status(self) -> KeyStatus:
        if self.redeemed_by:
            return KeyStatus.redeemed(
                redeemed_by=self.redeemed_by,
                redeemed_at=self.redeemed_at,
                role_id=self.role_id,
            )
        return KeyStatus.valid(role_id=self.role_id)


@dataclass(frozen=True)
class RegistrySnapshot:
    """
    Lookup structure for one parse pass.

    Built per request; never cached across requests.
    """

    entries: Dict[str, RegistryEntry] = field(default_factory=dict)
    skipped_lines: int = 0

    def lookup(self, key: str) -> KeyStatus:
        entry = self.entries.get(key)
        if entry is None:
            return KeyStatus.not_found()
        return entry.status()

    @property
    def has_redemption_metadata(self) -> bool:
        return any(entry.structured for entry in self.entries.values())

    def __len__(self) -> int:
        return len(self.entries)


def _empty_to_none(value: str) -> Optional[str]:
    value = value.strip()
    return value or None


def parse_line(line: str) -> Optional[RegistryEntry]:
    """
    Parse a single registry line.

    Returns None for blank lines, comments and structured records that
    do not carry the expected number of fields.
    """
    line = line.strip()
    if not line or line.startswith(COMMENT_MARKER):
        return None

    if FIELD_SEPARATOR not in line:
        return RegistryEntry(key=line)

    parts = line.split(FIELD_SEPARATOR)
    if len(parts) < STRUCTURED_FIELD_COUNT:
        raise ValueError(
            f"expected {STRUCTURED_FIELD_COUNT} fields, got {len(parts)}"
        )

    key, role_id, redeemed_by, redeemed_at = (
        part.strip() for part in parts[:STRUCTURED_FIELD_COUNT]
    )
    if not key:
        raise ValueError("empty key field")

    return RegistryEntry(
        key=key,
        structured=True,
        role_id=_empty_to_none(role_id),
        redeemed_by=_empty_to_none(redeemed_by),
        redeemed_at=_empty_to_none(redeemed_at),
    )


def parse_registry(content: str) -> RegistrySnapshot:
    """Parse the full registry blob into a RegistrySnapshot."""
    entries: Dict[str, RegistryEntry] = {}
    skipped = 0

    for line_no, line in enumerate(content.split("\n"), start=1):
        try:
            entry = parse_line(line)
        except ValueError as exc:
            skipped += 1
            logger.warning(
                "registry_line_skipped",
                extra={"line_no": line_no, "reason": str(exc)},
            )
            continue

        if entry is None:
            continue

        # First occurrence wins
        if entry.key in entries:
            logger.debug(
                "registry_duplicate_key_ignored",
                extra={"line_no": line_no},
            )
            continue

        entries[entry.key] = entry

    return RegistrySnapshot(entries=entries, skipped_lines=skipped)
