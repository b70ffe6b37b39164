"""Merge findings from all engines into one deduplicated, ordered set."""

import re
from collections.abc import Iterable
from dataclasses import replace

from loguru import logger

from ..models import Finding

DESCRIPTION_SEPARATOR = " | "


class FindingAggregator:
    """Deduplicates by (file, line bucket, category) and sorts deterministically.

    On a key collision the first-seen finding is kept, its severity raised to
    the maximum of the two and, when ``merge_descriptions`` is set, differing
    descriptions are joined.
    """

    def __init__(self, bucket_width: int = 5, description_words: int = 3, merge_descriptions: bool = True):
        self.bucket_width = max(1, bucket_width)
        self.description_words = max(1, description_words)
        self.merge_descriptions = merge_descriptions

    def dedup_key(self, finding: Finding) -> tuple[str, int, str]:
        if finding.category:
            discriminator = finding.category.strip().lower()
        else:
            words = re.findall(r"[a-z0-9]+", finding.description.lower())
            discriminator = " ".join(words[: self.description_words])
        return finding.file, finding.line // self.bucket_width, discriminator

    def aggregate(self, findings: Iterable[Finding]) -> list[Finding]:
        merged: dict[tuple[str, int, str], Finding] = {}
        total = 0
        for finding in findings:
            total += 1
            key = self.dedup_key(finding)
            existing = merged.get(key)
            if existing is None:
                merged[key] = finding
                continue
            merged[key] = self._merge(existing, finding)

        result = sorted(merged.values(), key=self.sort_key)
        logger.info(f"Aggregated {total} raw findings into {len(result)}")
        return result

    def _merge(self, existing: Finding, new: Finding) -> Finding:
        severity = max(existing.severity, new.severity)
        description = existing.description
        if self.merge_descriptions and new.description not in description.split(DESCRIPTION_SEPARATOR):
            description = f"{description}{DESCRIPTION_SEPARATOR}{new.description}"
        if severity == existing.severity and description == existing.description:
            return existing
        return replace(existing, severity=severity, description=description)

    @staticmethod
    def sort_key(finding: Finding) -> tuple:
        return (finding.file, finding.line, -finding.severity.rank, finding.rule_id, finding.description)
