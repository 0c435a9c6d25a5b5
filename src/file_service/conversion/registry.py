"""Immutable registry of converters and the converter selection rule."""

from __future__ import annotations

from typing import Iterable

import structlog

from .formats import KNOWN_FORMATS, normalize_format
from .interfaces import FileConverter

logger = structlog.get_logger(__name__)


class ConverterRegistry:
    """Ordered, immutable collection of converters.

    Selection rule: among the converters whose `supports(source, target)` holds,
    the one with the highest `priority` wins; equal priorities resolve to the
    converter registered first.

    At construction every converter is probed against the known format
    vocabulary and the eligible converters for each (source, target) pair are
    stored already ordered by that rule, so lookups for vocabulary pairs are a
    single dict access. Pairs outside the vocabulary fall back to a linear scan
    using the same rule.
    """

    def __init__(
        self,
        converters: Iterable[FileConverter],
        *,
        known_formats: Iterable[str] = KNOWN_FORMATS,
    ) -> None:
        self._converters: tuple[FileConverter, ...] = tuple(converters)
        self._known_formats: tuple[str, ...] = tuple(normalize_format(f) for f in known_formats)
        self._table: dict[tuple[str, str], tuple[FileConverter, ...]] = self._build_table()

        logger.info("Registered file converters", count=len(self._converters))
        for converter in self._converters:
            logger.info(
                "Registered converter",
                converter=type(converter).__name__,
                priority=converter.priority,
            )

    @property
    def converters(self) -> tuple[FileConverter, ...]:
        return self._converters

    @property
    def known_formats(self) -> tuple[str, ...]:
        return self._known_formats

    def _build_table(self) -> dict[tuple[str, str], tuple[FileConverter, ...]]:
        table: dict[tuple[str, str], tuple[FileConverter, ...]] = {}
        for source in self._known_formats:
            for target in self._known_formats:
                eligible = [
                    (index, c)
                    for index, c in enumerate(self._converters)
                    if c.supports(source, target)
                ]
                if not eligible:
                    continue
                # Stable order: highest priority first, then registration order.
                eligible.sort(key=lambda item: (-item[1].priority, item[0]))
                table[(source, target)] = tuple(c for _, c in eligible)
        return table

    def select(self, source_format: str, target_format: str) -> FileConverter | None:
        source = normalize_format(source_format)
        target = normalize_format(target_format)
        if source in self._known_formats and target in self._known_formats:
            candidates = self._table.get((source, target))
            return candidates[0] if candidates else None

        best: FileConverter | None = None
        for converter in self._converters:
            if not converter.supports(source, target):
                continue
            if best is None or converter.priority > best.priority:
                best = converter
        return best

    def source_formats(self) -> set[str]:
        return {source for source, _ in self._table}

    def target_formats(self, source_format: str) -> set[str]:
        source = normalize_format(source_format)
        if source in self._known_formats:
            return {target for src, target in self._table if src == source and target != source}
        return {
            target
            for target in self._known_formats
            if target != source and any(c.supports(source, target) for c in self._converters)
        }
