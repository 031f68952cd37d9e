# File: knowledge_compiler/assembler.py
"""knowledge_compiler.assembler: Packs fact units into a prompt under a hard token ceiling."""

from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple

from knowledge_compiler.logger import logger
from knowledge_compiler.models import (
    CATEGORY_PRIORITY,
    PROMPT_SEPARATOR,
    CompiledPrompt,
    FactUnit,
)

__all__: Sequence[str] = ("assemble", "sort_key")


def sort_key(unit: FactUnit) -> Tuple[float, int, Tuple[int, str, int], int, str]:
    """Total order: relevance desc, category priority, discovery order, index, text."""
    return (
        -unit.relevance_score,
        CATEGORY_PRIORITY[unit.category],
        unit.source_block.discovery_key,
        unit.index,
        unit.text,
    )


def assemble(fact_units: Iterable[FactUnit], ceiling: int) -> CompiledPrompt:
    """Greedily include units in :func:`sort_key` order while they fit *ceiling*.

    A unit that would overflow the budget is skipped whole and the walk
    continues, so a smaller unit further down may still fit.
    """
    if ceiling < 0:
        raise ValueError(f"token ceiling must be >= 0, got {ceiling}")

    included: List[FactUnit] = []
    skipped: List[str] = []
    total = 0
    for unit in sorted(fact_units, key=sort_key):
        if total + unit.estimated_tokens > ceiling:
            skipped.append(unit.id)
            continue
        included.append(unit)
        total += unit.estimated_tokens

    text = "".join(unit.text + PROMPT_SEPARATOR for unit in included).rstrip()
    prompt = CompiledPrompt(
        text=text,
        included_fact_unit_ids=tuple(unit.id for unit in included),
        total_tokens=total,
        truncated=bool(skipped),
        skipped_fact_unit_ids=tuple(skipped),
    )
    logger.info(
        "Assembled prompt: %d units, %d/%d tokens%s",
        len(included), total, ceiling,
        f", {len(skipped)} skipped for budget" if skipped else "",
    )
    return prompt
