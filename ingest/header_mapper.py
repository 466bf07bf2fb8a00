"""Heuristic header mapper: synonym scores plus one-to-one assignment of headers to canonical fields."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np
from scipy.optimize import linear_sum_assignment

from ingest.field_synonyms import CANONICAL_FIELDS, is_canonical_field, score_header
from ingest.types import FieldMapping, MISC_FIELD

logger = logging.getLogger(__name__)

# Column order assumed for sheets without a header row
POSITIONAL_LAYOUT = (
    "loadNumber",
    "orderNumber",
    "promisedShipDate",
    "shipToCustomer",
    "shipToAddress",
    "itemNumber",
    "description",
    "quantity",
    "uom",
    "weight",
    "remarks",
)


@dataclass
class HeaderMappingResult:
    mappings: Dict[str, FieldMapping] = field(default_factory=dict)
    # Headers below threshold, candidates for AI mapping
    unresolved: List[str] = field(default_factory=list)

    def field_for(self, header: str) -> Optional[str]:
        mapping = self.mappings.get(header)
        return mapping.canonical_field if mapping else None

    def header_for(self, canonical_field: str) -> Optional[str]:
        for header, mapping in self.mappings.items():
            if mapping.canonical_field == canonical_field:
                return header
        return None

    @property
    def mapped_fields(self) -> List[str]:
        return [m.canonical_field for m in self.mappings.values() if m.canonical_field != MISC_FIELD]


class HeaderMapper:
    """
    Maps raw headers to canonical fields without external calls.

    Each canonical field is claimed by at most one header. When several
    headers compete, the optimal assignment over the score matrix decides;
    a header that clears the threshold but loses its field is kept in the
    miscellaneous bucket and never queued for AI.
    """

    def __init__(self, acceptance_threshold: float = 0.8):
        self.acceptance_threshold = acceptance_threshold

    def map_headers(
        self,
        headers: Sequence[str],
        manual_overrides: Optional[Dict[str, str]] = None,
    ) -> HeaderMappingResult:
        """
        Map headers to canonical fields.

        Args:
            headers: Raw header strings, in column order
            manual_overrides: header -> canonical field chosen by a user

        Returns:
            HeaderMappingResult with accepted mappings and unresolved headers
        """
        result = HeaderMappingResult()
        claimed: set = set()

        for header, canonical in (manual_overrides or {}).items():
            if header not in headers:
                continue
            if not is_canonical_field(canonical):
                logger.warning(f"[HEADER_MAPPER] Ignoring manual mapping '{header}' -> unknown field '{canonical}'")
                continue
            if canonical in claimed:
                logger.warning(f"[HEADER_MAPPER] Field '{canonical}' already claimed by a manual mapping, ignoring '{header}'")
                continue
            result.mappings[header] = FieldMapping(header, canonical, 1.0, "manual")
            claimed.add(canonical)

        pending = [h for h in headers if h not in result.mappings]
        fields = [f for f in CANONICAL_FIELDS if f not in claimed]
        if not pending or not fields:
            result.unresolved.extend(pending)
            return result

        scores = np.zeros((len(pending), len(fields)))
        for i, header in enumerate(pending):
            for j, canonical in enumerate(fields):
                scores[i, j] = score_header(header, canonical)

        row_ind, col_ind = linear_sum_assignment(1.0 - scores)
        assigned = {int(r): int(c) for r, c in zip(row_ind, col_ind)}

        for i, header in enumerate(pending):
            best_score = float(scores[i].max()) if scores.shape[1] else 0.0
            j = assigned.get(i)
            score = float(scores[i, j]) if j is not None else 0.0

            if j is not None and score >= self.acceptance_threshold:
                result.mappings[header] = FieldMapping(header, fields[j], round(score, 4), "heuristic")
            elif best_score >= self.acceptance_threshold:
                # Lost its field to a stronger column
                best_field = fields[int(scores[i].argmax())]
                logger.info(
                    f"[HEADER_MAPPER] '{header}' also matches '{best_field}' "
                    f"({best_score:.2f}) but the field is taken - kept as miscellaneous"
                )
                result.mappings[header] = FieldMapping(header, MISC_FIELD, round(best_score, 4), "heuristic")
            else:
                result.unresolved.append(header)

        logger.info(
            f"[HEADER_MAPPER] {len(result.mappings)}/{len(headers)} headers mapped heuristically, "
            f"{len(result.unresolved)} unresolved"
        )
        return result


def positional_mappings(column_count: int, confidence: float = 0.5) -> HeaderMappingResult:
    """
    Mapping for sheets without a header row: columns follow POSITIONAL_LAYOUT.

    Args:
        column_count: Number of columns in the sheet
        confidence: Confidence given to every positional mapping

    Returns:
        HeaderMappingResult keyed by synthetic 'column_N' headers
    """
    result = HeaderMappingResult()
    for i in range(column_count):
        header = f"column_{i + 1}"
        canonical = POSITIONAL_LAYOUT[i] if i < len(POSITIONAL_LAYOUT) else MISC_FIELD
        result.mappings[header] = FieldMapping(header, canonical, confidence, "heuristic")
    return result
