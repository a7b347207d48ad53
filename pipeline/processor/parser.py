"""
Textract Block Parser

Turns the flat Textract block list into reading-order text, form
key/value pairs and table matrices.
"""

from dataclasses import dataclass, field
from functools import cmp_to_key
from typing import Any

import structlog

log = structlog.get_logger()

# Lines whose tops differ by less than this are treated as one row
VERTICAL_TOLERANCE = 0.01


@dataclass(frozen=True)
class FormField:
    """A KEY_VALUE_SET pair from FORMS analysis."""

    key: str
    value: str
    confidence: float = 0.0


@dataclass
class Table:
    """Cell text laid out by row and column."""

    rows: list[list[str]] = field(default_factory=list)
    confidence: float = 0.0


@dataclass
class ParsedDocument:
    """Structured view of one extraction result."""

    text: str
    forms: list[FormField] = field(default_factory=list)
    tables: list[Table] = field(default_factory=list)

    def to_formatted(self) -> dict[str, Any]:
        """Payload stored as formatted/{documentId}.json."""
        return {
            "text": self.text,
            "forms": [{"key": f.key, "value": f.value} for f in self.forms],
            "tables": [{"rows": t.rows} for t in self.tables],
        }


def _box(block: dict[str, Any]) -> dict[str, float]:
    return block.get("Geometry", {}).get("BoundingBox", {})


def _compare_position(a: dict[str, Any], b: dict[str, Any]) -> float:
    a_top = _box(a).get("Top", 0)
    b_top = _box(b).get("Top", 0)
    if abs(a_top - b_top) > VERTICAL_TOLERANCE:
        return a_top - b_top
    return _box(a).get("Left", 0) - _box(b).get("Left", 0)


def _compare_reading_order(a: dict[str, Any], b: dict[str, Any]) -> float:
    a_page = a.get("Page") or 0
    b_page = b.get("Page") or 0
    if a_page != b_page:
        return a_page - b_page
    return _compare_position(a, b)


def _child_ids(block: dict[str, Any], relationship_type: str = "CHILD") -> list[str]:
    for relationship in block.get("Relationships", []):
        if relationship.get("Type") == relationship_type:
            return relationship.get("Ids", [])
    return []


def _child_text(block: dict[str, Any], block_map: dict[str, dict[str, Any]]) -> str:
    """WORD/LINE children in reading position, joined by spaces."""
    children = [
        block_map[child_id]
        for child_id in _child_ids(block)
        if child_id in block_map
        and block_map[child_id].get("BlockType") in ("WORD", "LINE")
    ]
    children.sort(key=cmp_to_key(_compare_position))
    return " ".join(child.get("Text", "") for child in children).strip()


def extract_text(blocks: list[dict[str, Any]]) -> str:
    """
    Concatenate LINE blocks in reading order.

    Lines are ordered by page, then top (within tolerance), then left.
    A page separator precedes every page after the first.
    """
    lines = [b for b in blocks if b.get("BlockType") == "LINE" and b.get("Text")]
    lines.sort(key=cmp_to_key(_compare_reading_order))

    parts: list[str] = []
    current_page = None
    for line in lines:
        page = line.get("Page") or 0
        if current_page is not None and page != current_page:
            parts.append(f"\n\n--- Page {page} ---\n\n")
        current_page = page
        parts.append(line.get("Text", "") + "\n")

    return "".join(parts)


def extract_forms(
    blocks: list[dict[str, Any]],
    block_map: dict[str, dict[str, Any]] | None = None,
) -> list[FormField]:
    """Pair KEY blocks with the VALUE blocks they reference."""
    block_map = block_map or {b["Id"]: b for b in blocks if "Id" in b}
    forms: list[FormField] = []

    for block in blocks:
        if block.get("BlockType") != "KEY_VALUE_SET":
            continue
        if "KEY" not in block.get("EntityTypes", []):
            continue

        for value_id in _child_ids(block, "VALUE"):
            value_block = block_map.get(value_id)
            if value_block is None:
                continue
            forms.append(
                FormField(
                    key=_child_text(block, block_map),
                    value=_child_text(value_block, block_map),
                    confidence=min(
                        block.get("Confidence", 0.0),
                        value_block.get("Confidence", 0.0),
                    ),
                )
            )

    return forms


def extract_tables(
    blocks: list[dict[str, Any]],
    block_map: dict[str, dict[str, Any]] | None = None,
) -> list[Table]:
    """Build a row/column matrix for every TABLE block."""
    block_map = block_map or {b["Id"]: b for b in blocks if "Id" in b}
    tables: list[Table] = []

    for table_block in blocks:
        if table_block.get("BlockType") != "TABLE":
            continue

        cells = [
            block_map[child_id]
            for child_id in _child_ids(table_block)
            if block_map.get(child_id, {}).get("BlockType") == "CELL"
        ]

        max_row = max(
            (c.get("RowIndex", 1) + c.get("RowSpan", 1) - 1 for c in cells),
            default=0,
        )
        max_col = max(
            (c.get("ColumnIndex", 1) + c.get("ColumnSpan", 1) - 1 for c in cells),
            default=0,
        )
        rows = [[""] * max_col for _ in range(max_row)]

        # Spanned cells keep their text in the top-left slot only
        for cell in cells:
            row_idx = cell.get("RowIndex", 1) - 1
            col_idx = cell.get("ColumnIndex", 1) - 1
            rows[row_idx][col_idx] = _child_text(cell, block_map)

        tables.append(Table(rows=rows, confidence=table_block.get("Confidence", 0.0)))

    return tables


def parse_textract_blocks(blocks: list[dict[str, Any]]) -> ParsedDocument:
    """
    Parse a merged Textract block list.

    Args:
        blocks: All blocks of a document, across result pages

    Returns:
        ParsedDocument with text, forms and tables
    """
    block_map = {b["Id"]: b for b in blocks if "Id" in b}

    parsed = ParsedDocument(
        text=extract_text(blocks),
        forms=extract_forms(blocks, block_map),
        tables=extract_tables(blocks, block_map),
    )

    log.info(
        "textract_blocks_parsed",
        block_count=len(blocks),
        text_length=len(parsed.text),
        form_count=len(parsed.forms),
        table_count=len(parsed.tables),
    )
    return parsed
