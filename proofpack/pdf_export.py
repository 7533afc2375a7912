"""
PDF documents for a proof pack: the ledger export and the evidence index.

Canvases are created with invariant=1 so reportlab writes fixed creation
dates and document ids; the same input produces the same bytes.
"""

import io
from typing import Any, Iterable, List, Sequence, Tuple

from reportlab.lib.pagesizes import A4, letter
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from .context import GenerationContext, format_ts
from .documents import (
    EVIDENCE_INDEX,
    LEDGER_EVENTS,
    NO_RECORDS_MARKER,
    GeneratedDocument,
    GenerationError,
)
from .hashing import sha256_hex
from .normalize import format_filter_context
from .rows import LedgerEventRow, RowValidationError, coerce_rows
from .sanitize import ForbiddenCharactersError, safe_text

PAGE_SIZES = {"letter": letter, "a4": A4}

# Events emitted by the export pipeline itself; excluded so a pack never
# depends on earlier packs.
EXPORT_EVENT_PREFIX = "export."

MARGIN = 54
FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
BODY_SIZE = 8
LINE = 12

# (header, width in points)
LEDGER_COLUMNS = [("Seq", 34), ("Time (UTC)", 96), ("Event", 150), ("Target", 120), ("Actor", 104)]
INDEX_COLUMNS = [("Document", 84), ("Type", 30), ("Records", 44), ("Bytes", 46), ("SHA-256", 300)]


def _fit(text: str, width: float, font: str = FONT, size: float = BODY_SIZE) -> str:
    """Truncate text with an ellipsis so it fits the column width."""
    if stringWidth(text, font, size) <= width:
        return text
    while text and stringWidth(text + "...", font, size) > width:
        text = text[:-1]
    return text + "..."


class _Document:
    """Minimal paginating table writer over a reportlab canvas."""

    def __init__(self, title: str, ctx: GenerationContext):
        self.ctx = ctx
        self.title = title
        self.buf = io.BytesIO()
        self.size = PAGE_SIZES.get(ctx.config.page_size, letter)
        self.c = canvas.Canvas(self.buf, pagesize=self.size, invariant=1)
        self.c.setTitle(title)
        self.c.setAuthor(self.text(ctx.config.brand, "brand"))
        self.c.setCreator(self.text(ctx.config.brand, "brand"))
        self.page = 1
        self.y = self.size[1] - MARGIN

    def text(self, value: Any, context: str) -> str:
        return safe_text(value, context, self.ctx.config.strict)

    def line(self, text: str, font: str = FONT, size: float = 10, gap: float = 14) -> None:
        self._ensure_room(gap)
        self.c.setFont(font, size)
        self.c.drawString(MARGIN, self.y, _fit(text, self.size[0] - 2 * MARGIN, font, size))
        self.y -= gap

    def header_block(self, subtitle_lines: List[str]) -> None:
        self.line(f"{self.text(self.ctx.config.brand, 'brand')} {self.title}", FONT_BOLD, 16, 24)
        self.line(f"Organization: {self.text(self.ctx.organization_name, 'organization')}")
        self.line(f"Time Range: {self.ctx.time_range.label}")
        filters = "; ".join(self.text(s, "filters") for s in format_filter_context(self.ctx.filters.to_dict()))
        self.line(f"Filters: {filters}")
        for s in subtitle_lines:
            self.line(s)
        self.y -= 8

    def table(self, columns: List[Tuple[str, float]], rows: List[List[str]]) -> None:
        self._table_header(columns)
        for row in rows:
            if self._ensure_room(LINE):
                self._table_header(columns)
            self.c.setFont(FONT, BODY_SIZE)
            x = MARGIN
            for (_, width), cell in zip(columns, row):
                self.c.drawString(x, self.y, _fit(cell, width - 4))
                x += width
            self.y -= LINE
        if not rows:
            self.line(NO_RECORDS_MARKER, FONT, 10)

    def _table_header(self, columns: List[Tuple[str, float]]) -> None:
        self.c.setFont(FONT_BOLD, BODY_SIZE)
        x = MARGIN
        for header, width in columns:
            self.c.drawString(x, self.y, header)
            x += width
        self.y -= 4
        self.c.line(MARGIN, self.y, self.size[0] - MARGIN, self.y)
        self.y -= LINE

    def _ensure_room(self, needed: float) -> bool:
        if self.y - needed >= MARGIN:
            return False
        self._footer()
        self.c.showPage()
        self.page += 1
        self.y = self.size[1] - MARGIN
        return True

    def _footer(self) -> None:
        self.c.setFont(FONT, 7)
        self.c.drawRightString(self.size[0] - MARGIN, MARGIN / 2, f"Page {self.page}")

    def finish(self) -> bytes:
        self._footer()
        self.c.showPage()
        self.c.save()
        return self.buf.getvalue()


def select_ledger_events(rows: Sequence[LedgerEventRow]) -> List[LedgerEventRow]:
    seen = set()
    out = []
    for row in rows:
        if row.event_name.startswith(EXPORT_EVENT_PREFIX) or row.seq in seen:
            continue
        seen.add(row.seq)
        out.append(row)
    return sorted(out, key=lambda r: r.seq)


def generate_ledger_export_pdf(rows: Iterable[Any], ctx: GenerationContext) -> GeneratedDocument:
    """
    Ledger export PDF: compliance ledger events in the window, oldest first.

    Raises:
        GenerationError: on invalid rows or forbidden characters (strict mode)
    """
    try:
        events = select_ledger_events(coerce_rows(rows, LedgerEventRow))
        doc = _Document("Compliance Ledger Export", ctx)
        table = []
        for ev in events:
            target = ":".join(x for x in (ev.target_type, ev.target_id) if x)
            table.append([
                str(ev.seq),
                format_ts(ev.created_at),
                doc.text(ev.event_name, "event.name"),
                doc.text(target, "event.target"),
                doc.text(ev.actor_id, "event.actor"),
            ])
        doc.header_block([f"Events: {len(table)}"])
        doc.table(LEDGER_COLUMNS, table)
        data = doc.finish()
    except (RowValidationError, ForbiddenCharactersError) as e:
        raise GenerationError(LEDGER_EVENTS, str(e), e) from e
    return GeneratedDocument(kind=LEDGER_EVENTS, type="pdf", data=data, record_count=len(table))


def generate_evidence_index_pdf(documents: Sequence[GeneratedDocument], ctx: GenerationContext) -> GeneratedDocument:
    """
    Evidence index PDF: one line per payload document with its full hash.

    Documents are listed by kind rather than by bundle filename so the index
    does not depend on the pack id.
    """
    try:
        doc = _Document("Evidence Index", ctx)
        table = []
        for d in sorted(documents, key=lambda d: d.kind):
            table.append([
                f"{d.kind}.{d.type}",
                d.type,
                str(d.record_count),
                str(d.byte_length),
                sha256_hex(d.data),
            ])
        doc.header_block([f"Documents: {len(table)}"])
        doc.table(INDEX_COLUMNS, table)
        data = doc.finish()
    except ForbiddenCharactersError as e:
        raise GenerationError(EVIDENCE_INDEX, str(e), e) from e
    return GeneratedDocument(kind=EVIDENCE_INDEX, type="pdf", data=data, record_count=len(table))
