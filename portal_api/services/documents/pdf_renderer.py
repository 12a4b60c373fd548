"""
Branded PDF documents (quotes, invoices, payment receipts) drawn with PyMuPDF.

Callers describe the document as a ``DocumentLayout``; the renderer owns
page geometry, the header band, table pagination and the totals block.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import fitz  # PyMuPDF

logger = logging.getLogger(__name__)

PAGE_WIDTH = 612  # US letter, points
PAGE_HEIGHT = 792
MARGIN = 50
BOTTOM_LIMIT = PAGE_HEIGHT - 70

FONT = "helv"
FONT_BOLD = "hebo"
TEXT_COLOR = (0.2, 0.2, 0.2)
MUTED_COLOR = (0.45, 0.45, 0.45)
RULE_COLOR = (0.85, 0.85, 0.85)
HEADER_FILL = (0.96, 0.96, 0.96)


@dataclass
class Column:
    title: str
    width: float
    align: str = "left"  # left | right | center


@dataclass
class DocumentLayout:
    title: str
    number: str
    company_name: str
    company_lines: List[str] = field(default_factory=list)
    meta: List[Tuple[str, str]] = field(default_factory=list)
    bill_to_label: str = "Bill To"
    bill_to: List[str] = field(default_factory=list)
    columns: List[Column] = field(default_factory=list)
    rows: List[List[str]] = field(default_factory=list)
    totals: List[Tuple[str, str]] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    badge: Optional[str] = None
    accent: str = "#2563eb"


def hex_to_rgb(value: str) -> Tuple[float, float, float]:
    """'#2563eb' -> (r, g, b) in 0..1. Falls back to the default accent on bad input."""
    value = (value or "").lstrip("#")
    if len(value) == 3:
        value = "".join(c * 2 for c in value)
    try:
        return tuple(int(value[i:i + 2], 16) / 255 for i in (0, 2, 4))
    except ValueError:
        return (0.145, 0.388, 0.922)


def _width(text: str, size: float, bold: bool = False) -> float:
    return fitz.get_text_length(text, fontname=FONT_BOLD if bold else FONT, fontsize=size)


def _fit(text: str, width: float, size: float) -> str:
    """Cut ``text`` with an ellipsis so it fits a table cell."""
    if _width(text, size) <= width:
        return text
    while text and _width(text + "...", size) > width:
        text = text[:-1]
    return text + "..."


def _wrap(text: str, width: float, size: float) -> List[str]:
    lines: List[str] = []
    current = ""
    for word in text.split():
        candidate = f"{current} {word}".strip()
        if current and _width(candidate, size) > width:
            lines.append(current)
            current = word
        else:
            current = candidate
    if current:
        lines.append(current)
    return lines


class _Writer:
    def __init__(self, layout: DocumentLayout):
        self.layout = layout
        self.accent = hex_to_rgb(layout.accent)
        self.doc = fitz.open()
        self.page = None
        self.y = 0.0

    def new_page(self) -> None:
        self.page = self.doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
        self.y = MARGIN

    def text(self, x: float, text: str, size: float = 10, bold: bool = False,
             color=TEXT_COLOR, align: str = "left", width: float = 0) -> None:
        if align == "right":
            x = x + width - _width(text, size, bold)
        elif align == "center":
            x = x + (width - _width(text, size, bold)) / 2
        self.page.insert_text(fitz.Point(x, self.y), text, fontsize=size,
                              fontname=FONT_BOLD if bold else FONT, color=color)

    def rule(self, color=RULE_COLOR, width: float = 0.8) -> None:
        self.page.draw_line(fitz.Point(MARGIN, self.y), fitz.Point(PAGE_WIDTH - MARGIN, self.y),
                            color=color, width=width)

    def ensure_room(self, needed: float, repeat_table_header: bool = False) -> None:
        if self.y + needed > BOTTOM_LIMIT:
            self.new_page()
            if repeat_table_header:
                self.table_header()

    # ----- blocks -----

    def header(self) -> None:
        layout = self.layout
        band = fitz.Rect(0, 0, PAGE_WIDTH, 90)
        self.page.draw_rect(band, color=None, fill=self.accent)
        self.y = 52
        self.text(MARGIN, layout.company_name.upper(), size=20, bold=True, color=(1, 1, 1))
        self.y = 72
        self.text(MARGIN, "  |  ".join(layout.company_lines), size=9, color=(1, 1, 1))

        self.y = 130
        self.text(MARGIN, layout.title, size=22, bold=True)
        if layout.badge:
            self.text(MARGIN, layout.badge, size=12, bold=True, color=self.accent,
                      align="right", width=PAGE_WIDTH - 2 * MARGIN)
        self.y += 18
        self.text(MARGIN, f"No. {layout.number}", size=11, color=MUTED_COLOR)

        meta_x = PAGE_WIDTH / 2 + 20
        meta_y = 160
        for label, value in layout.meta:
            self.y = meta_y
            self.text(meta_x, f"{label}:", size=10, color=MUTED_COLOR)
            self.text(meta_x + 90, value, size=10, bold=True)
            meta_y += 15

        self.y = 172
        if layout.bill_to:
            self.text(MARGIN, layout.bill_to_label.upper(), size=8, color=MUTED_COLOR)
            for i, line in enumerate(layout.bill_to):
                self.y += 14
                self.text(MARGIN, line, size=10, bold=i == 0)
        self.y = max(self.y, meta_y) + 30

    def table_header(self) -> None:
        rect = fitz.Rect(MARGIN, self.y - 13, PAGE_WIDTH - MARGIN, self.y + 7)
        self.page.draw_rect(rect, color=None, fill=HEADER_FILL)
        x = MARGIN + 6
        for column in self.layout.columns:
            self.text(x, column.title.upper(), size=8, bold=True, color=MUTED_COLOR,
                      align=column.align, width=column.width - 12)
            x += column.width
        self.y += 22

    def table(self) -> None:
        if not self.layout.columns:
            return
        self.table_header()
        for row in self.layout.rows:
            self.ensure_room(20, repeat_table_header=True)
            x = MARGIN + 6
            for column, cell in zip(self.layout.columns, row):
                self.text(x, _fit(str(cell), column.width - 12, 10), size=10,
                          align=column.align, width=column.width - 12)
                x += column.width
            self.y += 6
            self.rule()
            self.y += 14

    def totals(self) -> None:
        if not self.layout.totals:
            return
        self.ensure_room(20 * len(self.layout.totals) + 20)
        self.y += 10
        label_x = PAGE_WIDTH - MARGIN - 230
        last = len(self.layout.totals) - 1
        for i, (label, value) in enumerate(self.layout.totals):
            bold = i == last
            if bold:
                self.y += 4
                self.page.draw_line(fitz.Point(label_x, self.y - 14), fitz.Point(PAGE_WIDTH - MARGIN, self.y - 14),
                                    color=TEXT_COLOR, width=1.2)
            self.text(label_x, label, size=12 if bold else 10, bold=bold)
            self.text(label_x, value, size=12 if bold else 10, bold=bold,
                      color=self.accent if bold else TEXT_COLOR, align="right", width=230)
            self.y += 18

    def notes(self) -> None:
        width = PAGE_WIDTH - 2 * MARGIN
        self.y += 16
        for note in self.layout.notes:
            for line in _wrap(note, width, 9):
                self.ensure_room(14)
                self.text(MARGIN, line, size=9, color=MUTED_COLOR)
                self.y += 13
            self.y += 5

    def footer(self) -> None:
        for page in self.doc:
            page.insert_text(
                fitz.Point(MARGIN, PAGE_HEIGHT - 30),
                f"{self.layout.company_name}  |  {self.layout.title} {self.layout.number}",
                fontsize=8, fontname=FONT, color=MUTED_COLOR,
            )

    def render(self) -> bytes:
        self.new_page()
        self.header()
        self.table()
        self.totals()
        self.notes()
        self.footer()
        self.doc.set_metadata({
            "title": f"{self.layout.title} {self.layout.number}",
            "author": self.layout.company_name,
            "creator": self.layout.company_name,
        })
        try:
            return self.doc.tobytes(garbage=3, deflate=True)
        finally:
            self.doc.close()


def render_pdf(layout: DocumentLayout) -> bytes:
    """Draw ``layout`` and return the PDF bytes."""
    data = _Writer(layout).render()
    logger.info(f"Rendered {layout.title} {layout.number} ({len(data)} bytes)")
    return data


def money(value: Optional[float]) -> str:
    return f"${float(value or 0):,.2f}"


def address_lines(address: Optional[dict]) -> Sequence[str]:
    """Customer address dict (line1, line2, city, state, postal_code) as printable lines."""
    if not address or not address.get("line1"):
        return []
    lines = [address["line1"]]
    if address.get("line2"):
        lines.append(address["line2"])
    city_line = ", ".join(p for p in (address.get("city"), address.get("state")) if p)
    if address.get("postal_code"):
        city_line = f"{city_line} {address['postal_code']}".strip()
    if city_line:
        lines.append(city_line)
    return lines
