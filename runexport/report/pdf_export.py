from __future__ import annotations

import io
import logging
from pathlib import Path
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY, TA_LEFT, TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.cidfonts import UnicodeCIDFont
from reportlab.platypus import (
    HRFlowable,
    Image,
    PageBreak,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from runexport.storage import write_bytes_atomic
from runexport.types import ImageSegment


logger = logging.getLogger(__name__)

# Segment sizes are CSS pixels (96 dpi); PDF user space is 72 dpi.
PX_TO_PT = 0.75

_ALIGNMENTS = {
    'left': TA_LEFT,
    'center': TA_CENTER,
    'right': TA_RIGHT,
    'justify': TA_JUSTIFY,
}


def _contains_cjk(text: str) -> bool:
    for ch in text:
        if '\u4e00' <= ch <= '\u9fff':
            return True
    return False


def _cjk_font(preferred: str) -> str:
    try:
        pdfmetrics.registerFont(UnicodeCIDFont('STSong-Light'))
        return 'STSong-Light'
    except Exception as exc:
        logger.warning('Failed to register CJK font, keeping %s: %s', preferred, exc)
        return preferred


def _bold_font(font_name: str) -> str:
    if font_name in ('Helvetica', 'Times-Roman', 'Courier'):
        return {'Helvetica': 'Helvetica-Bold', 'Times-Roman': 'Times-Bold', 'Courier': 'Courier-Bold'}[font_name]
    return font_name


def _markup(text: str) -> str:
    return escape(text).replace('\n', '<br/>')


class PdfSink:
    """Document sink that lays nodes out as reportlab platypus flowables.

    Nothing touches ``output_path`` until ``close``; an export that fails
    half way leaves no partial PDF behind.
    """

    def __init__(
        self,
        output_path: Path,
        *,
        title: str = 'Test Run Export',
        author: str = 'TestRail Exporter',
        creator: str = 'TestRail Run Exporter',
        font_name: str = 'Helvetica',
        title_font_size: int = 24,
        body_font_size: int = 11,
        margin: int = 48,
    ):
        self.output_path = output_path
        self.title = title
        self.author = author
        self.creator = creator
        self.font_name = font_name
        self.title_font_size = title_font_size
        self.body_font_size = body_font_size
        self.margin = margin
        # platypus frames pad 6pt on every side
        self.frame_width = A4[0] - 2 * margin - 12
        self.frame_height = A4[1] - 2 * margin - 12
        self.story: list = []
        self.image_count = 0
        self._styles = getSampleStyleSheet()
        self._paragraph_styles: dict[tuple[str, float, bool, str], ParagraphStyle] = {}
        self._cjk_font: str | None = None
        self._section_style = ParagraphStyle(
            'RXSection',
            parent=self._styles['Heading2'],
            fontName=_bold_font(font_name),
            fontSize=max(12, int(title_font_size * 0.6)),
            leading=max(16, int(title_font_size * 0.8)),
            spaceBefore=8,
            spaceAfter=4,
        )
        self._cell_style = ParagraphStyle(
            'RXCell',
            parent=self._styles['Normal'],
            fontName=font_name,
            fontSize=body_font_size,
            leading=max(13, int(body_font_size * 1.35)),
        )
        self._cell_label_style = ParagraphStyle(
            'RXCellLabel',
            parent=self._cell_style,
            fontName=_bold_font(font_name),
        )

    def _font_for(self, text: str, *, bold: bool) -> str:
        if _contains_cjk(text):
            if self._cjk_font is None:
                self._cjk_font = _cjk_font(self.font_name)
            return self._cjk_font
        return _bold_font(self.font_name) if bold else self.font_name

    def _paragraph_style(self, font: str, size: float, bold: bool, alignment: str) -> ParagraphStyle:
        key = (font, float(size), bold, alignment)
        style = self._paragraph_styles.get(key)
        if style is None:
            style = ParagraphStyle(
                f'RXText{len(self._paragraph_styles)}',
                parent=self._styles['Normal'],
                fontName=font,
                fontSize=size,
                leading=max(12, size * 1.35),
                alignment=_ALIGNMENTS.get(alignment, TA_LEFT),
                spaceAfter=4,
            )
            self._paragraph_styles[key] = style
        return style

    def add_section(self, title: str | None, *, new_page: bool = False) -> None:
        if new_page and self.story:
            self.story.append(PageBreak())
        if not title:
            return
        self.story.append(Paragraph(_markup(title), self._section_style))
        self.story.append(
            HRFlowable(
                width='100%',
                thickness=0.6,
                color=colors.HexColor('#D1D5DB'),
                lineCap='round',
                spaceBefore=1,
                spaceAfter=5,
            )
        )

    def add_paragraph(self, text: str, *, size: float, bold: bool = False, alignment: str = 'left') -> None:
        font = self._font_for(text, bold=bold)
        self.story.append(Paragraph(_markup(text), self._paragraph_style(font, size, bold, alignment)))

    def add_status_header(self, *, title: str, test_id: int, status: str, color: str) -> None:
        rows = [
            [Paragraph('Title', self._cell_label_style), Paragraph(_markup(title), self._cell_style)],
            [Paragraph('Test ID', self._cell_label_style), Paragraph(_markup(str(test_id)), self._cell_style)],
            [Paragraph('Status', self._cell_label_style), Paragraph(_markup(status), self._cell_style)],
        ]
        table = Table(rows, colWidths=[self.frame_width * 0.22, self.frame_width * 0.78])
        table.setStyle(
            TableStyle(
                [
                    ('BACKGROUND', (0, 0), (0, -1), colors.HexColor(f'#{color}')),
                    ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor('#9CA3AF')),
                    ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
                    ('TOPPADDING', (0, 0), (-1, -1), 4),
                    ('BOTTOMPADDING', (0, 0), (-1, -1), 4),
                ]
            )
        )
        self.story.append(table)
        self.story.append(Spacer(1, 3 * mm))

    def add_image(self, segment: ImageSegment) -> None:
        width = segment.width * PX_TO_PT
        height = segment.height * PX_TO_PT
        # fit the frame without touching the segment's aspect ratio
        fit = min(1.0, self.frame_width / width, self.frame_height / height)
        self.story.append(Image(io.BytesIO(segment.data), width=width * fit, height=height * fit))
        self.story.append(Spacer(1, 2 * mm))
        self.image_count += 1

    def add_spacer(self, height: float) -> None:
        self.story.append(Spacer(1, height))

    def add_rule(self) -> None:
        self.story.append(
            HRFlowable(width='100%', thickness=0.8, color=colors.HexColor('#111827'), spaceBefore=1, spaceAfter=6)
        )

    def render(self) -> bytes:
        story = list(self.story)
        if not story:
            story.append(Paragraph('Empty report', self._cell_style))
        buffer = io.BytesIO()
        document = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            leftMargin=self.margin,
            rightMargin=self.margin,
            topMargin=self.margin,
            bottomMargin=self.margin,
            title=self.title,
            author=self.author,
            creator=self.creator,
            subject='Exported test run',
        )
        document.build(story)
        return buffer.getvalue()

    def close(self) -> None:
        write_bytes_atomic(self.output_path, self.render())
        logger.info('Document saved to %s (%d images)', self.output_path, self.image_count)
