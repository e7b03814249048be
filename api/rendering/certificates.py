"""Certificate rendering - layout, SVG and PDF generation.

This module handles the visual/presentation aspects of certificates:
- A declarative page layout (positioned text blocks, rules and frames)
- SVG serialization of that layout
- PDF conversion via CairoSVG

The layout is plain data, so tests can assert on its text without Cairo.
Nothing here touches the network or the filesystem.
"""

import html
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

# Landscape A4 in PDF points
PAGE_WIDTH = 842
PAGE_HEIGHT = 595

PDF_MAGIC = b"%PDF"

TITLE_BANNER = "CERTIFICATE OF COMPLETION"

# Helvetica/Times/Courier are PDF base-14 fonts, available in every viewer
SANS_FONT = "Helvetica, Arial, sans-serif"
SERIF_FONT = "Times, 'Times New Roman', Georgia, serif"
MONO_FONT = "Courier, 'Courier New', monospace"

PRIMARY_COLOR = "#1e3a8a"
ACCENT_COLOR = "#b8860b"
TEXT_COLOR = "#1f2937"
MUTED_COLOR = "#6b7280"

Anchor = Literal["start", "middle", "end"]


class RenderFailure(Exception):
    """Raised when a certificate document cannot be produced.

    ``cause`` is the underlying error; no partial document is ever returned.
    """

    def __init__(self, cause: BaseException | str):
        self.cause = cause
        super().__init__(f"Certificate rendering failed: {cause}")


@dataclass(frozen=True)
class CertificateDisplayData:
    """Everything printed on a certificate."""

    platform_name: str
    recipient_name: str
    course_title: str
    grade: str
    final_score: float
    completion_date: datetime
    certificate_id: str
    verification_code: str
    verify_url: str
    issuer_name: str
    issuer_title: str
    issue_date: datetime


@dataclass(frozen=True)
class TextBlock:
    text: str
    x: float
    y: float
    font_size: float
    font_family: str = SANS_FONT
    fill: str = TEXT_COLOR
    anchor: Anchor = "middle"
    bold: bool = False
    italic: bool = False
    letter_spacing: float = 0


@dataclass(frozen=True)
class Rule:
    """A horizontal line, used for signature underlines and dividers."""

    x1: float
    x2: float
    y: float
    stroke: str = TEXT_COLOR
    stroke_width: float = 1


@dataclass(frozen=True)
class Frame:
    """A rectangular border."""

    x: float
    y: float
    width: float
    height: float
    stroke: str = PRIMARY_COLOR
    stroke_width: float = 2


LayoutElement = TextBlock | Rule | Frame


@dataclass(frozen=True)
class CertificateLayout:
    width: float
    height: float
    elements: tuple[LayoutElement, ...]

    @property
    def texts(self) -> list[str]:
        """All text content in draw order."""
        return [e.text for e in self.elements if isinstance(e, TextBlock)]


def format_date(value: datetime) -> str:
    """Format a date the way it is printed on certificates (October 18, 2026)."""
    return value.strftime("%B %d, %Y")


def format_score(score: float) -> str:
    return f"{score:g}%"


def _signature_block(
    center_x: float, line_y: float, value: str, caption: str
) -> list[LayoutElement]:
    half_width = 110
    return [
        TextBlock(
            value, center_x, line_y - 8, 13, font_family=SERIF_FONT, italic=True
        ),
        Rule(center_x - half_width, center_x + half_width, line_y),
        TextBlock(caption, center_x, line_y + 16, 10, fill=MUTED_COLOR),
    ]


def build_certificate_layout(data: CertificateDisplayData) -> CertificateLayout:
    """Lay out a single-page landscape certificate.

    All coordinates are absolute, computed from the fixed page size.
    """
    center = PAGE_WIDTH / 2
    margin = 24
    signature_y = 485

    elements: list[LayoutElement] = [
        Frame(margin, margin, PAGE_WIDTH - 2 * margin, PAGE_HEIGHT - 2 * margin),
        Frame(
            margin + 8,
            margin + 8,
            PAGE_WIDTH - 2 * (margin + 8),
            PAGE_HEIGHT - 2 * (margin + 8),
            stroke=ACCENT_COLOR,
            stroke_width=0.75,
        ),
        TextBlock(
            data.platform_name,
            center,
            88,
            18,
            fill=PRIMARY_COLOR,
            bold=True,
            letter_spacing=2,
        ),
        TextBlock(
            TITLE_BANNER,
            center,
            132,
            30,
            font_family=SERIF_FONT,
            fill=PRIMARY_COLOR,
            bold=True,
            letter_spacing=3,
        ),
        Rule(center - 150, center + 150, 148, stroke=ACCENT_COLOR, stroke_width=1.5),
        TextBlock("This is to certify that", center, 188, 14, fill=MUTED_COLOR),
        TextBlock(
            data.recipient_name.upper(),
            center,
            238,
            36,
            font_family=SERIF_FONT,
            bold=True,
        ),
        TextBlock(
            "has successfully completed the course",
            center,
            278,
            14,
            fill=MUTED_COLOR,
        ),
        TextBlock(
            f'"{data.course_title}"',
            center,
            316,
            22,
            font_family=SERIF_FONT,
            fill=PRIMARY_COLOR,
            bold=True,
        ),
        TextBlock(
            f"with a grade of {data.grade} ({format_score(data.final_score)})",
            center,
            350,
            14,
        ),
        TextBlock(
            f"Completed on {format_date(data.completion_date)}",
            center,
            376,
            12,
            fill=MUTED_COLOR,
        ),
        TextBlock(
            f"Certificate ID: {data.certificate_id}",
            center,
            410,
            10,
            font_family=MONO_FONT,
            fill=MUTED_COLOR,
        ),
    ]

    elements += _signature_block(
        210, signature_y, data.issuer_name, data.issuer_title
    )
    elements += _signature_block(
        PAGE_WIDTH - 210, signature_y, format_date(data.issue_date), "Date of Issue"
    )

    elements += [
        TextBlock(
            f"To verify this certificate, visit {data.verify_url} "
            "and enter the verification code below.",
            center,
            536,
            9,
            fill=MUTED_COLOR,
        ),
        TextBlock(
            f"Verification Code: {data.verification_code}",
            center,
            552,
            10,
            font_family=MONO_FONT,
            fill=PRIMARY_COLOR,
            bold=True,
        ),
    ]

    return CertificateLayout(PAGE_WIDTH, PAGE_HEIGHT, tuple(elements))


def _text_to_svg(block: TextBlock) -> str:
    attrs = [
        f'x="{block.x:g}"',
        f'y="{block.y:g}"',
        f'font-family="{block.font_family}"',
        f'font-size="{block.font_size:g}"',
        f'fill="{block.fill}"',
        f'text-anchor="{block.anchor}"',
    ]
    if block.bold:
        attrs.append('font-weight="bold"')
    if block.italic:
        attrs.append('font-style="italic"')
    if block.letter_spacing:
        attrs.append(f'letter-spacing="{block.letter_spacing:g}"')
    # Quotes stay literal inside text nodes; only markup characters are escaped
    content = html.escape(block.text, quote=False)
    return f"  <text {' '.join(attrs)}>{content}</text>"


def _element_to_svg(element: LayoutElement) -> str:
    if isinstance(element, TextBlock):
        return _text_to_svg(element)
    if isinstance(element, Rule):
        return (
            f'  <line x1="{element.x1:g}" y1="{element.y:g}" '
            f'x2="{element.x2:g}" y2="{element.y:g}" '
            f'stroke="{element.stroke}" stroke-width="{element.stroke_width:g}"/>'
        )
    return (
        f'  <rect x="{element.x:g}" y="{element.y:g}" '
        f'width="{element.width:g}" height="{element.height:g}" fill="none" '
        f'stroke="{element.stroke}" stroke-width="{element.stroke_width:g}"/>'
    )


def layout_to_svg(layout: CertificateLayout) -> str:
    """Serialize a layout to a standalone SVG document."""
    body = "\n".join(_element_to_svg(e) for e in layout.elements)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<svg xmlns="http://www.w3.org/2000/svg" '
        f'viewBox="0 0 {layout.width:g} {layout.height:g}" '
        f'width="{layout.width:g}" height="{layout.height:g}">\n'
        f'  <rect width="{layout.width:g}" height="{layout.height:g}" fill="#ffffff"/>\n'
        f"{body}\n"
        "</svg>"
    )


def svg_to_pdf(svg_content: str) -> bytes:
    """Convert SVG string to PDF bytes using CairoSVG.

    Args:
        svg_content: SVG string to convert

    Returns:
        PDF content as bytes

    Raises:
        RuntimeError: If cairo library is not installed on the system
    """
    try:
        import cairosvg
    except OSError as e:
        if "cairo" in str(e).lower():
            raise RuntimeError(
                "PDF generation requires the Cairo library. "
                "On macOS: brew install cairo. "
                "On Ubuntu/Debian: apt-get install libcairo2-dev. "
                "On Alpine: apk add cairo-dev."
            ) from e
        raise

    return cairosvg.svg2pdf(bytestring=svg_content.encode("utf-8"))


def render_certificate_pdf(data: CertificateDisplayData) -> bytes:
    """Render a certificate to PDF bytes.

    CPU-bound; async callers should run it in an executor.

    Raises:
        RenderFailure: On any layout or conversion error, or when the
            converter returns something that is not a PDF.
    """
    try:
        svg_content = layout_to_svg(build_certificate_layout(data))
        pdf = svg_to_pdf(svg_content)
    except Exception as e:
        raise RenderFailure(e) from e

    if not pdf or not pdf.startswith(PDF_MAGIC):
        raise RenderFailure("converter returned an empty or non-PDF document")
    return pdf
