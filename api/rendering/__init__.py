"""Rendering module for presentation concerns.

This module handles all presentation/rendering logic:
- Certificate page layout
- SVG serialization and PDF conversion

This separates presentation concerns from business logic in services.
"""

from rendering.certificates import (
    CertificateDisplayData,
    CertificateLayout,
    RenderFailure,
    build_certificate_layout,
    layout_to_svg,
    render_certificate_pdf,
    svg_to_pdf,
)

__all__ = [
    "CertificateDisplayData",
    "CertificateLayout",
    "RenderFailure",
    "build_certificate_layout",
    "layout_to_svg",
    "render_certificate_pdf",
    "svg_to_pdf",
]
