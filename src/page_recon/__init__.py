"""
Page Layout Reconstruction
==========================

Rebuilds the logical structure of print-layout pages (page geometry, text
runs and a rendered bitmap) as one HTML fragment per page, in reading order.

Main components:
- Crop range detection from the drawing operator stream
- Zone segmentation of the page bitmap (header, footer, figures, tables, text)
- Table structure parsing and assembly
- Text run classification and zone membership
- Paragraph, heading and caption assembly with dehyphenation
- Footnote reference resolution
"""

__version__ = "1.0.0"
__author__ = "Page Reconstruction Team"
