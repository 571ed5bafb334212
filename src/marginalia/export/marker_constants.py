"""Highlight marker format.

Every highlight renders as one or more ``<mark>`` elements sharing the
highlight's id.  ``data-highlight-pos`` lets CSS round only the outer
corners of a highlight split across several elements:

- ``only``: the highlight rendered as a single element
- ``first`` / ``last``: outermost elements of a split highlight
- (absent): a middle element
"""

from __future__ import annotations

MARKER_CLASS = "highlight-mark"
MARKER_OPEN_TEMPLATE = '<mark class="{cls}" data-highlight-id="{id}"{pos}>'
MARKER_CLOSE = "</mark>"
MARKER_POS_TEMPLATE = ' data-highlight-pos="{}"'

POS_ONLY = "only"
POS_FIRST = "first"
POS_LAST = "last"
