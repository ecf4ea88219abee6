from __future__ import annotations

import html
import re
from typing import List

from webmail.models import BodyLine

_INVISIBLE_BLOCKS = re.compile(r"<(script|style|head|title)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_COMMENTS = re.compile(r"<!--.*?-->", re.DOTALL)
_LINE_BREAKS = re.compile(r"<br\s*/?>|</(p|div|tr|li|h[1-6]|blockquote|pre|table)\s*>", re.IGNORECASE)
_TAGS = re.compile(r"</?[a-zA-Z!?][^>]*>")


def strip_html(value: str) -> str:
    """Best-effort plain text from an HTML body.

    Tags go, entities are unescaped and line-level elements end a line.
    Nothing is reflowed or re-wrapped. Tags spelled with entities
    (``&lt;b&gt;``) are removed too, so the result never carries markup;
    a lone ``<`` or ``>`` in the text is kept.
    """
    text = _INVISIBLE_BLOCKS.sub("", value)
    text = _COMMENTS.sub("", text)
    text = _LINE_BREAKS.sub("\n", text)
    text = _TAGS.sub("", text)
    text = html.unescape(text)
    return _TAGS.sub("", text)


def is_quoted(line: str) -> bool:
    return line.lstrip().startswith(">")


def tag_quoted_lines(text: str) -> List[BodyLine]:
    """Split text into lines marked quoted or not.

    Each line keeps its own line ending, so joining the ``text`` of every
    entry gives back the input unchanged.
    """
    return [BodyLine(text=line, quoted=is_quoted(line)) for line in text.splitlines(keepends=True)]
