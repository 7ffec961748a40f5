"""
Comment and string blanking for import detection.

Import regexes run over a copy of the source in which every comment and the
contents of every string literal have been replaced by spaces. The copy has
the same length as the input and keeps newlines and quote delimiters, so a
match offset in the copy is also the offset of the literal in the original.

    import { a } from 'x'; // from 'y'
    import { a } from ' '; //         <- blanked (shown shortened)

The scanner is a single pass over characters driven by ScanState, so it runs
in linear time and treats backslash escapes the same way in every string kind.
"""

from __future__ import annotations

from enum import Enum


class ScanState(Enum):
    NORMAL = "normal"
    LINE_COMMENT = "line_comment"
    BLOCK_COMMENT = "block_comment"
    SINGLE_QUOTE = "single_quote"
    DOUBLE_QUOTE = "double_quote"
    TEMPLATE = "template"


_QUOTE_STATES = {
    "'": ScanState.SINGLE_QUOTE,
    '"': ScanState.DOUBLE_QUOTE,
    "`": ScanState.TEMPLATE,
}

_CLOSING_QUOTE = {
    ScanState.SINGLE_QUOTE: "'",
    ScanState.DOUBLE_QUOTE: '"',
    ScanState.TEMPLATE: "`",
}


def _blank(ch: str) -> str:
    return ch if ch in "\r\n" else " "


def blank_comments_and_strings(text: str, *, line_comments: bool = True) -> str:
    """
    Replace comments and string contents with spaces.

    Args:
        text: Script or stylesheet source.
        line_comments: Treat "//" as a line comment. Off for plain CSS, where
            "//" is not a comment (e.g. inside url(http://...)).

    Returns:
        String of the same length as text.
    """
    out: list[str] = []
    state = ScanState.NORMAL
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]
        nxt = text[i + 1] if i + 1 < n else ""

        if state is ScanState.NORMAL:
            if ch == "/" and nxt == "*":
                state = ScanState.BLOCK_COMMENT
                out.append("  ")
                i += 2
                continue
            if line_comments and ch == "/" and nxt == "/":
                state = ScanState.LINE_COMMENT
                out.append("  ")
                i += 2
                continue
            if ch in _QUOTE_STATES:
                state = _QUOTE_STATES[ch]
            out.append(ch)
            i += 1
            continue

        if state is ScanState.LINE_COMMENT:
            if ch == "\n":
                state = ScanState.NORMAL
            out.append(_blank(ch))
            i += 1
            continue

        if state is ScanState.BLOCK_COMMENT:
            if ch == "*" and nxt == "/":
                state = ScanState.NORMAL
                out.append("  ")
                i += 2
                continue
            out.append(_blank(ch))
            i += 1
            continue

        # String states
        if ch == "\\":
            out.append(" ")
            if nxt:
                out.append(_blank(nxt))
            i += 2
            continue
        if ch == _CLOSING_QUOTE[state]:
            state = ScanState.NORMAL
            out.append(ch)
            i += 1
            continue
        if ch == "\n" and state is not ScanState.TEMPLATE:
            # Unterminated quote ends at the line break
            state = ScanState.NORMAL
        out.append(_blank(ch))
        i += 1

    return "".join(out)
