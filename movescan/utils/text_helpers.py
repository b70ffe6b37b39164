"""Text helpers for the pattern-based extractor and the rule predicates."""

import re

_BLANKABLE = re.compile(r"[^\n]")


def _blank(text: str) -> str:
    """Replace every character except newlines with a space."""
    return _BLANKABLE.sub(" ", text)


def mask_source(content: str, mask_strings: bool = True) -> str:
    """Blank out comments (and optionally string literals) keeping offsets intact.

    The result has the same length and newline positions as ``content`` so any
    index found in the masked text is valid in ``content``.
    """
    out: list[str] = []
    i = 0
    n = len(content)
    while i < n:
        ch = content[i]
        nxt = content[i + 1] if i + 1 < n else ""
        if ch == "/" and nxt == "/":
            end = content.find("\n", i)
            end = n if end == -1 else end
            out.append(_blank(content[i:end]))
            i = end
        elif ch == "/" and nxt == "*":
            end = content.find("*/", i + 2)
            end = n if end == -1 else end + 2
            out.append(_blank(content[i:end]))
            i = end
        elif ch == '"':
            j = i + 1
            while j < n and content[j] != '"':
                j += 2 if content[j] == "\\" else 1
            end = min(j + 1, n)
            out.append(content[i:end] if not mask_strings else '"' + _blank(content[i + 1:end - 1]) + content[end - 1:end])
            i = end
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def strip_comments(content: str) -> str:
    """Blank out comments only; string literals are kept."""
    return mask_source(content, mask_strings=False)


def find_matching_brace(content: str, open_index: int) -> int:
    """Return the index of the ``}`` closing the ``{`` at ``open_index``, or -1.

    Depth starts at one just after the opening brace and the scan stops as
    soon as it returns to zero.
    """
    depth = 1
    for i in range(open_index + 1, len(content)):
        ch = content[i]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return -1


def first_unbalanced_index(content: str) -> int | None:
    """Index of the first delimiter breaking brace balance, or None if balanced."""
    depth = 0
    stack: list[int] = []
    for i, ch in enumerate(content):
        if ch == "{":
            depth += 1
            stack.append(i)
        elif ch == "}":
            depth -= 1
            if depth < 0:
                return i
            stack.pop()
    if stack:
        return stack[0]
    return None


def line_number(content: str, index: int) -> int:
    """1-based line number of an offset."""
    return content.count("\n", 0, max(index, 0)) + 1


def split_lines(content: str) -> list[str]:
    """Split into lines; a trailing newline does not open an extra empty line."""
    if not content:
        return []
    lines = content.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines


def line_content(lines: list[str], line_num: int) -> str:
    """Stripped text of a 1-based line, or an empty string when out of range."""
    if 1 <= line_num <= len(lines):
        return lines[line_num - 1].strip()
    return ""


def split_top_level(text: str, separator: str = ",") -> list[str]:
    """Split on ``separator`` ignoring occurrences nested in <>, () or []."""
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for ch in text:
        if ch in "<([":
            depth += 1
        elif ch in ">)]":
            depth = max(depth - 1, 0)
        if ch == separator and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    parts.append("".join(current))
    return [p.strip() for p in parts if p.strip()]


def contains_word(text: str, word: str) -> bool:
    """True if ``word`` occurs in ``text`` as a whole identifier."""
    return re.search(rf"(?<![A-Za-z0-9_]){re.escape(word)}(?![A-Za-z0-9_])", text) is not None

