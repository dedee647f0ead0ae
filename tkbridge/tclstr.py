"""Formatting of Tcl command strings and parsing of Tcl list results."""

from typing import Any, Iterable, List

# Characters that are special in a bare Tcl word. They are replaced by \xNN
# escapes so a value always stays a single word.
_BAD_CHARS = frozenset("&;`'\"|*?~<>^()[]{}$\\\n\r\t ")
# Same as _BAD_CHARS but keeps <> so event sequences like <Key> survive.
_BAD_BIND_CHARS = _BAD_CHARS - {"<", ">"}


def _escape(s: str, bad: frozenset) -> str:
    if s == "":
        return "{}"
    if not any(c in bad for c in s):
        return s
    return "".join(f"\\x{ord(c):02x}" if c in bad else c for c in s)


def tcl_safe_string(s: str) -> str:
    """Return ``s`` as a single Tcl word.

    The empty string becomes ``{}``.
    """
    return _escape(s, _BAD_CHARS)


def tcl_safe_bind(s: str) -> str:
    """Like :func:`tcl_safe_string` but leaves ``<`` and ``>`` alone."""
    return _escape(s, _BAD_BIND_CHARS)


def tcl_safe_strings(values: Iterable[str]) -> str:
    """Return a space separated list of safe Tcl words."""
    return " ".join(tcl_safe_string(v) for v in values)


def tcl_safe_list(*values: Any) -> str:
    """Like :func:`tcl_safe_strings` for arbitrary values."""
    return " ".join(tcl_safe_string(str(v)) for v in values)


def split_list(s: str) -> List[str]:
    """Split a Tcl list result into its elements.

    Handles brace grouping, double quoted elements and backslash escapes of
    the next character, which covers the lists Tk returns.

    Raises:
        ValueError: If a brace or a quote is left unbalanced.
    """
    items: List[str] = []
    i, n = 0, len(s)
    while True:
        while i < n and s[i].isspace():
            i += 1
        if i >= n:
            return items

        if s[i] == "{":
            depth, start = 1, i + 1
            i += 1
            while i < n and depth:
                if s[i] == "\\":
                    i += 1
                elif s[i] == "{":
                    depth += 1
                elif s[i] == "}":
                    depth -= 1
                i += 1
            if depth:
                raise ValueError(f"unmatched open brace in list: {s!r}")
            items.append(s[start : i - 1])
            continue

        buf = []
        quoted = s[i] == '"'
        if quoted:
            i += 1
        while i < n:
            c = s[i]
            if quoted and c == '"':
                i += 1
                break
            if not quoted and c.isspace():
                break
            if c == "\\" and i + 1 < n:
                i += 1
                c = s[i]
            buf.append(c)
            i += 1
        else:
            if quoted:
                raise ValueError(f"unmatched open quote in list: {s!r}")
        items.append("".join(buf))
