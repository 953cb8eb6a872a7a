"""
Solidity rendering helpers shared by the module generators.

Generators build contracts from small `render_*` functions that return text
blocks; these helpers take care of literal escaping, indentation and the
common file header so every generator emits byte-stable output.
"""

from __future__ import annotations

import textwrap

SOLIDITY_VERSION = "0.8.19"
INDENT = "    "


def escape_string(value: str) -> str:
    """
    Escape text for a Solidity double-quoted string literal.

    Non-ASCII characters are emitted as \\u escapes (astral characters as
    their UTF-8 bytes) since plain literals only accept printable ASCII.
    """
    out: list[str] = []
    for ch in value or "":
        code = ord(ch)
        if ch == "\\":
            out.append("\\\\")
        elif ch == '"':
            out.append('\\"')
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\r":
            out.append("\\r")
        elif ch == "\t":
            out.append("\\t")
        elif 32 <= code < 127:
            out.append(ch)
        elif code < 0x10000:
            out.append(f"\\u{code:04x}")
        else:
            out.extend(f"\\x{b:02x}" for b in ch.encode("utf-8"))
    return "".join(out)


def string_literal(value: str) -> str:
    return f'"{escape_string(value)}"'


def comment_text(value: str) -> str:
    """Flatten text for use inside a /* */ comment."""
    flat = " ".join((value or "").split())
    return flat.replace("*/", "* /")


def address_literal(address: str) -> str:
    """
    Render an address constant.

    Goes through a hex string so the literal is exempt from the compiler's
    mixed-case checksum requirement.
    """
    return f'address(bytes20(hex"{address[2:].lower()}"))'


def indent(text: str, levels: int = 1) -> str:
    return textwrap.indent(text, INDENT * levels)


def block(text: str) -> str:
    """Dedent a triple-quoted template and drop the surrounding newlines."""
    return textwrap.dedent(text).strip("\n")


def render_file_header(title: str, detail_lines: list[str], imports: list[str] | None = None) -> str:
    """License, pragma, optional imports and the descriptive doc comment."""
    lines = [
        "// SPDX-License-Identifier: MIT",
        f"pragma solidity ^{SOLIDITY_VERSION};",
        "",
    ]
    for path in imports or []:
        lines.append(f'import "{path}";')
    if imports:
        lines.append("")
    lines.append("/**")
    lines.append(f" * {comment_text(title)}")
    for detail in detail_lines:
        lines.append(f" * {comment_text(detail)}" if detail else " *")
    lines.append(" */")
    return "\n".join(lines)


def render_contract(header: str, name: str, sections: list[str]) -> str:
    """Assemble a contract body from already-rendered member sections."""
    body = "\n\n".join(indent(s) for s in sections if s)
    return f"{header}\n\ncontract {name} {{\n{body}\n}}\n"
