# -*- coding: utf-8 -*-
# Sway-IDE is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Language families: detection, comment openers, keywords and definition patterns."""

import logging
import os
import re
from typing import Dict, Optional, Tuple

from pygments.lexer import Lexer
from pygments.lexers import TextLexer, get_lexer_for_filename
from pygments.util import ClassNotFound

logger = logging.getLogger(__name__)

PLAIN = "plain"
RUST = "rust"
PYTHON = "python"
JSTS = "jsts"
GO = "go"
PHP = "php"
CSS = "css"
HTML = "html"
SHELL = "shell"
JSON = "json"
MARKDOWN = "markdown"

# Pygments lexer alias -> language family.
_LEXER_ALIAS_FAMILIES: Dict[str, str] = {
    "rust": RUST, "rs": RUST,
    "python": PYTHON, "py": PYTHON, "python3": PYTHON, "py3": PYTHON,
    "javascript": JSTS, "js": JSTS, "typescript": JSTS, "ts": JSTS,
    "jsx": JSTS, "tsx": JSTS,
    "go": GO, "golang": GO,
    "php": PHP, "php3": PHP, "php4": PHP, "php5": PHP, "html+php": PHP,
    "css": CSS, "scss": CSS, "sass": CSS, "less": CSS,
    "html": HTML, "xml": HTML, "xslt": HTML, "vue": HTML,
    "bash": SHELL, "sh": SHELL, "zsh": SHELL, "ksh": SHELL, "shell": SHELL, "fish": SHELL,
    "json": JSON, "json-object": JSON, "toml": JSON, "yaml": JSON,
    "markdown": MARKDOWN, "md": MARKDOWN,
}

# Extensions Pygments does not resolve (or resolves to an unrelated lexer).
_EXTENSION_FAMILIES: Dict[str, str] = {
    "rs": RUST,
    "py": PYTHON, "pyi": PYTHON,
    "js": JSTS, "jsx": JSTS, "ts": JSTS, "tsx": JSTS, "mjs": JSTS, "cjs": JSTS, "mts": JSTS, "cts": JSTS,
    "go": GO,
    "php": PHP, "phtml": PHP,
    "css": CSS, "scss": CSS, "sass": CSS, "less": CSS,
    "html": HTML, "htm": HTML, "xml": HTML, "svg": HTML, "xhtml": HTML, "vue": HTML, "svelte": HTML,
    "astro": HTML, "jsp": HTML, "erb": HTML, "hbs": HTML, "ejs": HTML,
    "sh": SHELL, "bash": SHELL, "zsh": SHELL, "fish": SHELL, "ksh": SHELL,
    "json": JSON, "jsonc": JSON, "toml": JSON, "yaml": JSON, "yml": JSON,
    "md": MARKDOWN, "markdown": MARKDOWN,
}

_LANGUAGE_IDS: Dict[str, str] = {
    RUST: "rust", PYTHON: "python", JSTS: "typescript", GO: "go", PHP: "php", CSS: "css",
    HTML: "html", SHELL: "shellscript", JSON: "json", MARKDOWN: "markdown", PLAIN: "plaintext",
}

_COMMENT_OPENERS: Dict[str, str] = {
    RUST: "//", JSTS: "//", GO: "//",
    PHP: "/*", CSS: "/*",
    PYTHON: "#", SHELL: "#",
}

_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    RUST: (
        "fn", "let", "mut", "impl", "trait", "struct", "enum", "match", "if", "else",
        "for", "while", "loop", "pub", "use", "mod", "crate", "self", "super", "return",
        "async", "await", "move", "const", "static", "where", "in", "break", "continue",
        "type", "dyn",
    ),
    PYTHON: (
        "def", "class", "if", "elif", "else", "for", "while", "try", "except", "return",
        "import", "from", "as", "with", "async", "await", "yield", "lambda", "pass", "None",
        "True", "False",
    ),
    JSTS: (
        "function", "const", "let", "var", "class", "if", "else", "for", "while", "return",
        "import", "from", "export", "default", "async", "await", "try", "catch", "switch",
        "case", "break", "continue", "interface", "type", "extends", "implements",
    ),
    GO: (
        "package", "import", "func", "var", "const", "type", "struct", "interface", "map",
        "chan", "go", "defer", "select", "if", "else", "switch", "case", "default", "for",
        "range", "return", "break", "continue", "fallthrough",
    ),
    PHP: (
        "function", "class", "interface", "trait", "public", "private", "protected", "static",
        "if", "else", "elseif", "switch", "case", "default", "for", "foreach", "while", "do",
        "return", "new", "use", "namespace", "try", "catch", "finally", "fn",
    ),
    CSS: (
        "@media", "@supports", "@keyframes", "display", "position", "color", "background",
        "border", "margin", "padding", "width", "height", "font", "grid", "flex",
    ),
    SHELL: (
        "if", "then", "else", "fi", "for", "do", "done", "while", "case", "esac", "function",
        "export", "local",
    ),
}

# Function-definition line templates; "{name}" is replaced by the escaped identifier.
_DEFINITION_TEMPLATES: Dict[str, str] = {
    RUST: r"^\s*(?:pub(?:\([^)]*\))?\s+)?(?:const\s+)?(?:async\s+)?(?:unsafe\s+)?fn\s+{name}\s*[<(]",
    PYTHON: r"^\s*(?:async\s+)?def\s+{name}\s*\(",
    JSTS: r"^\s*(?:export\s+)?(?:default\s+)?(?:async\s+)?function\s*\*?\s*{name}\s*[<(]",
    GO: r"^\s*func\s+(?:\([^)]*\)\s*)?{name}\s*[\[(]",
    PHP: r"^\s*(?:(?:public|private|protected|static|final|abstract)\s+)*function\s+&?{name}\s*\(",
    SHELL: r"^\s*(?:function\s+)?{name}\s*\(\s*\)",
}


def language_for_path(path: Optional[str]) -> str:
    """
    Maps a file path to a language family tag.

    Pygments' filename lookup is tried first; its lexer aliases are mapped
    onto the families the editor understands. Unknown lexers and names
    Pygments cannot resolve fall back to an extension table, and anything
    else is ``plain``.

    Args:
        path: The file path (it does not need to exist).

    Returns:
        str: One of the family constants of this module.
    """
    if not path:
        return PLAIN
    filename = os.path.basename(path)
    try:
        lexer = get_lexer_for_filename(filename)
        for alias in lexer.aliases:
            family = _LEXER_ALIAS_FAMILIES.get(alias.lower())
            if family:
                logger.debug(f"Language for '{filename}': {family} (lexer {lexer.name})")
                return family
    except ClassNotFound:
        pass
    ext = os.path.splitext(filename)[1].lstrip(".").lower()
    return _EXTENSION_FAMILIES.get(ext, PLAIN)


def language_id(language: str) -> str:
    """LSP ``languageId`` announced in ``didOpen``."""
    return _LANGUAGE_IDS.get(language, "plaintext")


def comment_opener(language: str) -> Optional[str]:
    return _COMMENT_OPENERS.get(language)


def keywords_for(language: str) -> Tuple[str, ...]:
    return _KEYWORDS.get(language, ())


def is_ident_char(ch: str) -> bool:
    """True for ASCII letters, digits and underscore."""
    return ch == "_" or (ch.isascii() and ch.isalnum())


def definition_pattern(language: str, name: str) -> Optional["re.Pattern[str]"]:
    """
    Builds the regex matching a function-definition line for `name`.

    Visibility qualifiers (``pub``, ``pub(crate)``, ``export``, ``public`` …)
    are optional. The identifier is captured as the ``name`` group. Returns
    None for families without function syntax.
    """
    template = _DEFINITION_TEMPLATES.get(language)
    if template is None or not name:
        return None
    return re.compile(template.replace("{name}", f"(?P<name>{re.escape(name)})"))


def lexer_for_path(path: Optional[str]) -> Lexer:
    """Pygments lexer used to colour `path`; ``TextLexer`` when none matches."""
    if path:
        try:
            return get_lexer_for_filename(os.path.basename(path))
        except ClassNotFound:
            logger.debug(f"No Pygments lexer for '{path}', using plain text.")
    return TextLexer()
