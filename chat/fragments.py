"""Rendering and encoding of multi-fragment htmx responses.

The body of a chat response is a run of sibling HTML elements. The first
one is swapped into the request's ``hx-target``; every element flagged
out-of-band carries ``hx-swap-oob="true"`` and an ``id`` and is swapped into
the element with that id instead. Each fragment must stand on its own: one
balanced root element, no stray text around it.
"""

from __future__ import annotations

from html.parser import HTMLParser
from typing import Any, Dict, List, Optional, Tuple

from jinja2 import Environment

from chat.errors import FragmentEncodingError
from chat.models import Fragment, FragmentSet


VOID_ELEMENTS = frozenset(
    {"area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta", "source", "track", "wbr"}
)


class FragmentRenderer:
    """Renders fragment templates with a Jinja2 environment (autoescape on)."""

    def __init__(self, env: Environment) -> None:
        self.env = env

    def render(self, template: str, context: Dict[str, Any]) -> str:
        return self.env.get_template(template).render(**context)


class _RootScanner(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.stack: List[str] = []
        self.roots: List[Tuple[str, Dict[str, Optional[str]]]] = []
        self.errors: List[str] = []

    def handle_starttag(self, tag, attrs):
        if not self.stack:
            self.roots.append((tag, dict(attrs)))
        if tag not in VOID_ELEMENTS:
            self.stack.append(tag)

    def handle_startendtag(self, tag, attrs):
        if not self.stack:
            self.roots.append((tag, dict(attrs)))

    def handle_endtag(self, tag):
        if tag in VOID_ELEMENTS:
            return
        if not self.stack or self.stack[-1] != tag:
            self.errors.append(f"unexpected </{tag}>")
            return
        self.stack.pop()

    def handle_data(self, data):
        if not self.stack and data.strip():
            self.errors.append("text outside the root element")


def check_fragment(name: str, markup: str, *, oob: bool = False) -> None:
    scanner = _RootScanner()
    scanner.feed(markup)
    scanner.close()

    if scanner.stack:
        scanner.errors.append(f"unclosed <{scanner.stack[-1]}>")
    if len(scanner.roots) != 1:
        scanner.errors.append(f"expected one root element, found {len(scanner.roots)}")
    elif oob:
        _, attrs = scanner.roots[0]
        if attrs.get("hx-swap-oob") is None or not attrs.get("id"):
            scanner.errors.append("out-of-band root needs an id and hx-swap-oob")

    if scanner.errors:
        raise FragmentEncodingError(
            f"Fragment {name!r} is not self-contained: {'; '.join(scanner.errors)}",
            fragment=name,
        )


class FragmentEncoder:
    """Serializes a FragmentSet into one ``text/html`` body, in set order."""

    def __init__(self, renderer: FragmentRenderer) -> None:
        self.renderer = renderer

    def render_fragment(self, fragment: Fragment) -> str:
        context = dict(fragment.context)
        context.setdefault("oob", fragment.oob)
        markup = self.renderer.render(fragment.template, context).strip()
        check_fragment(fragment.name, markup, oob=fragment.oob)
        return markup

    def encode(self, fragments: FragmentSet) -> str:
        return "\n".join(self.render_fragment(f) for f in fragments.fragments)
