"""DOM capability interface and its BeautifulSoup implementation."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional

from bs4 import BeautifulSoup, Comment, NavigableString, Tag
from bs4.element import PreformattedString
from soupsieve import SelectorSyntaxError

from .errors import LingoProxyError

Node = Any


class InvalidSelectorError(LingoProxyError):
    """Raised when a configured CSS selector cannot be compiled."""


class DocumentAdapter(ABC):
    """Narrow view of a parsed HTML document.

    The walker, the asset injector and the reconcilers only talk to this
    interface, so any DOM implementation providing it can be translated.
    """

    # --- Navigation -------------------------------------------------------

    @abstractmethod
    def root(self) -> Optional[Node]:
        """Return the ``<html>`` element, or the document node when the markup omits it.

        ``None`` means there is nothing to walk at all.
        """

    @abstractmethod
    def head(self) -> Optional[Node]:
        ...

    @abstractmethod
    def body(self) -> Optional[Node]:
        ...

    @abstractmethod
    def children(self, node: Node) -> List[Node]:
        """Return a snapshot of the child nodes of ``node``."""

    @abstractmethod
    def parent(self, node: Node) -> Optional[Node]:
        ...

    @abstractmethod
    def select(self, selector: str, root: Optional[Node] = None) -> List[Node]:
        """Return elements matching ``selector`` in document order."""

    @abstractmethod
    def matches(self, node: Node, selector: str) -> bool:
        ...

    def select_one(self, selector: str) -> Optional[Node]:
        found = self.select(selector)
        return found[0] if found else None

    def iter_elements(self, root: Optional[Node] = None) -> Iterator[Node]:
        """Yield every element below ``root`` (or the document) in pre-order."""

        start = root if root is not None else self.root()
        if start is None:
            return
        if root is None and self.is_element(start):
            yield start
        for child in self.children(start):
            if self.is_element(child):
                yield child
                yield from self.iter_elements(child)

    def ancestors(self, node: Node) -> Iterator[Node]:
        """Yield ``node`` (when it is an element) and each enclosing element."""

        current = node
        while current is not None:
            if self.is_element(current):
                yield current
            current = self.parent(current)

    # --- Node inspection --------------------------------------------------

    @abstractmethod
    def is_element(self, node: Node) -> bool:
        ...

    @abstractmethod
    def is_text(self, node: Node) -> bool:
        ...

    @abstractmethod
    def is_comment(self, node: Node) -> bool:
        ...

    @abstractmethod
    def tag_name(self, node: Node) -> str:
        """Lower-case tag name of an element."""

    @abstractmethod
    def text(self, node: Node) -> str:
        """Data of a text or comment node, text content of an element."""

    @abstractmethod
    def inner_html(self, node: Node) -> str:
        ...

    @abstractmethod
    def get_attr(self, node: Node, name: str) -> Optional[str]:
        ...

    @abstractmethod
    def attr_names(self, node: Node) -> List[str]:
        ...

    def has_class(self, node: Node, name: str) -> bool:
        return name in (self.get_attr(node, "class") or "").split()

    # --- Mutation ---------------------------------------------------------

    @abstractmethod
    def set_text(self, node: Node, value: str) -> Node:
        """Replace the data of a text node (or the content of an element).

        Returns the node now holding the value.
        """

    @abstractmethod
    def set_inner_html(self, node: Node, markup: str) -> None:
        ...

    @abstractmethod
    def set_attr(self, node: Node, name: str, value: str) -> None:
        ...

    @abstractmethod
    def remove_attr(self, node: Node, name: str) -> None:
        ...

    @abstractmethod
    def create_element(self, name: str, attrs: Optional[Dict[str, str]] = None, text: str | None = None) -> Node:
        ...

    @abstractmethod
    def create_comment(self, data: str) -> Node:
        ...

    @abstractmethod
    def insert_before(self, node: Node, new_node: Node) -> None:
        ...

    @abstractmethod
    def append(self, parent: Node, new_node: Node) -> None:
        ...

    @abstractmethod
    def remove(self, node: Node) -> None:
        ...

    def add_class(self, node: Node, name: str) -> None:
        classes = (self.get_attr(node, "class") or "").split()
        if name not in classes:
            classes.append(name)
            self.set_attr(node, "class", " ".join(classes))

    def remove_class(self, node: Node, name: str) -> None:
        classes = [value for value in (self.get_attr(node, "class") or "").split() if value != name]
        if classes:
            self.set_attr(node, "class", " ".join(classes))
        else:
            self.remove_attr(node, "class")

    @abstractmethod
    def serialize(self) -> str:
        """Render the full document back to HTML."""


class SoupDocument(DocumentAdapter):
    """``DocumentAdapter`` backed by BeautifulSoup and soupsieve."""

    PARSER = "html.parser"

    def __init__(self, markup: str) -> None:
        self.soup = BeautifulSoup(markup, self.PARSER)

    def root(self) -> Optional[Node]:
        html = self.soup.find("html")
        return html if html is not None else self.soup

    def head(self) -> Optional[Node]:
        return self.soup.head

    def body(self) -> Optional[Node]:
        return self.soup.body

    def children(self, node: Node) -> List[Node]:
        if isinstance(node, Tag):
            return list(node.contents)
        return []

    def parent(self, node: Node) -> Optional[Node]:
        parent = node.parent
        if parent is None or parent is self.soup:
            return None
        return parent

    def select(self, selector: str, root: Optional[Node] = None) -> List[Node]:
        scope = root if root is not None else self.soup
        try:
            return list(scope.select(selector))
        except SelectorSyntaxError as exc:
            raise InvalidSelectorError(f"Invalid selector {selector!r}: {exc}") from exc

    def matches(self, node: Node, selector: str) -> bool:
        if not isinstance(node, Tag):
            return False
        try:
            return bool(node.css.match(selector))
        except SelectorSyntaxError as exc:
            raise InvalidSelectorError(f"Invalid selector {selector!r}: {exc}") from exc

    def iter_elements(self, root: Optional[Node] = None) -> Iterator[Node]:
        scope = root if root is not None else self.soup
        yield from scope.find_all(True)

    def is_element(self, node: Node) -> bool:
        return isinstance(node, Tag) and not isinstance(node, BeautifulSoup)

    def is_text(self, node: Node) -> bool:
        return isinstance(node, NavigableString) and not isinstance(node, PreformattedString)

    def is_comment(self, node: Node) -> bool:
        return isinstance(node, Comment)

    def tag_name(self, node: Node) -> str:
        return node.name.lower() if isinstance(node, Tag) else ""

    def text(self, node: Node) -> str:
        if isinstance(node, Tag):
            return node.get_text()
        return str(node)

    def inner_html(self, node: Node) -> str:
        return node.decode_contents()

    def get_attr(self, node: Node, name: str) -> Optional[str]:
        if not isinstance(node, Tag):
            return None
        value = node.attrs.get(name)
        if isinstance(value, list):
            return " ".join(value)
        return value

    def attr_names(self, node: Node) -> List[str]:
        return list(node.attrs) if isinstance(node, Tag) else []

    def set_text(self, node: Node, value: str) -> Node:
        if isinstance(node, Tag):
            node.string = value
            return node
        replacement = NavigableString(value)
        node.replace_with(replacement)
        return replacement

    def set_inner_html(self, node: Node, markup: str) -> None:
        fragment = BeautifulSoup(markup, self.PARSER)
        node.clear()
        for child in list(fragment.contents):
            node.append(child.extract())

    def set_attr(self, node: Node, name: str, value: str) -> None:
        node[name] = value

    def remove_attr(self, node: Node, name: str) -> None:
        if name in node.attrs:
            del node[name]

    def create_element(self, name: str, attrs: Optional[Dict[str, str]] = None, text: str | None = None) -> Node:
        element = self.soup.new_tag(name, attrs=attrs or {})
        if text is not None:
            element.string = text
        return element

    def create_comment(self, data: str) -> Node:
        return Comment(data)

    def insert_before(self, node: Node, new_node: Node) -> None:
        node.insert_before(new_node)

    def append(self, parent: Node, new_node: Node) -> None:
        parent.append(new_node)

    def remove(self, node: Node) -> None:
        node.extract()

    def serialize(self) -> str:
        return str(self.soup)


def parse_document(markup: str) -> SoupDocument:
    return SoupDocument(markup)
