from dataclasses import dataclass
from typing import Any, Optional, Protocol

# Opaque handle to an element; only the DomView that produced it can read it.
ElementRef = Any


@dataclass(frozen=True)
class Rect:
    top: float = 0.0
    left: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def bottom(self) -> float:
        return self.top + self.height


class DomView(Protocol):
    """Read-only access to a rendered page.

    Selectors are XPath 1.0. Relative expressions (``.//p``) are evaluated
    against ``scope``; without a scope the document root is the context node.
    """

    def query(self, xpath: str, scope: Optional[ElementRef] = None) -> list[ElementRef]: ...

    def text(self, ref: ElementRef) -> str: ...

    def attribute(self, ref: ElementRef, name: str) -> Optional[str]: ...

    def tag_name(self, ref: ElementRef) -> str: ...

    def rect(self, ref: ElementRef) -> Rect: ...

    def visible(self, ref: ElementRef) -> bool: ...
