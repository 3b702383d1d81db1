"""Just enough Markdown structure for checking a tutorial: fences, headings, links."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

_FENCE_OPEN = re.compile(r"^(\s{0,3})(`{3,}|~{3,})\s*([^\s`]*)")
_HEADING = re.compile(r"^\s{0,3}(#{1,6})\s+(.*?)\s*#*\s*$")
_INLINE_CODE = re.compile(r"`+[^`]*`+")
_LINK = re.compile(r"(!?)\[((?:[^\[\]]|\[[^\]]*\])*)\]\(\s*<?([^)\s>]+)>?(?:\s+[\"'][^\"']*[\"'])?\s*\)")
_REF_DEF = re.compile(r"^\s{0,3}\[([^\]]+)\]:\s*<?(\S+?)>?(?:\s+[\"'(].*)?$")
_SLUG_STRIP = re.compile(r"[^\w\- ]", re.UNICODE)


@dataclass
class Fence:
    lang: str
    start_line: int
    body: str
    end_line: Optional[int] = None

    @property
    def closed(self) -> bool:
        return self.end_line is not None


@dataclass
class Link:
    target: str
    line: int
    is_image: bool = False
    text: str = ""


@dataclass
class MarkdownDoc:
    fences: List[Fence] = field(default_factory=list)
    headings: List[Tuple[int, str]] = field(default_factory=list)
    links: List[Link] = field(default_factory=list)

    def anchors(self) -> List[str]:
        return heading_slugs([h for _, h in self.headings])


def slugify(heading: str) -> str:
    """GitHub-style heading anchor."""
    text = _INLINE_CODE.sub(lambda m: m.group(0).strip("`"), heading)
    text = re.sub(r"!?\[([^\]]*)\]\([^)]*\)", r"\1", text)
    text = _SLUG_STRIP.sub("", text.strip().lower())
    return text.replace(" ", "-")


def heading_slugs(headings: List[str]) -> List[str]:
    seen: Dict[str, int] = {}
    out: List[str] = []
    for h in headings:
        base = slugify(h)
        n = seen.get(base, 0)
        out.append(base if n == 0 else f"{base}-{n}")
        seen[base] = n + 1
    return out


def parse_markdown(text: str) -> MarkdownDoc:
    doc = MarkdownDoc()
    lines = text.splitlines()
    fence: Optional[Fence] = None
    fence_marker = ""
    body: List[str] = []

    for lineno, line in enumerate(lines, start=1):
        if fence is not None:
            stripped = line.strip()
            if stripped.startswith(fence_marker[0] * len(fence_marker)) and set(stripped) <= {fence_marker[0]}:
                fence.body = "\n".join(body)
                fence.end_line = lineno
                fence = None
                body = []
            else:
                body.append(line)
            continue

        m = _FENCE_OPEN.match(line)
        if m:
            fence_marker = m.group(2)
            fence = Fence(lang=(m.group(3) or "").lower(), start_line=lineno, body="")
            doc.fences.append(fence)
            continue

        h = _HEADING.match(line)
        if h:
            doc.headings.append((lineno, h.group(2)))

        plain = _INLINE_CODE.sub("", line)
        ref = _REF_DEF.match(plain)
        if ref:
            doc.links.append(Link(target=ref.group(2), line=lineno, text=ref.group(1)))
            continue
        for lm in _LINK.finditer(plain):
            doc.links.append(Link(target=lm.group(3), line=lineno, is_image=lm.group(1) == "!", text=lm.group(2)))

    if fence is not None:
        fence.body = "\n".join(body)
    return doc
