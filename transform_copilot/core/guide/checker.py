"""
Tutorial checker.

Checks a set of Markdown guides for the problems a reader hits first:
fences that never close, YAML and SQL samples that do not parse, CLI
examples naming commands that do not exist, broken relative links and
anchors, and guides that are near-copies of each other.
"""
from __future__ import annotations

import difflib
import logging
import re
import shlex
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set
from urllib.parse import unquote

import yaml
from jinja2 import Environment, TemplateSyntaxError

from transform_copilot.core.manifest.parser import SNAPSHOT_BLOCK_RE

from .markdown import Fence, MarkdownDoc, parse_markdown

_log = logging.getLogger("transform.guide")

CLI_NAME = "transform-copilot"

YAML_LANGS = {"yaml", "yml"}
SQL_LANGS = {"sql", "jinja", "sql+jinja", "jinja2"}
SHELL_LANGS = {"bash", "sh", "shell", "console", "zsh", "shell-session"}

# Global options that consume the following token.
_VALUE_FLAGS = {"--project-dir", "--profiles-dir", "--target", "-t", "--log-level", "--vars", "--target-path"}

_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*:")

DEFAULT_DUPLICATE_THRESHOLD = 0.9


@dataclass
class Finding:
    path: str
    line: int
    code: str
    severity: str
    message: str

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


@dataclass
class GuideReport:
    files: List[str] = field(default_factory=list)
    findings: List[Finding] = field(default_factory=list)

    @property
    def errors(self) -> List[Finding]:
        return [f for f in self.findings if f.severity == "error"]

    @property
    def warnings(self) -> List[Finding]:
        return [f for f in self.findings if f.severity == "warning"]

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, object]:
        return {
            "files": list(self.files),
            "ok": self.ok,
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "findings": [f.to_dict() for f in self.findings],
        }


def iter_markdown_files(paths: Iterable[Path]) -> List[Path]:
    out: List[Path] = []
    for p in paths:
        p = Path(p)
        if p.is_dir():
            out += sorted(x for x in p.rglob("*.md") if x.is_file())
        elif p.is_file():
            out.append(p)
        else:
            raise FileNotFoundError(f"guide path not found: {p}")
    seen: Set[Path] = set()
    unique = []
    for p in out:
        rp = p.resolve()
        if rp not in seen:
            seen.add(rp)
            unique.append(p)
    return unique


class GuideChecker:
    def __init__(
        self,
        *,
        known_commands: Optional[Dict[str, Set[str]]] = None,
        duplicate_threshold: float = DEFAULT_DUPLICATE_THRESHOLD,
        root: Optional[Path] = None,
    ):
        self.known_commands = known_commands
        self.duplicate_threshold = duplicate_threshold
        self.root = root
        self._jinja = Environment()
        self._docs: Dict[Path, MarkdownDoc] = {}

    # ------------------------------------------------------------------
    # entrypoint
    # ------------------------------------------------------------------
    def check(self, paths: Iterable[Path]) -> GuideReport:
        files = iter_markdown_files(paths)
        report = GuideReport(files=[str(f) for f in files])
        texts: Dict[Path, str] = {}

        for f in files:
            try:
                text = f.read_text(encoding="utf-8")
            except UnicodeDecodeError as exc:
                line = exc.object[: exc.start].count(b"\n") + 1
                report.findings.append(
                    Finding(str(f), line, "guide.encoding", "error", f"not valid UTF-8 at byte {exc.start}")
                )
                continue
            texts[f] = text
            self._docs[f.resolve()] = parse_markdown(text)

        for f in texts:
            doc = self._docs[f.resolve()]
            for fence in doc.fences:
                report.findings += self._check_fence(f, fence)
            report.findings += self._check_links(f, doc)

        report.findings += self._check_duplicates(texts)
        report.findings.sort(key=lambda x: (x.path, x.line, x.code))
        _log.info(
            "checked %d guide files: errors=%d warnings=%d",
            len(files),
            len(report.errors),
            len(report.warnings),
        )
        return report

    # ------------------------------------------------------------------
    # fences
    # ------------------------------------------------------------------
    def _check_fence(self, path: Path, fence: Fence) -> List[Finding]:
        p = str(path)
        if not fence.closed:
            return [Finding(p, fence.start_line, "fence.unclosed", "error", "code fence is never closed")]

        if fence.lang in YAML_LANGS:
            try:
                list(yaml.safe_load_all(fence.body))
            except yaml.YAMLError as exc:
                mark = getattr(exc, "problem_mark", None)
                line = fence.start_line + 1 + (mark.line if mark is not None else 0)
                problem = getattr(exc, "problem", None) or str(exc)
                return [Finding(p, line, "fence.yaml", "error", f"YAML does not parse: {problem}")]

        if fence.lang in SQL_LANGS:
            try:
                # Snapshot blocks are unwrapped the way the project parser does.
                self._jinja.parse(SNAPSHOT_BLOCK_RE.sub(lambda m: m.group(2), fence.body))
            except TemplateSyntaxError as exc:
                line = fence.start_line + (exc.lineno or 1)
                return [Finding(p, line, "fence.sql", "error", f"Jinja does not parse: {exc.message}")]

        if fence.lang in SHELL_LANGS and self.known_commands is not None:
            return self._check_cli(path, fence)
        return []

    def _check_cli(self, path: Path, fence: Fence) -> List[Finding]:
        findings: List[Finding] = []
        for offset, raw in enumerate(fence.body.splitlines(), start=1):
            line = raw.strip()
            if line.startswith("$ "):
                line = line[2:]
            if not line.startswith(CLI_NAME + " ") and line != CLI_NAME:
                continue
            try:
                tokens = shlex.split(line.rstrip("\\"), comments=True)[1:]
            except ValueError:
                tokens = line.split()[1:]

            words: List[str] = []
            skip_next = False
            for tok in tokens:
                if skip_next:
                    skip_next = False
                    continue
                if tok.startswith("-"):
                    if tok in _VALUE_FLAGS:
                        skip_next = True
                    if words:
                        break
                    continue
                words.append(tok)
                if len(words) == 2:
                    break

            if not words:
                continue
            problem = self._unknown_command(words)
            if problem:
                findings.append(
                    Finding(str(path), fence.start_line + offset, "fence.cli", "error", problem)
                )
        return findings

    def _unknown_command(self, words: List[str]) -> Optional[str]:
        top = words[0]
        if top not in self.known_commands:
            return f"unknown command '{CLI_NAME} {top}'"
        subs = self.known_commands[top]
        if subs:
            if len(words) < 2:
                return f"'{CLI_NAME} {top}' needs a subcommand ({', '.join(sorted(subs))})"
            if words[1] not in subs:
                return f"unknown command '{CLI_NAME} {top} {words[1]}'"
        return None

    # ------------------------------------------------------------------
    # links
    # ------------------------------------------------------------------
    def _doc_for(self, path: Path) -> Optional[MarkdownDoc]:
        rp = path.resolve()
        if rp not in self._docs:
            try:
                self._docs[rp] = parse_markdown(rp.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError):
                return None
        return self._docs[rp]

    def _check_links(self, path: Path, doc: MarkdownDoc) -> List[Finding]:
        findings: List[Finding] = []
        for link in doc.links:
            target = link.target.strip()
            if not target or _SCHEME.match(target) or target.startswith("//"):
                continue
            file_part, _, anchor = target.partition("#")
            file_part = unquote(file_part.split("?", 1)[0])

            if file_part:
                if file_part.startswith("/"):
                    base = self.root or path.parent
                    resolved = base / file_part.lstrip("/")
                else:
                    resolved = path.parent / file_part
                if not resolved.exists():
                    kind = "image" if link.is_image else "link"
                    findings.append(
                        Finding(str(path), link.line, "link.missing", "error", f"{kind} target not found: {target}")
                    )
                    continue
            else:
                resolved = path

            if anchor and resolved.suffix.lower() == ".md" and resolved.is_file():
                target_doc = self._doc_for(resolved)
                if target_doc is not None and anchor.lower() not in target_doc.anchors():
                    findings.append(
                        Finding(str(path), link.line, "link.anchor", "error", f"anchor not found: {target}")
                    )
        return findings

    # ------------------------------------------------------------------
    # duplicates
    # ------------------------------------------------------------------
    def _check_duplicates(self, texts: Dict[Path, str]) -> List[Finding]:
        findings: List[Finding] = []
        files = list(texts)
        for i, a in enumerate(files):
            for b in files[i + 1:]:
                matcher = difflib.SequenceMatcher(None, texts[a], texts[b], autojunk=False)
                if matcher.real_quick_ratio() < self.duplicate_threshold:
                    continue
                if matcher.quick_ratio() < self.duplicate_threshold:
                    continue
                ratio = matcher.ratio()
                if ratio >= self.duplicate_threshold:
                    findings.append(
                        Finding(
                            str(b),
                            1,
                            "guide.duplicate",
                            "warning",
                            f"near-duplicate of {a} (similarity {ratio:.2f})",
                        )
                    )
        return findings


def check_guides(
    paths: Iterable[Path],
    *,
    known_commands: Optional[Dict[str, Set[str]]] = None,
    duplicate_threshold: float = DEFAULT_DUPLICATE_THRESHOLD,
    root: Optional[Path] = None,
) -> GuideReport:
    checker = GuideChecker(known_commands=known_commands, duplicate_threshold=duplicate_threshold, root=root)
    return checker.check(paths)
