"""
Module resolution for the script bundler.

Walks the entry module's static import graph. Extensionless specifiers are
resolved by trying each configured extension in priority order, then the same
list against ``<dir>/index``. Bare specifiers resolve to packages under
``node_modules`` and are not traversed.
"""

from __future__ import annotations

import re
from collections import deque
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from ...core.exceptions import ResolutionError
from ...core.logging import get_logger
from ...models.graph import (
    PLAIN_EXTENSIONS,
    TYPED_EXTENSIONS,
    ImportEdge,
    ModuleGraph,
    ModuleKind,
    ModuleNode,
)

logger = get_logger(__name__)

_STATIC_IMPORT = re.compile(
    r"""(?<![\w$.])(?:import|export)\s+(?:type\s+)?(?:[\w$*{}\s,]+?\s+from\s*)?(?P<q>['"])(?P<spec>[^'"\n]+)(?P=q)"""
)
_DYNAMIC_IMPORT = re.compile(r"""(?<![\w$.])import\s*\(\s*(?P<q>['"])(?P<spec>[^'"\n]+)(?P=q)\s*\)""")

SCANNED_KINDS = (ModuleKind.TYPED, ModuleKind.PLAIN, ModuleKind.GLUE)


class ResolutionPolicy(BaseModel):
    """How specifiers map to files."""

    model_config = ConfigDict(frozen=True)

    extensions: tuple[str, ...] = Field(description="Extension priority list")
    root: Path = Field(description="Project root; node_modules lookups stop here")
    glue_dir: Path | None = Field(default=None, description="Staging directory of glue bindings")


# after one of these a "/" starts a regex literal rather than a division
_REGEX_AFTER_CHARS = frozenset("(,=:[!&|?{};+-*%<>~^")
_REGEX_AFTER_WORDS = frozenset(
    {"return", "typeof", "case", "do", "else", "in", "of", "new", "delete", "void", "throw", "yield", "await"}
)


def mask_source(source: str) -> str:
    """Blank out comments and the bodies of string, template and regex literals.

    Offsets, newlines and string quotes are preserved, so import statements
    can be matched against the masked text and their specifiers read back
    from ``source`` at the same offsets. Code inside ``${...}`` template
    substitutions stays visible.
    """
    out = list(source)
    n = len(source)

    def blank(start: int, end: int) -> None:
        for j in range(start, min(end, n)):
            if out[j] != "\n":
                out[j] = " "

    i = 0
    in_template = False
    # brace depth inside each open ${...} substitution, innermost last
    substitutions: list[int] = []
    previous = ""
    while i < n:
        ch = source[i]
        if in_template:
            if ch == "\\":
                blank(i, i + 2)
                i += 2
            elif ch == "`":
                in_template = False
                previous = "`"
                i += 1
            elif source.startswith("${", i):
                substitutions.append(0)
                in_template = False
                previous = "{"
                i += 2
            else:
                blank(i, i + 1)
                i += 1
            continue

        if ch == "{" and substitutions:
            substitutions[-1] += 1
        elif ch == "}" and substitutions:
            if substitutions[-1] == 0:
                substitutions.pop()
                in_template = True
                i += 1
                continue
            substitutions[-1] -= 1

        if ch in "'\"":
            j = i + 1
            while j < n and source[j] not in (ch, "\n"):
                j += 2 if source[j] == "\\" else 1
            blank(i + 1, j)
            previous = ch
            i = j + 1
        elif ch == "`":
            in_template = True
            i += 1
        elif source.startswith("//", i):
            end = source.find("\n", i)
            end = n if end == -1 else end
            blank(i, end)
            i = end
        elif source.startswith("/*", i):
            end = source.find("*/", i + 2)
            end = n if end == -1 else end + 2
            blank(i, end)
            i = end
        elif ch == "/" and (previous == "" or previous in _REGEX_AFTER_CHARS or previous in _REGEX_AFTER_WORDS):
            j = i + 1
            in_class = False
            while j < n and source[j] != "\n":
                c = source[j]
                if c == "\\":
                    j += 2
                    continue
                if c == "[":
                    in_class = True
                elif c == "]":
                    in_class = False
                elif c == "/" and not in_class:
                    break
                j += 1
            blank(i + 1, j)
            previous = "/re"
            i = j + 1
        elif ch.isalnum() or ch in "_$":
            j = i + 1
            while j < n and (source[j].isalnum() or source[j] in "_$"):
                j += 1
            previous = source[i:j]
            i = j
        else:
            if not ch.isspace():
                previous = ch
            i += 1
    return "".join(out)


def _line_col(text: str, offset: int) -> tuple[int, int]:
    line = text.count("\n", 0, offset) + 1
    column = offset - (text.rfind("\n", 0, offset) + 1) + 1
    return line, column


def scan_imports(source: str) -> list[tuple[str, int, int, bool]]:
    """Return ``(specifier, line, column, dynamic)`` for every import in ``source``."""
    text = mask_source(source)
    found: list[tuple[int, str, bool]] = []
    for pattern, dynamic in ((_STATIC_IMPORT, False), (_DYNAMIC_IMPORT, True)):
        for match in pattern.finditer(text):
            start, end = match.span("spec")
            found.append((start, source[start:end], dynamic))
    found.sort()
    results = []
    for offset, spec, dynamic in found:
        line, column = _line_col(text, offset)
        results.append((spec, line, column, dynamic))
    return results


def _package_name(specifier: str) -> str:
    parts = specifier.split("/")
    if specifier.startswith("@") and len(parts) > 1:
        return "/".join(parts[:2])
    return parts[0]


class ModuleResolver:
    """Resolves the import graph reachable from an entry module."""

    def __init__(self, policy: ResolutionPolicy) -> None:
        self.policy = policy
        self._glue_dir = policy.glue_dir.resolve() if policy.glue_dir else None

    def classify(self, path: Path) -> ModuleKind:
        if "node_modules" in path.parts:
            return ModuleKind.EXTERNAL
        if self._glue_dir is not None and self._glue_dir in path.parents:
            return ModuleKind.GLUE if path.suffix in PLAIN_EXTENSIONS else ModuleKind.OTHER
        if path.name.endswith(".d.ts"):
            return ModuleKind.OTHER
        if path.suffix in TYPED_EXTENSIONS:
            return ModuleKind.TYPED
        if path.suffix in PLAIN_EXTENSIONS:
            return ModuleKind.PLAIN
        return ModuleKind.OTHER

    def _with_extensions(self, base: Path) -> Path | None:
        for ext in self.policy.extensions:
            candidate = base.with_name(base.name + ext)
            if candidate.is_file():
                return candidate
        return None

    def resolve_path(self, base: Path) -> Path | None:
        """Resolve a filesystem base path using the extension policy."""
        if base.suffix and base.is_file():
            return base
        found = self._with_extensions(base)
        if found is not None:
            return found
        # `./util.js` may name the typed source `./util.ts`
        if base.suffix in PLAIN_EXTENSIONS:
            found = self._with_extensions(base.with_suffix(""))
            if found is not None and found.suffix in TYPED_EXTENSIONS:
                return found
        if base.is_dir():
            return self._with_extensions(base / "index")
        return None

    def _resolve_package(self, importer: Path, specifier: str) -> Path | None:
        name = _package_name(specifier)
        root = self.policy.root.resolve()
        for directory in [importer.parent, *importer.parent.parents]:
            candidate = directory / "node_modules" / name
            if candidate.is_dir():
                return candidate
            if directory == root:
                break
        return None

    def resolve(self, importer: Path, specifier: str, line: int = 0, column: int = 0) -> ModuleNode:
        """Resolve one specifier as written in ``importer``.

        Raises:
            ResolutionError: If no file matches.
        """
        if specifier.startswith((".", "/")):
            base = (importer.parent / specifier) if not specifier.startswith("/") else Path(specifier)
            resolved = self.resolve_path(base.resolve())
            if resolved is not None:
                resolved = resolved.resolve()
                return ModuleNode(path=resolved, kind=self.classify(resolved))
        else:
            package = self._resolve_package(importer, specifier)
            if package is not None:
                return ModuleNode(path=package, kind=ModuleKind.EXTERNAL, package=_package_name(specifier))

        tried = ", ".join(self.policy.extensions)
        raise ResolutionError(
            message=f"Cannot resolve import '{specifier}' (tried extensions: {tried})",
            file_path=str(importer),
            line=line,
            column=column,
            specifier=specifier,
        )

    def build_graph(self, entry: Path) -> ModuleGraph:
        """Resolve every module statically reachable from ``entry``.

        Raises:
            ResolutionError: On the first unresolvable import.
        """
        entry = entry.resolve()
        graph = ModuleGraph(entry=entry)
        graph.add_node(ModuleNode(path=entry, kind=self.classify(entry)))

        queue: deque[Path] = deque([entry])
        while queue:
            current = queue.popleft()
            node = graph.nodes[current]
            if node.kind not in SCANNED_KINDS:
                continue
            try:
                source = current.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise ResolutionError(
                    message=f"Cannot read module: {e}",
                    file_path=str(current),
                    cause=e,
                ) from e

            for specifier, line, column, dynamic in scan_imports(source):
                target = self.resolve(current, specifier, line, column)
                graph.add_edge(
                    ImportEdge(
                        importer=current,
                        specifier=specifier,
                        target=target.path,
                        line=line,
                        column=column,
                        dynamic=dynamic,
                    )
                )
                if graph.add_node(target):
                    queue.append(target.path)

        cycles = graph.find_cycles()
        if cycles:
            logger.warning(
                "Circular imports detected",
                cycles=[[p.name for p in cycle] for cycle in cycles[:3]],
            )
        logger.debug("Module graph resolved", modules=len(graph.nodes), edges=len(graph.edges))
        return graph
