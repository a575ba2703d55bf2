"""Include/exclude pattern lists compiled into path predicates."""

import posixpath
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from pathspec import PathSpec

from content_search.search.messages import DEFAULT_EXCLUDE_PATTERNS

PathPredicate = Callable[[str], bool]


def parse_patterns(text: str | None) -> list[str]:
    """Split a comma-separated pattern string into trimmed, non-empty patterns."""
    if not text:
        return []
    return [p.strip() for p in text.split(",") if p.strip()]


def merge_exclude_patterns(user_patterns: str | None, defaults: str = DEFAULT_EXCLUDE_PATTERNS) -> str:
    """Defaults always come first; user excludes only ever add to them."""
    if not defaults:
        return user_patterns or ""
    if user_patterns:
        return defaults + "," + user_patterns
    return defaults


def compile_glob(pattern: str) -> PathPredicate:
    """
    Compile a glob into a predicate over a root-relative, forward-slash path.

    The pattern is anchored at the root and must match the whole path, so
    ``*`` never crosses a ``/`` and a pattern naming a directory does not
    match the files below it. Only a trailing ``**`` (or ``/``) spans
    directories. ``*`` also matches dot-files.
    """
    spec = PathSpec.from_lines("gitignore", ["/" + pattern.lstrip("/")])
    (compiled,) = spec.patterns
    regex = compiled.regex
    if regex is None:
        # Patterns pathspec treats as no-ops
        return lambda rel_path: False

    if pattern.endswith(("**", "/")):
        return lambda rel_path: regex.match(rel_path) is not None
    # A gitignore pattern also matches everything under a matching directory
    return lambda rel_path: regex.fullmatch(rel_path) is not None


def build_include_matcher(patterns: Sequence[str]) -> PathPredicate:
    """
    OR together one predicate per include pattern.

    Patterns containing ``/`` or ``**`` see the relative path; anything else
    sees only the base name. No patterns means everything is included.
    """
    if not patterns:
        return lambda rel_path: True

    matchers: list[PathPredicate] = []
    for pattern in patterns:
        is_match = compile_glob(pattern)
        if "/" in pattern or "**" in pattern:
            matchers.append(is_match)
        else:
            matchers.append(lambda rel_path, is_match=is_match: is_match(posixpath.basename(rel_path)))

    return lambda rel_path: any(m(rel_path) for m in matchers)


@dataclass
class ExcludeMatcher:
    dir_names: frozenset[str] = frozenset()
    file_matchers: list[PathPredicate] = field(default_factory=list)

    def match_dir(self, dir_name: str) -> bool:
        """True if a directory with this base name must not be walked."""
        return dir_name in self.dir_names

    def match_file(self, rel_path: str) -> bool:
        """True if the file at this relative path must be skipped."""
        for name in self.dir_names:
            if name + "/" in rel_path or name + "\\" in rel_path:
                return True
        return any(m(rel_path) for m in self.file_matchers)


def build_exclude_matcher(patterns: Sequence[str]) -> ExcludeMatcher:
    """
    Split exclude patterns into simple directory names and globs.

    A pattern without ``/``, ``*`` or ``?`` is a directory name: it prunes
    directories during the walk and also excludes any path with that segment.
    Every other pattern is a glob over the relative path.
    """
    dir_names: set[str] = set()
    file_matchers: list[PathPredicate] = []

    for pattern in patterns:
        if "/" not in pattern and "*" not in pattern and "?" not in pattern:
            dir_names.add(pattern)
        else:
            file_matchers.append(compile_glob(pattern))

    return ExcludeMatcher(dir_names=frozenset(dir_names), file_matchers=file_matchers)
