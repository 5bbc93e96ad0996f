# autoship/policy/protected_paths.py
"""
ProtectedPathGuard - denylist check for proposed change sets.

A path is blocked when it equals a protected prefix or is nested under it.
Prefixes ending in "/" name directories; any other prefix matches the exact
file or, if it is a directory, everything below it.
"""

import posixpath
from dataclasses import dataclass, field
from typing import Iterable, Tuple


def normalize_path(path: str) -> str:
    """Repository-relative POSIX form: no leading ./ or /, no duplicate separators"""
    cleaned = path.strip().replace("\\", "/")
    if not cleaned:
        return ""
    trailing = cleaned.endswith("/")
    cleaned = posixpath.normpath(cleaned).lstrip("/")
    if cleaned in (".", ""):
        return ""
    return cleaned + "/" if trailing else cleaned


@dataclass(frozen=True)
class GuardResult:
    """allowed, or blocked with the prefixes that matched"""
    matched: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def allowed(self) -> bool:
        return not self.matched

    @property
    def blocked(self) -> bool:
        return bool(self.matched)


def _matches(path: str, prefix: str) -> bool:
    if prefix.endswith("/"):
        return path.startswith(prefix) or path + "/" == prefix
    return path == prefix or path.startswith(prefix + "/")


class ProtectedPathGuard:
    """Pure policy check over a set of changed paths"""

    def __init__(self, protected_prefixes: Iterable[str]):
        self.prefixes = tuple(
            p for p in (normalize_path(prefix) for prefix in protected_prefixes) if p
        )

    def check(self, changed_paths: Iterable[str]) -> GuardResult:
        matched = set()
        for raw in changed_paths:
            path = normalize_path(raw)
            if not path:
                continue
            for prefix in self.prefixes:
                if _matches(path, prefix):
                    matched.add(prefix)
        return GuardResult(matched=tuple(sorted(matched)))


def check_paths(changed_paths: Iterable[str], protected_prefixes: Iterable[str]) -> GuardResult:
    return ProtectedPathGuard(protected_prefixes).check(changed_paths)
