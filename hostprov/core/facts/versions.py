"""
Debian version ordering (pure).

Implements the dpkg comparison algorithm so "package X at version >= V"
can be answered without shelling out to ``dpkg --compare-versions``.
No I/O, no subprocess.

    [epoch:]upstream_version[-debian_revision]

Letters sort before non-letters, ``~`` sorts before everything
(including the end of the string), digit runs compare numerically.
"""

from __future__ import annotations

import re

_VALID_RE = re.compile(r"^(\d+:)?[0-9][A-Za-z0-9.+~:-]*$")


def _parse(version: str) -> tuple[int, str, str]:
    """Split a Debian version into (epoch, upstream, revision)."""
    version = version.strip()
    if not version or not _VALID_RE.match(version):
        raise ValueError(f"Invalid Debian version: {version!r}")

    epoch = 0
    if ":" in version:
        head, version = version.split(":", 1)
        epoch = int(head)

    if "-" in version:
        upstream, revision = version.rsplit("-", 1)
    else:
        upstream, revision = version, ""

    return epoch, upstream, revision


def _order(char: str) -> int:
    """Sort weight of a single non-digit character ("" is end of string)."""
    if not char or char.isdigit():
        return 0
    if char.isalpha():
        return ord(char)
    if char == "~":
        return -1
    return ord(char) + 256


def _compare_part(a: str, b: str) -> int:
    """dpkg's verrevcmp on one component (upstream or revision)."""
    i = j = 0
    while i < len(a) or j < len(b):
        # Non-digit prefix, character by character
        while (i < len(a) and not a[i].isdigit()) or (j < len(b) and not b[j].isdigit()):
            ac = _order(a[i] if i < len(a) else "")
            bc = _order(b[j] if j < len(b) else "")
            if ac != bc:
                return ac - bc
            i += 1
            j += 1

        # Digit run, compared numerically
        while i < len(a) and a[i] == "0":
            i += 1
        while j < len(b) and b[j] == "0":
            j += 1

        first_diff = 0
        while i < len(a) and a[i].isdigit() and j < len(b) and b[j].isdigit():
            if not first_diff:
                first_diff = ord(a[i]) - ord(b[j])
            i += 1
            j += 1

        if i < len(a) and a[i].isdigit():
            return 1
        if j < len(b) and b[j].isdigit():
            return -1
        if first_diff:
            return first_diff

    return 0


def compare_versions(a: str, b: str) -> int:
    """Compare two Debian versions.

    Returns:
        Negative if ``a < b``, zero if equal, positive if ``a > b``.

    Raises:
        ValueError: If either string is not a Debian version.
    """
    a_epoch, a_up, a_rev = _parse(a)
    b_epoch, b_up, b_rev = _parse(b)

    if a_epoch != b_epoch:
        return a_epoch - b_epoch

    result = _compare_part(a_up, b_up)
    if result:
        return result
    return _compare_part(a_rev, b_rev)


def version_satisfies(installed: str, minimum: str) -> bool:
    """Whether ``installed >= minimum`` in Debian ordering."""
    return compare_versions(installed, minimum) >= 0
