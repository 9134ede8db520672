"""
Config file text generation and editing (pure).

Renders fail2ban's jail.local, apt source lines, and applies sshd
directive overrides to an existing sshd_config. No I/O: adapters and
preconditions call these with file contents they already hold.
"""

from __future__ import annotations

import re

from hostprov.core.models.host import Fail2banConfig

MANAGED_HEADER = "# Managed by hostprov. Local edits are overwritten."

_DIRECTIVE_RE = re.compile(r"^\s*(#\s*)?([A-Za-z][A-Za-z0-9]*)(\s+|\s*=\s*)(.*?)\s*$")
_MATCH_RE = re.compile(r"^\s*Match\s", re.IGNORECASE)


def render_jail_local(cfg: Fail2banConfig) -> str:
    """Render jail.local: a [DEFAULT] section plus one section per jail."""
    lines = [
        MANAGED_HEADER,
        "[DEFAULT]",
        f"bantime = {cfg.bantime}",
        f"findtime = {cfg.findtime}",
        f"maxretry = {cfg.maxretry}",
    ]
    for jail in cfg.jails:
        lines.append("")
        lines.append(f"[{jail.name}]")
        lines.append(f"enabled = {'true' if jail.enabled else 'false'}")
        if jail.port:
            lines.append(f"port = {jail.port}")
        if jail.filter:
            lines.append(f"filter = {jail.filter}")
        if jail.logpath:
            lines.append(f"logpath = {jail.logpath}")
        if jail.maxretry is not None:
            lines.append(f"maxretry = {jail.maxretry}")
    return "\n".join(lines) + "\n"


def apt_source_line(
    repo_url: str,
    codename: str,
    channel: str,
    *,
    arch: str,
    keyring: str,
) -> str:
    """One-line apt source entry for a signed third-party repository."""
    return f"deb [arch={arch} signed-by={keyring}] {repo_url} {codename} {channel}"


def effective_directives(text: str) -> dict[str, str]:
    """Global sshd directives in effect, keyed by lower-cased name.

    sshd keeps the first value it reads for a keyword, and everything
    after the first ``Match`` line is conditional, so only active lines
    before it count.
    """
    found: dict[str, str] = {}
    for line in text.splitlines():
        if _MATCH_RE.match(line):
            break
        m = _DIRECTIVE_RE.match(line)
        if not m or m.group(1) is not None:
            continue
        key = m.group(2).lower()
        found.setdefault(key, m.group(4))
    return found


def directives_satisfied(text: str | None, directives: dict[str, str]) -> bool:
    """Whether every directive in ``directives`` is in effect in ``text``."""
    if text is None:
        return False
    current = effective_directives(text)
    return all(current.get(k.lower()) == v for k, v in directives.items())


def apply_directives(text: str, directives: dict[str, str]) -> str:
    """Set sshd directives in ``text``.

    The first occurrence of each keyword (active or commented out) in
    the global section is rewritten in place and later active copies of
    it are dropped; keywords that never appear are inserted before the
    first ``Match`` block (or appended). Applying the same directives
    twice yields the same text.
    """
    wanted = {k.lower(): k for k in directives}
    written: set[str] = set()
    out: list[str] = []
    lines = text.splitlines()
    match_at: int | None = None

    for line in lines:
        if match_at is None and _MATCH_RE.match(line):
            match_at = len(out)
        if match_at is None:
            m = _DIRECTIVE_RE.match(line)
            if m and m.group(2).lower() in wanted:
                key = wanted[m.group(2).lower()]
                if key not in written:
                    out.append(f"{key} {directives[key]}")
                    written.add(key)
                    continue
                if m.group(1) is None:
                    # sshd keeps the first value; later active copies are dead
                    continue
        out.append(line)

    missing = [f"{k} {v}" for k, v in directives.items() if k not in written]
    if missing:
        if match_at is None:
            out.extend(missing)
        else:
            out[match_at:match_at] = missing

    return "\n".join(out) + "\n"
