# knowledge_compiler/crawler/robots.py
"""
Parser and checker for robots.txt rules (RFC 9309).
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

_WILDCARD_RE = re.compile(r"[*$]")


@dataclass
class _Group:
    agents: List[str] = field(default_factory=list)
    rules: List[Tuple[bool, str]] = field(default_factory=list)  # (allow, pattern)
    crawl_delay: Optional[float] = None

    @property
    def has_body(self) -> bool:
        return bool(self.rules) or self.crawl_delay is not None


class RobotsTxtRules:
    """
    Parsed robots.txt.

    The longest matching pattern wins, ``Allow`` wins a tie, an empty
    ``Disallow`` allows everything. ``*`` and a trailing ``$`` are supported.
    """

    def __init__(self, text: str) -> None:
        self._groups: List[_Group] = []
        self._regex_cache: Dict[str, re.Pattern[str]] = {}
        self._parse(text)

    def can_fetch(self, user_agent: str, path: str) -> bool:
        group = self._match_group(user_agent)
        if group is None:
            return True
        best_len = -1
        allowed = True
        for allow, pattern in group.rules:
            if not self._match_path(path or "/", pattern):
                continue
            length = len(_WILDCARD_RE.sub("", pattern))
            if length > best_len or (length == best_len and allow):
                best_len = length
                allowed = allow
        return allowed

    def crawl_delay(self, user_agent: str) -> Optional[float]:
        group = self._match_group(user_agent)
        return None if group is None else group.crawl_delay

    def _parse(self, text: str) -> None:
        current: Optional[_Group] = None
        for raw in text.splitlines():
            line = raw.split("#", 1)[0].strip()
            if not line or ":" not in line:
                continue
            key, _, val = line.partition(":")
            key = key.strip().lower()
            val = val.strip()

            if key == "user-agent":
                # consecutive user-agent lines share one group
                if current is None or current.has_body:
                    current = _Group()
                    self._groups.append(current)
                current.agents.append(val.lower())
                continue

            if key not in ("allow", "disallow", "crawl-delay"):
                continue
            if current is None:
                current = _Group(agents=["*"])
                self._groups.append(current)

            if key == "crawl-delay":
                try:
                    current.crawl_delay = float(val)
                except ValueError:
                    continue
            elif val:
                current.rules.append((key == "allow", val))

    def _match_group(self, user_agent: str) -> Optional[_Group]:
        ua = user_agent.lower()
        # product token only: "Bot/1.0" matches a "bot" group
        token = ua.split("/", 1)[0]
        for group in self._groups:
            if any(a != "*" and (ua.startswith(a) or token == a) for a in group.agents):
                return group
        for group in self._groups:
            if "*" in group.agents:
                return group
        return None

    def _match_path(self, path: str, pattern: str) -> bool:
        regex = self._regex_cache.get(pattern)
        if regex is None:
            anchored = pattern.endswith("$")
            body = pattern[:-1] if anchored else pattern
            esc = re.escape(body).replace(r"\*", ".*")
            regex = re.compile("^" + esc + ("$" if anchored else ""))
            self._regex_cache[pattern] = regex
        return bool(regex.match(path))
