"""
=============================================================================
CONTENT NEGOTIATION (Accept header)
=============================================================================

The client tells us which representations it prefers:

    Accept: text/html,application/xhtml+xml;q=0.9,*/*;q=0.8
            ─────────  ─────────────────────────  ──────────
                │                 │                    │
             q=1.0             q=0.9                q=0.8

Each comma separated entry is a MEDIA RANGE with an optional quality
value q between 0 and 1. q=0 means "never send me this".

=============================================================================
HOW A CANDIDATE IS SCORED
=============================================================================

For every candidate we find the most specific range that matches it:

    ┌────────────────────┬───────────────┬─────────────┐
    │ Range              │ Matches       │ Specificity │
    ├────────────────────┼───────────────┼─────────────┤
    │ text/html;level=*  │ text/html     │      7      │
    │ text/html          │ text/html     │      6      │
    │ text/*             │ text/anything │      4      │
    │ */*                │ everything    │      0      │
    └────────────────────┴───────────────┴─────────────┘

A range with parameters only matches when every parameter is "*" or
equals the candidate's own parameter. Parameters after q are
accept-extensions and are not read. When several ranges match equally
well, the one with the higher q wins, then the one later in the header.

The candidate inherits that range's q. Candidates are then ordered by:

    1. q (highest first)
    2. specificity (highest first)
    3. position of the range in the header (earliest first)
    4. position of the candidate in our own list (earliest first)

Candidates with q=0 are dropped. If nothing is left, the answer is None
and the caller picks its own default.

=============================================================================
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence


# Short names used by callers, mapped to full media types.
TYPE_ALIASES: Dict[str, str] = {
    "html": "text/html",
    "text": "text/plain",
}

_MEDIA_RANGE_RE = re.compile(r"^\s*([^\s/;]+)/([^\s;]+)\s*(?:;(.*))?$")


@dataclass
class MediaRange:
    """One parsed entry of an Accept header."""

    type: str
    subtype: str
    q: float = 1.0
    params: Dict[str, str] = field(default_factory=dict)
    index: int = 0

    def specificity(self, type_: str, subtype: str, params: Optional[Dict[str, str]] = None) -> int:
        """
        Score how specifically this range matches a media type.

        Returns:
            -1 when the range does not match at all.
        """
        score = 0
        if self.type == type_:
            score |= 4
        elif self.type != "*":
            return -1

        if self.subtype == subtype:
            score |= 2
        elif self.subtype != "*":
            return -1

        if self.params:
            params = params or {}
            for key, value in self.params.items():
                if value != "*" and value != params.get(key, "").lower():
                    return -1
            score |= 1

        return score


def parse_accept(header: str) -> List[MediaRange]:
    """
    Parse an Accept header into media ranges.

    Malformed entries are skipped rather than rejected; a broken header
    should not turn into a broken error page.
    """
    ranges: List[MediaRange] = []

    for index, part in enumerate(_split_header(header)):
        match = _MEDIA_RANGE_RE.match(part)
        if not match:
            continue

        type_, subtype, raw_params = match.groups()
        q = 1.0
        params: Dict[str, str] = {}

        for param in (raw_params or "").split(";"):
            if "=" not in param:
                continue
            key, value = param.split("=", 1)
            key = key.strip().lower()
            value = value.strip().strip('"')

            if key == "q":
                try:
                    q = float(value)
                except ValueError:
                    q = 0.0
                # Everything after q is an accept-extension, not a parameter
                break
            params[key] = value.lower()

        ranges.append(MediaRange(
            type=type_.lower(),
            subtype=subtype.lower(),
            q=q,
            params=params,
            index=index,
        ))

    return ranges


def preferred_type(
    accept: Optional[str],
    candidates: Sequence[str] = ("html", "text"),
) -> Optional[str]:
    """
    Pick the candidate the client prefers.

    Args:
        accept: Raw Accept header value, or None if the request had none.
        candidates: Short names ("html") or full media types, in our
                    order of preference.

    Returns:
        The winning entry from `candidates` (as given), or None when the
        header is missing or accepts none of them.

    Example:
        >>> preferred_type("text/html, */*;q=0.1")
        'html'
        >>> preferred_type("application/json")
        >>> preferred_type(None)
    """
    if accept is None:
        return None

    ranges = parse_accept(accept)
    scored = []

    for position, candidate in enumerate(candidates):
        media_type = TYPE_ALIASES.get(candidate, candidate).lower()
        type_, _, subtype = media_type.partition("/")

        matches = [
            (media_range.specificity(type_, subtype), media_range.q, media_range.index, media_range)
            for media_range in ranges
        ]
        matches = [match for match in matches if match[0] >= 0]
        if not matches:
            continue

        # Most specific range wins, then highest q, then the later one
        spec, _, _, media_range = max(matches, key=lambda match: match[:3])
        if media_range.q <= 0:
            continue

        scored.append((-media_range.q, -spec, media_range.index, position, candidate))

    if not scored:
        return None

    scored.sort()
    return scored[0][-1]


def _split_header(header: str) -> List[str]:
    """Split on commas that are not inside quoted strings."""
    parts = []
    current = []
    quoted = False

    for char in header:
        if char == '"':
            quoted = not quoted
        if char == "," and not quoted:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)

    parts.append("".join(current))
    return [part for part in parts if part.strip()]
