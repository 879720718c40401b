"""Safety heuristics for sender-domain rules.

Flags domains that are likely to over-match when used as a ``from_domain``
condition. This is not a Public Suffix List lookup; any single-label
``.com``/``.net``/``.org``/``.co.jp``/``.ne.jp`` domain is flagged, company
apex domains such as ``example.com`` included.
"""

import re

# Large public webmail providers.
BROAD_DOMAINS: frozenset[str] = frozenset(
    {
        "gmail.com",
        "googlemail.com",
        "yahoo.com",
        "yahoo.co.jp",
        "outlook.com",
        "hotmail.com",
        "live.com",
        "icloud.com",
    }
)

_SINGLE_LABEL_GENERIC = re.compile(r"^[^.]+\.(com|net|org)$")
_SINGLE_LABEL_JP = re.compile(r"^[^.]+\.(co|ne)\.jp$")


def normalize_domain(value: str) -> str:
    """Lower-case a domain and strip one leading ``@`` and one leading ``.``."""
    d = value.strip().lower()
    if d.startswith("@"):
        d = d[1:]
    if d.startswith("."):
        d = d[1:]
    return d


def is_broad_domain(domain: str) -> bool:
    """Return True if matching on *domain* would likely catch too much mail."""
    d = normalize_domain(domain)
    if not d:
        return False
    if d in BROAD_DOMAINS:
        return True
    return bool(_SINGLE_LABEL_GENERIC.match(d) or _SINGLE_LABEL_JP.match(d))


def normalize_assignee_email(value: str, allowed_domains: frozenset[str] | set[str]) -> str | None:
    """Normalize a team-member address, or return None if it is not allow-listed.

    Args:
        value: Raw address entered by a rule author.
        allowed_domains: Domains team members may belong to (normalized).

    Returns:
        The lower-cased address, or None if malformed or outside the allow-list.
    """
    s = value.strip().lower()
    if not s or s.startswith("@") or "@" not in s or any(ch.isspace() for ch in s):
        return None
    domain = s.rsplit("@", 1)[1]
    if domain not in allowed_domains:
        return None
    return s
