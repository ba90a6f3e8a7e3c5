# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Envelope sender to footer resolution.

Footer mappings are keyed by full addresses (``user@example.com``),
domain patterns (``@example.com``) or bare domains (``example.com``).
A sender is resolved in three tiers, stopping at the first that matches:

1. the sender itself is a key in either map;
2. the ``@domain`` part of the sender is a key in either map;
3. the sender's domain *contains* the domain portion of a key.  The
   text and HTML maps are scanned independently, in insertion order.

The key a tier adopts is the key later used to look up the footer text,
so ``user@mail.example.com`` matched against ``example.com`` picks up the
footer stored under ``example.com``.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType


logger = logging.getLogger(__name__)


def _freeze(mapping: Mapping[str, str] | None) -> Mapping[str, str]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class FooterMappings:
    """Plain-text and HTML footers keyed by address pattern.

    Both mappings preserve insertion order, which decides the winner of
    the tier-3 domain scan.

    Attributes:
        text: Footers for ``text/plain`` parts.
        html: Footers for ``text/html`` parts.
    """

    text: Mapping[str, str] = field(default_factory=dict)
    html: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "text", _freeze(self.text))
        object.__setattr__(self, "html", _freeze(self.html))

    def __bool__(self) -> bool:
        return bool(self.text) or bool(self.html)

    def text_footer(self, key: str | None) -> str | None:
        """Return the plain-text footer for an adopted key, if any."""
        if key is None:
            return None
        return self.text.get(key)

    def html_footer(self, key: str | None) -> str | None:
        """Return the HTML footer for an adopted key, if any."""
        if key is None:
            return None
        return self.html.get(key)


@dataclass(frozen=True)
class ResolvedSender:
    """Outcome of resolving an envelope sender against footer mappings.

    Attributes:
        sender: Envelope sender address as received.
        text_key: Key adopted for the plain-text map, or None.
        html_key: Key adopted for the HTML map, or None.
        tier: Resolution tier that matched (1-3), or None.
    """

    sender: str
    text_key: str | None = None
    html_key: str | None = None
    tier: int | None = None

    @property
    def footer_available(self) -> bool:
        """True if any tier matched."""
        return self.tier is not None

    @property
    def matched_key(self) -> str | None:
        """The adopted key, preferring the text map's."""
        return self.text_key if self.text_key is not None else self.html_key


def _domain_portion(value: str) -> str:
    """Return the part after ``@``, or the whole value without one."""
    return value[value.find("@") + 1 :]


def _scan_domains(domain: str, mapping: Mapping[str, str]) -> str | None:
    """Return the first key whose domain portion occurs in ``domain``."""
    for key in mapping:
        key_domain = _domain_portion(key)
        if key_domain and key_domain in domain:
            return key
    return None


def resolve_sender(sender: str, mappings: FooterMappings) -> ResolvedSender:
    """Resolve an envelope sender to footer lookup keys.

    Resolution never fails; a sender without any matching key yields a
    ResolvedSender whose ``footer_available`` is False.  Senders without
    ``@`` can only match exactly.

    Args:
        sender: Envelope sender address (without angle brackets).
        mappings: Current footer mappings.

    Returns:
        The resolution result.
    """
    text_key = sender if sender in mappings.text else None
    html_key = sender if sender in mappings.html else None
    if text_key is not None or html_key is not None:
        return _resolved(sender, text_key, html_key, tier=1)

    at = sender.find("@")
    if at < 0:
        logger.debug("No footer for %s (no exact match)", sender)
        return ResolvedSender(sender=sender)

    domain_key = sender[at:]
    text_key = domain_key if domain_key in mappings.text else None
    html_key = domain_key if domain_key in mappings.html else None
    if text_key is not None or html_key is not None:
        return _resolved(sender, text_key, html_key, tier=2)

    domain = sender[at + 1 :]
    text_key = _scan_domains(domain, mappings.text)
    html_key = _scan_domains(domain, mappings.html)
    if text_key is not None or html_key is not None:
        return _resolved(sender, text_key, html_key, tier=3)

    logger.debug("No footer for %s", sender)
    return ResolvedSender(sender=sender)


def _resolved(
    sender: str, text_key: str | None, html_key: str | None, *, tier: int
) -> ResolvedSender:
    logger.info(
        "Footer resolved for %s at tier %d (text=%s, html=%s)",
        sender,
        tier,
        text_key,
        html_key,
    )
    return ResolvedSender(
        sender=sender, text_key=text_key, html_key=html_key, tier=tier
    )
