"""Sender mapping: WhatsApp display names → project partners.

Stored mappings always win. New senders are guessed from partner names
and the aliases configured in projects.yaml; a sender with no guess stays
unmapped (and its messages are not scanned for expenses) until the user
maps or ignores it.
"""

from __future__ import annotations

from dataclasses import dataclass

from chatledger.database.models import Partner


@dataclass(frozen=True)
class SenderAssignment:
    partner_id: str | None = None
    ignored: bool = False

    @property
    def is_active(self) -> bool:
        """True if messages from this sender count toward a partner."""
        return self.partner_id is not None and not self.ignored


def guess_partner(
    sender: str,
    partners: list[Partner],
    aliases: dict[str, list[str]] | None = None,
) -> str | None:
    """Return the id of the first partner whose name or alias occurs in sender."""
    lower = sender.lower()
    for partner in partners:
        guesses = [partner.name.lower()]
        guesses.extend(a.lower() for a in (aliases or {}).get(partner.id, []))
        if any(g and g in lower for g in guesses):
            return partner.id
    return None


def resolve_sender_mapping(
    senders: list[str],
    partners: list[Partner],
    existing: dict[str, SenderAssignment],
    aliases: dict[str, list[str]] | None = None,
) -> dict[str, SenderAssignment]:
    """Build the mapping for every sender in the export, in sender order."""
    mapping: dict[str, SenderAssignment] = {}
    for sender in senders:
        if sender in existing:
            mapping[sender] = existing[sender]
        else:
            mapping[sender] = SenderAssignment(
                partner_id=guess_partner(sender, partners, aliases),
            )
    return mapping


def sender_to_partner(mapping: dict[str, SenderAssignment]) -> dict[str, str]:
    """Active senders only: display name → partner id."""
    return {
        sender: a.partner_id
        for sender, a in mapping.items()
        if a.is_active
    }
