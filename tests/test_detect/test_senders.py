"""Tests for detect.senders — mapping display names to partners."""

from chatledger.database.models import Partner
from chatledger.detect.senders import (
    SenderAssignment,
    guess_partner,
    resolve_sender_mapping,
    sender_to_partner,
)

PARTNERS = [
    Partner(project_id="p", name="Ahmed", id="ahmed"),
    Partner(project_id="p", name="Mona", id="mona"),
]
ALIASES = {"ahmed": ["أحمد", "Abu Omar"]}


class TestGuessPartner:
    def test_name_substring_case_insensitive(self):
        assert guess_partner("ahmed hassan", PARTNERS) == "ahmed"
        assert guess_partner("MONA", PARTNERS) == "mona"

    def test_alias(self):
        assert guess_partner("أحمد حسن", PARTNERS, ALIASES) == "ahmed"
        assert guess_partner("abu omar", PARTNERS, ALIASES) == "ahmed"

    def test_no_match(self):
        assert guess_partner("+20 100 123 4567", PARTNERS, ALIASES) is None


class TestResolveSenderMapping:
    def test_existing_mapping_wins(self):
        existing = {"Ahmed": SenderAssignment(partner_id="mona")}
        mapping = resolve_sender_mapping(["Ahmed"], PARTNERS, existing)
        assert mapping["Ahmed"].partner_id == "mona"

    def test_ignored_stays_ignored(self):
        existing = {"Mona": SenderAssignment(ignored=True)}
        mapping = resolve_sender_mapping(["Mona"], PARTNERS, existing)
        assert mapping["Mona"].ignored
        assert not mapping["Mona"].is_active

    def test_new_senders_guessed_in_order(self):
        mapping = resolve_sender_mapping(
            ["Mona", "Unknown", "أحمد"], PARTNERS, {}, ALIASES,
        )
        assert list(mapping) == ["Mona", "Unknown", "أحمد"]
        assert mapping["Mona"].partner_id == "mona"
        assert mapping["Unknown"].partner_id is None
        assert mapping["أحمد"].partner_id == "ahmed"


class TestSenderToPartner:
    def test_only_active(self):
        mapping = {
            "Ahmed": SenderAssignment(partner_id="ahmed"),
            "Bot": SenderAssignment(partner_id="mona", ignored=True),
            "Unknown": SenderAssignment(),
        }
        assert sender_to_partner(mapping) == {"Ahmed": "ahmed"}
