"""Tests for oonjai.reminders.recipients."""

import uuid

import pytest

from oonjai.reminders.errors import RecipientUnresolved
from oonjai.reminders.recipients import RecipientResolver
from oonjai.reminders.schemas import DeliveryChannel


class TestRecipientResolver:
    def test_single_group(self, seed, session_factory):
        patient_id = seed.patient(line_user_id="U-patient")
        group_id = seed.group(patient_id, "C-family")

        recipients = RecipientResolver(session_factory).resolve(patient_id)

        assert [(r.channel, r.destination_id, r.group_id) for r in recipients] == [
            (DeliveryChannel.GROUP, "C-family", group_id)
        ]

    def test_fan_out_to_every_active_group_and_never_direct(self, seed, session_factory):
        patient_id = seed.patient(line_user_id="U-patient")
        seed.group(patient_id, "C-family")
        seed.group(patient_id, "C-nurses")

        recipients = RecipientResolver(session_factory).resolve(patient_id)

        assert {r.destination_id for r in recipients} == {"C-family", "C-nurses"}
        assert all(r.channel == DeliveryChannel.GROUP for r in recipients)

    def test_inactive_membership_ignored(self, seed, session_factory):
        patient_id = seed.patient(line_user_id="U-patient")
        seed.group(patient_id, "C-old", is_active=False)

        recipients = RecipientResolver(session_factory).resolve(patient_id)

        assert [(r.channel, r.destination_id) for r in recipients] == [(DeliveryChannel.DIRECT, "U-patient")]

    def test_group_without_channel_id_ignored(self, seed, session_factory):
        patient_id = seed.patient(line_user_id="U-patient")
        seed.group(patient_id, "")

        recipients = RecipientResolver(session_factory).resolve(patient_id)

        assert recipients[0].channel == DeliveryChannel.DIRECT

    def test_unresolvable(self, seed, session_factory):
        patient_id = seed.patient(line_user_id=None)
        with pytest.raises(RecipientUnresolved):
            RecipientResolver(session_factory).resolve(patient_id)

    def test_unknown_patient(self, session_factory):
        with pytest.raises(RecipientUnresolved):
            RecipientResolver(session_factory).resolve(uuid.uuid4())

    def test_direct_disallowed(self, seed, session_factory):
        patient_id = seed.patient(line_user_id="U-patient")
        with pytest.raises(RecipientUnresolved):
            RecipientResolver(session_factory, allow_direct=False).resolve(patient_id)
