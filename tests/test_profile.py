from types import SimpleNamespace

from app.services.profile import CollectedProfile
from app.services.state_machine import ConversationStep

COMPLETE = {
    "full_name": "Ama Mensah",
    "dob": "14/02/1990",
    "birth_time_type": "Exact",
    "birth_time_value": "08:30 AM",
    "birth_place": "Kumasi, Ghana",
    "current_location": "Accra, Ghana",
    "gender": "Female",
}


class TestFirstMissingStep:
    def test_empty_profile_starts_with_full_name(self):
        assert CollectedProfile().first_missing_step() == ConversationStep.COLLECT_FULL_NAME

    def test_skips_collected_fields(self):
        profile = CollectedProfile(full_name="Ama Mensah", dob="14/02/1990")
        assert profile.first_missing_step() == ConversationStep.COLLECT_BIRTH_TIME

    def test_exact_time_value_required(self):
        profile = CollectedProfile(full_name="A", dob="14/02/1990", birth_time_type="Exact")
        assert profile.first_missing_step() == ConversationStep.COLLECT_BIRTH_TIME_EXACT_VALUE

    def test_approximate_time_value_required(self):
        profile = CollectedProfile(full_name="A", dob="14/02/1990", birth_time_type="Approximate")
        assert profile.first_missing_step() == ConversationStep.COLLECT_BIRTH_TIME_APPROX_VALUE

    def test_unknown_time_needs_no_value(self):
        profile = CollectedProfile(full_name="A", dob="14/02/1990", birth_time_type="Unknown")
        assert profile.first_missing_step() == ConversationStep.COLLECT_BIRTH_PLACE

    def test_complete_profile(self):
        profile = CollectedProfile(**COMPLETE)
        assert profile.first_missing_step() == ConversationStep.AWAITING_VERIFICATION
        assert profile.is_complete() is True


class TestConversion:
    def test_from_row(self):
        row = SimpleNamespace(**COMPLETE, current_step="COLLECT_GENDER")
        assert CollectedProfile.from_row(row).as_dict() == COMPLETE

    def test_merged_returns_new_profile(self):
        profile = CollectedProfile(full_name="A")
        updated = profile.merged({"dob": "01/01/2000"})
        assert profile.dob is None
        assert updated.dob == "01/01/2000"
        assert updated.full_name == "A"
