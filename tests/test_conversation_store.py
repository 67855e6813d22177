import pytest
from app.models import Conversation, Payment, PaymentEvidence, Submission
from app.services.conversation_store import ConcurrentUpdateError, RejectionPayload, SqlConversationStore
from app.services.state_machine import ConversationStep, InvalidTransitionError, ServiceType, UserStatus

ADDRESS = "whatsapp:+233541234567"
MEDIA_URL = "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages/MM123/Media/ME123"
MEDIA_URL_2 = "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages/MM456/Media/ME456"


@pytest.fixture
def user(store):
    user = store.get_or_create_user_by_address(ADDRESS)
    store.commit()
    return user


@pytest.fixture
def conversation(store, user):
    conversation = store.create_conversation(user.id)
    store.commit()
    return conversation


class TestUsers:
    def test_get_or_create_is_stable(self, store):
        first = store.get_or_create_user_by_address(ADDRESS)
        second = store.get_or_create_user_by_address(ADDRESS)
        assert first.id == second.id
        assert first.status == UserStatus.NEW.value
        assert first.service_type == ServiceType.LIFE_FORECAST.value

    def test_update_user_status_and_plan(self, store, user):
        store.update_user_status(user.id, status=UserStatus.AWAITING_PAYMENT, selected_plan="1 Year")
        refreshed = store.get_user_by_id(user.id)
        assert refreshed.status == "AWAITING_PAYMENT"
        assert refreshed.selected_plan == "1 Year"

    def test_update_user_status_rejects_regression(self, store, user):
        store.update_user_status(user.id, status=UserStatus.VERIFIED)
        with pytest.raises(InvalidTransitionError):
            store.update_user_status(user.id, status=UserStatus.AWAITING_PAYMENT)

    def test_rejection_flag_allows_single_regression(self, store, user):
        store.update_user_status(user.id, status=UserStatus.PAYMENT_SUBMITTED)
        store.update_user_status(user.id, status=UserStatus.AWAITING_PAYMENT, rejection=True)
        assert store.get_user_by_id(user.id).status == "AWAITING_PAYMENT"

    def test_list_users_filters(self, store, user):
        other = store.get_or_create_user_by_address("whatsapp:+233200000000")
        store.update_user_status(other.id, status=UserStatus.AWAITING_PAYMENT, service_type=ServiceType.DESTINY_READINGS)

        assert [u.id for u in store.list_users(status=UserStatus.NEW)] == [user.id]
        assert [u.id for u in store.list_users(service_type=ServiceType.DESTINY_READINGS)] == [other.id]
        assert len(store.list_users()) == 2

    def test_record_reading_outcome(self, store, user):
        store.record_reading_outcome(user.id, "Your reading")
        refreshed = store.get_user_by_id(user.id)
        assert refreshed.reading_sent is True
        assert refreshed.reading_sent_at is not None
        assert refreshed.reading_outcome_text == "Your reading"
        assert refreshed.reading_send_count == 1

    def test_record_reading_failure(self, store, user):
        store.record_reading_outcome(user.id, "Your reading", error="boom")
        refreshed = store.get_user_by_id(user.id)
        assert refreshed.reading_sent is False
        assert refreshed.reading_send_error == "boom"


class TestConversations:
    def test_create_defaults(self, conversation):
        assert conversation.current_step == ConversationStep.WELCOME.value
        assert conversation.navigation_stack == []
        assert conversation.version == 0

    def test_update_conversation_bumps_version(self, store, user, conversation):
        store.update_conversation(
            conversation.id,
            0,
            current_step=ConversationStep.OPTIONS,
            navigation=[ConversationStep.ASK_PROCEED],
            service_type=ServiceType.DESTINY_READINGS,
            profile_updates={"full_name": "Ama"},
        )
        store.commit()

        row = store.get_conversation_by_user_id(user.id)
        assert row.current_step == "OPTIONS"
        assert row.navigation_stack == ["ASK_PROCEED"]
        assert row.service_type == "destiny_readings"
        assert row.full_name == "Ama"
        assert row.version == 1

    def test_stale_version_is_rejected(self, store, user, conversation):
        store.update_conversation(conversation.id, 0, current_step=ConversationStep.ASK_PROCEED, navigation=[])
        with pytest.raises(ConcurrentUpdateError):
            store.update_conversation(conversation.id, 0, current_step=ConversationStep.FAQ_MENU, navigation=[])

        assert store.get_conversation_by_user_id(user.id).current_step == "ASK_PROCEED"

    def test_duplicate_conversation_is_a_conflict(self, store, user, conversation):
        with pytest.raises(ConcurrentUpdateError):
            store.create_conversation(user.id)

    def test_set_conversation_step_clears_navigation(self, store, user, conversation):
        store.update_conversation(
            conversation.id, 0, current_step=ConversationStep.COLLECT_DOB, navigation=[ConversationStep.ASK_PROCEED]
        )
        store.set_conversation_step(user.id, ConversationStep.PAYMENT_ISSUE_MENU)
        row = store.get_conversation_by_user_id(user.id)
        assert row.current_step == "PAYMENT_ISSUE_MENU"
        assert row.navigation_stack == []
        assert row.version == 2

    def test_set_conversation_step_without_conversation(self, store, user):
        assert store.set_conversation_step(user.id, ConversationStep.COMPLETED) is None


class TestPayments:
    def test_overwrite_keeps_single_row(self, store, db_session, user):
        first = store.create_or_overwrite_payment(user.id, MEDIA_URL, ServiceType.LIFE_FORECAST)
        second = store.create_or_overwrite_payment(user.id, MEDIA_URL_2, ServiceType.DESTINY_READINGS)

        assert first.id == second.id
        assert db_session.query(Payment).count() == 1
        payment = store.get_latest_payment_by_user_id(user.id)
        assert payment.screenshot_url == MEDIA_URL_2
        assert payment.service_type == "destiny_readings"
        assert payment.verified is False
        assert db_session.query(PaymentEvidence).count() == 2

    def test_overwrite_clears_previous_rejection(self, store, user):
        store.create_or_overwrite_payment(user.id, MEDIA_URL, ServiceType.LIFE_FORECAST)
        store.reject_payment(user.id, RejectionPayload(reason="UNDERPAID", received_amount_ghs=900, expected_amount_ghs=1800))
        payment = store.create_or_overwrite_payment(user.id, MEDIA_URL_2, ServiceType.LIFE_FORECAST)
        assert payment.rejection_reason is None
        assert payment.received_amount_ghs is None

    def test_reject_underpaid_stores_amounts(self, store, user):
        store.create_or_overwrite_payment(user.id, MEDIA_URL, ServiceType.LIFE_FORECAST)
        payment = store.reject_payment(
            user.id,
            RejectionPayload(reason="UNDERPAID", note="short", received_amount_ghs=900, expected_amount_ghs=1800),
        )
        assert payment.rejection_reason == "UNDERPAID"
        assert payment.rejection_note == "short"
        assert payment.received_amount_ghs == 900
        assert payment.expected_amount_ghs == 1800

    def test_reject_invalid_proof_drops_amounts(self, store, user):
        store.create_or_overwrite_payment(user.id, MEDIA_URL, ServiceType.LIFE_FORECAST)
        payment = store.reject_payment(
            user.id, RejectionPayload(reason="INVALID_PROOF", received_amount_ghs=900, expected_amount_ghs=1800)
        )
        assert payment.rejection_reason == "INVALID_PROOF"
        assert payment.received_amount_ghs is None
        assert payment.expected_amount_ghs is None

    def test_reject_unknown_reason(self, store, user):
        store.create_or_overwrite_payment(user.id, MEDIA_URL, ServiceType.LIFE_FORECAST)
        with pytest.raises(ValueError):
            store.reject_payment(user.id, RejectionPayload(reason="LATE"))

    def test_verify_clears_rejection(self, store, user):
        store.create_or_overwrite_payment(user.id, MEDIA_URL, ServiceType.LIFE_FORECAST)
        store.reject_payment(user.id, RejectionPayload(reason="INVALID_PROOF", note="blurry"))
        payment = store.verify_latest_payment(user.id)
        assert payment.verified is True
        assert payment.rejection_reason is None
        assert payment.rejection_note is None

    def test_verify_without_payment(self, store, user):
        assert store.verify_latest_payment(user.id) is None

    def test_mark_payment_notified(self, store, user):
        payment = store.create_or_overwrite_payment(user.id, MEDIA_URL, ServiceType.LIFE_FORECAST)
        store.mark_payment_notified(payment.id, error="send failed")
        assert store.get_payment_by_id(payment.id).notify_error == "send failed"
        store.mark_payment_notified(payment.id)
        refreshed = store.get_payment_by_id(payment.id)
        assert refreshed.payment_verified_notified is True
        assert refreshed.notify_error is None

    def test_list_unverified_payments(self, store, user):
        store.create_or_overwrite_payment(user.id, MEDIA_URL, ServiceType.DESTINY_READINGS)
        other = store.get_or_create_user_by_address("whatsapp:+233200000000")
        store.create_or_overwrite_payment(other.id, MEDIA_URL_2, ServiceType.LIFE_FORECAST)
        store.verify_latest_payment(other.id)

        rows = store.list_unverified_payments()
        assert [(payment.user_id, u.phone) for payment, u in rows] == [(user.id, ADDRESS)]
        assert store.list_unverified_payments(service_type=ServiceType.LIFE_FORECAST) == []


class TestSubmissions:
    def test_create_submission_is_idempotent_per_evidence(self, store, db_session, user, conversation):
        payment = store.create_or_overwrite_payment(user.id, MEDIA_URL, ServiceType.LIFE_FORECAST)
        first = store.create_submission(user.id, conversation.id, payment.id)
        again = store.create_submission(user.id, conversation.id, payment.id)
        assert first.id == again.id
        assert db_session.query(Submission).count() == 1

    def test_new_evidence_gets_new_submission(self, store, db_session, user, conversation):
        payment = store.create_or_overwrite_payment(user.id, MEDIA_URL, ServiceType.LIFE_FORECAST)
        first = store.create_submission(user.id, conversation.id, payment.id)
        store.create_or_overwrite_payment(user.id, MEDIA_URL_2, ServiceType.LIFE_FORECAST)
        second = store.create_submission(user.id, conversation.id, payment.id)
        assert first.id != second.id
        assert db_session.query(Submission).count() == 2

    def test_notification_bookkeeping(self, store, user, conversation):
        payment = store.create_or_overwrite_payment(user.id, MEDIA_URL, ServiceType.LIFE_FORECAST)
        submission = store.create_submission(user.id, conversation.id, payment.id)

        store.record_submission_failure(submission.id, "timeout")
        assert store.get_submission(submission.id).notify_attempts == 1
        assert [s.id for s in store.list_pending_submissions(max_attempts=5)] == [submission.id]
        assert store.list_pending_submissions(max_attempts=1) == []

        store.mark_submission_notified(submission.id)
        refreshed = store.get_submission(submission.id)
        assert refreshed.admin_notified is True
        assert refreshed.notify_error is None
        assert store.list_pending_submissions(max_attempts=5) == []

    def test_conversation_row_type(self, conversation):
        assert isinstance(conversation, Conversation)


class TestClaims:
    def test_reading_claim_is_granted_once_across_sessions(self, store, session_factory, user):
        other_session = session_factory()
        try:
            other = SqlConversationStore(other_session)
            assert other.get_user_by_id(user.id).reading_sent is False

            assert store.claim_reading_send(user.id) is True
            store.commit()

            assert other.claim_reading_send(user.id) is False
            other.rollback()
        finally:
            other_session.close()

        store.db.expire_all()
        assert store.get_user_by_id(user.id).reading_sent is True

    def test_failed_reading_releases_claim(self, store, user):
        store.claim_reading_send(user.id)
        store.record_reading_outcome(user.id, "Your reading", error="boom", release_claim=True)
        store.commit()

        assert store.get_user_by_id(user.id).reading_sent is False
        assert store.claim_reading_send(user.id) is True

    def test_submission_claim_is_granted_once_across_sessions(self, store, session_factory, user, conversation):
        payment = store.create_or_overwrite_payment(user.id, MEDIA_URL, ServiceType.LIFE_FORECAST)
        submission = store.create_submission(user.id, conversation.id, payment.id)
        store.commit()

        other_session = session_factory()
        try:
            other = SqlConversationStore(other_session)
            assert other.get_submission(submission.id).admin_notified is False

            assert store.claim_submission_notification(submission.id) is True
            store.commit()

            assert other.claim_submission_notification(submission.id) is False
        finally:
            other_session.close()

    def test_submission_failure_releases_claim(self, store, user, conversation):
        payment = store.create_or_overwrite_payment(user.id, MEDIA_URL, ServiceType.LIFE_FORECAST)
        submission = store.create_submission(user.id, conversation.id, payment.id)
        store.claim_submission_notification(submission.id)
        store.record_submission_failure(submission.id, "timeout")

        assert store.get_submission(submission.id).admin_notified is False
        assert [s.id for s in store.list_pending_submissions(max_attempts=5)] == [submission.id]

    def test_notify_errors_are_recorded_and_cleared(self, store, user):
        payment = store.create_or_overwrite_payment(user.id, MEDIA_URL, ServiceType.LIFE_FORECAST)

        store.record_payment_notify_error(payment.id, "send failed")
        store.record_user_notify_error(user.id, "send failed")
        assert store.get_payment_by_id(payment.id).notify_error == "send failed"
        assert store.get_user_by_id(user.id).notify_error == "send failed"

        store.record_payment_notify_error(payment.id, None)
        store.record_user_notify_error(user.id, None)
        assert store.get_payment_by_id(payment.id).notify_error is None
        assert store.get_user_by_id(user.id).notify_error is None
