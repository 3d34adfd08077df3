import unittest
from datetime import timedelta
from unittest.mock import MagicMock

from invitehub.core import events
from invitehub.entities.invitation import Invitation
from invitehub.queues.delivery_queue import SEND_INVITATION, SEND_REMINDER
from invitehub.services.exceptions import DeliveryError
from invitehub.workers.delivery_worker import DeliveryJob, DeliveryWorker
from tests.fakes import FakeClock, FakeInvitationRepository


class TestDeliveryWorker(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.repo = FakeInvitationRepository()
        self.dispatcher = MagicMock()
        self.events = []
        self.worker = DeliveryWorker(
            self.repo,
            self.dispatcher,
            publish=lambda event_type, payload: self.events.append((event_type, payload)),
            clock=self.clock,
        )

    def store(self, **kwargs) -> Invitation:
        data = dict(
            email="a@x.com",
            role="user",
            invite_token="a" * 32,
            expires_at=self.clock.now + timedelta(days=7),
            created_at=self.clock.now,
        )
        data.update(kwargs)
        return self.repo.insert_one(Invitation(**data))

    def job(self, name=SEND_INVITATION, token="a" * 32, job_id="job-1"):
        return DeliveryJob(
            name=name,
            payload={"invite_token": token, "email": "a@x.com", "enqueued_at": self.clock.now.isoformat()},
            job_id=job_id,
        )

    def test_email_invitation_is_sent_and_stamped(self):
        self.store()
        self.clock.advance(seconds=5)

        result = self.worker.process_job(self.job())

        self.assertEqual(result.status, "completed")
        self.assertEqual(result.sent, ["email"])
        payload = self.dispatcher.send_invitation_email.call_args.args[0]
        self.assertEqual(payload["invite_token"], "a" * 32)
        self.dispatcher.send_invitation_sms.assert_not_called()
        self.assertEqual(self.repo.all()[0].email_sent_at, self.clock.now)
        self.assertEqual(self.events[-1][0], events.DELIVERY_JOB_COMPLETED)

    def test_both_channels_for_reminder(self):
        self.store(invite_method="both", phone_number="+40700000000")

        result = self.worker.process_job(self.job(name=SEND_REMINDER))

        self.assertEqual(result.sent, ["email", "sms"])
        self.dispatcher.send_reminder_email.assert_called_once()
        self.dispatcher.send_reminder_sms.assert_called_once()

    def test_sms_without_phone_is_skipped(self):
        self.store(invite_method="sms")

        result = self.worker.process_job(self.job())

        self.assertEqual(result.sent, [])
        self.dispatcher.send_invitation_sms.assert_not_called()

    def test_superseded_token_is_skipped(self):
        result = self.worker.process_job(self.job(token="gone"))

        self.assertEqual(result.status, "skipped")
        self.assertEqual(result.reason, "token_superseded")
        self.dispatcher.send_invitation_email.assert_not_called()

    def test_non_pending_invitation_is_skipped(self):
        invitation = self.store()
        self.repo.docs[invitation.id] = invitation.revoke(self.clock.now)

        result = self.worker.process_job(self.job())

        self.assertEqual(result.reason, "invitation_revoked")
        self.dispatcher.send_invitation_email.assert_not_called()

    def test_retry_skips_channel_already_delivered_for_this_job(self):
        self.store(invite_method="both", phone_number="+40700000000")
        job = self.job()
        self.clock.advance(seconds=1)
        self.dispatcher.send_invitation_sms.side_effect = DeliveryError("sms down", channel="sms")

        with self.assertRaises(DeliveryError):
            self.worker.process_job(job)
        self.assertEqual(self.events[-1][0], events.DELIVERY_JOB_FAILED)

        self.dispatcher.send_invitation_sms.side_effect = None
        self.clock.advance(seconds=30)
        result = self.worker.process_job(job)

        self.assertEqual(result.sent, ["sms"])
        self.assertEqual(self.dispatcher.send_invitation_email.call_count, 1)

    def test_earlier_delivery_does_not_suppress_new_job(self):
        self.store(email_sent_at=self.clock.now, delivered_jobs=["job-0:email"])
        self.clock.advance(minutes=10)

        result = self.worker.process_job(self.job(job_id="job-1"))

        self.assertEqual(result.sent, ["email"])

    def test_reminder_delivered_during_backoff_does_not_swallow_invitation_retry(self):
        self.store()
        invitation_job = self.job(job_id="invite-1")
        self.dispatcher.send_invitation_email.side_effect = DeliveryError("smtp down", channel="email")

        with self.assertRaises(DeliveryError):
            self.worker.process_job(invitation_job)

        self.clock.advance(seconds=1)
        reminder = self.worker.process_job(self.job(name=SEND_REMINDER, job_id="remind-1"))
        self.assertEqual(reminder.sent, ["email"])

        self.dispatcher.send_invitation_email.side_effect = None
        self.clock.advance(seconds=30)
        retried = self.worker.process_job(invitation_job)

        self.assertEqual(retried.sent, ["email"])
        self.assertEqual(self.dispatcher.send_invitation_email.call_count, 2)
        self.assertEqual(
            self.repo.all()[0].delivered_jobs, ["remind-1:email", "invite-1:email"]
        )

    def test_invitation_delivery_does_not_suppress_reminder_retry(self):
        self.store()
        reminder_job = self.job(name=SEND_REMINDER, job_id="remind-1")
        self.dispatcher.send_reminder_email.side_effect = DeliveryError("smtp down", channel="email")

        with self.assertRaises(DeliveryError):
            self.worker.process_job(reminder_job)

        self.clock.advance(seconds=1)
        self.worker.process_job(self.job(job_id="invite-2"))

        self.dispatcher.send_reminder_email.side_effect = None
        retried = self.worker.process_job(reminder_job)

        self.assertEqual(retried.sent, ["email"])
        self.assertEqual(self.dispatcher.send_reminder_email.call_count, 2)

    def test_unknown_job_name_is_rejected(self):
        with self.assertRaises(ValueError):
            self.worker.process_job(self.job(name="send-pigeon"))


if __name__ == "__main__":
    unittest.main()
