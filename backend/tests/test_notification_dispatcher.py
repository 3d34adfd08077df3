import unittest
from unittest.mock import MagicMock

import httpx

from invitehub.core import events
from invitehub.services.exceptions import DeliveryError
from invitehub.services.notifications.dispatcher import ChannelDispatcher, NotificationDispatcher
from invitehub.services.notifications.providers import (
    EmailContent,
    MailgunProvider,
    ProviderConfigurationError,
    ProviderError,
    TwilioProvider,
    VonageProvider,
    resolve_provider_class,
)
from invitehub.services.notifications.templates import EmailTemplateRenderer


class FlakyProvider:
    """Fails a fixed number of times, then succeeds."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = 0
        self.closed = False

    def send(self, target, content):
        self.calls += 1
        if self.calls <= self.failures:
            raise ProviderError(f"attempt {self.calls} failed")

    def close(self):
        self.closed = True


class TestChannelDispatcher(unittest.TestCase):
    def setUp(self):
        self.events = []
        self.providers = {}

    def build(self, primary="twilio", backup=None, retries=3):
        def factory(name):
            return self.providers[name]

        return ChannelDispatcher(
            "sms",
            primary=primary,
            backup=backup,
            factory=factory,
            retries=retries,
            publish=lambda event_type, payload: self.events.append((event_type, payload)),
        )

    def test_retries_primary_until_success(self):
        self.providers["twilio"] = FlakyProvider(failures=2)

        message = self.build().send("+40700000000", "hello")

        self.assertEqual(message, "sms sent to +40700000000 via twilio")
        self.assertEqual(self.providers["twilio"].calls, 3)
        types = [event_type for event_type, _ in self.events]
        self.assertEqual(types.count(events.NOTIFICATION_ATTEMPT_FAILED), 2)
        self.assertEqual(types[-1], events.NOTIFICATION_SENT)

    def test_fails_over_to_backup_with_fresh_attempts(self):
        self.providers["twilio"] = FlakyProvider(failures=3)
        self.providers["plivo"] = FlakyProvider(failures=2)

        message = self.build(backup="plivo").send("+40700000000", "hello")

        self.assertEqual(message, "sms sent to +40700000000 via plivo")
        self.assertEqual(self.providers["twilio"].calls, 3)
        self.assertEqual(self.providers["plivo"].calls, 3)

    def test_exhausted_chain_raises_delivery_error(self):
        self.providers["twilio"] = FlakyProvider(failures=10)
        self.providers["plivo"] = FlakyProvider(failures=10)

        with self.assertRaises(DeliveryError) as ctx:
            self.build(backup="plivo", retries=2).send("+40700000000", "hello")

        self.assertEqual(ctx.exception.channel, "sms")
        self.assertEqual(ctx.exception.providers, ["twilio", "plivo"])
        self.assertEqual(self.events[-1][0], events.NOTIFICATION_FAILED)

    def test_no_backup_means_no_failover(self):
        self.providers["twilio"] = FlakyProvider(failures=10)

        with self.assertRaises(DeliveryError) as ctx:
            self.build().send("+40700000000", "hello")

        self.assertEqual(ctx.exception.providers, ["twilio"])

    def test_misconfigured_primary_goes_straight_to_backup(self):
        self.providers["plivo"] = FlakyProvider()

        def factory(name):
            if name == "twilio":
                raise ProviderConfigurationError("twilio: TWILIO_ACCOUNT_SID is not configured")
            return self.providers[name]

        dispatcher = ChannelDispatcher("sms", "twilio", factory, backup="plivo", publish=MagicMock())

        self.assertIn("via plivo", dispatcher.send("+40700000000", "hello"))
        self.assertEqual(self.providers["plivo"].calls, 1)

    def test_provider_clients_are_built_once(self):
        factory = MagicMock(return_value=FlakyProvider())
        dispatcher = ChannelDispatcher("sms", "twilio", factory, publish=MagicMock())

        dispatcher.send("+1", "a")
        dispatcher.send("+1", "b")

        factory.assert_called_once_with("twilio")

    def test_unknown_provider_is_rejected_at_construction(self):
        with self.assertRaises(ValueError):
            ChannelDispatcher("sms", "pigeon", MagicMock())
        with self.assertRaises(ValueError):
            ChannelDispatcher("email", "gmail", MagicMock(), backup="twilio")

    def test_close_closes_cached_providers(self):
        provider = FlakyProvider()
        self.providers["twilio"] = provider
        dispatcher = self.build()
        dispatcher.send("+1", "a")

        dispatcher.close()

        self.assertTrue(provider.closed)

    def test_nexmo_is_an_alias_for_vonage(self):
        self.assertIs(resolve_provider_class("sms", "Nexmo"), VonageProvider)


class TestNotificationDispatcher(unittest.TestCase):
    def setUp(self):
        self.email = MagicMock()
        self.sms = MagicMock()
        self.renderer = MagicMock()
        self.renderer.render.return_value = "<html>invite</html>"
        self.dispatcher = NotificationDispatcher(
            self.email,
            self.sms,
            renderer=self.renderer,
            frontend_url="https://app.example.com/",
            app_name="InviteHub",
        )
        self.payload = {
            "email": "a@x.com",
            "invite_token": "tok123",
            "role": "admin",
            "expires_at": "2026-03-09T12:00:00+00:00",
            "phone_number": "+40700000000",
        }

    def test_invitation_email_carries_accept_link(self):
        self.dispatcher.send_invitation_email(self.payload)

        target, content = self.email.send.call_args.args
        self.assertEqual(target, "a@x.com")
        self.assertIsInstance(content, EmailContent)
        self.assertIn("https://app.example.com/invite/accept?token=tok123", content.text)
        self.assertIn("2026-03-09 12:00 UTC", content.text)
        self.assertEqual(content.html, "<html>invite</html>")
        self.assertEqual(self.renderer.render.call_args.args[0], "invitation")

    def test_reminder_sms_goes_to_phone(self):
        self.dispatcher.send_reminder_sms(self.payload)

        target, message = self.sms.send.call_args.args
        self.assertEqual(target, "+40700000000")
        self.assertTrue(message.startswith("Reminder:"))
        self.assertIn("token=tok123", message)


class TestEmailTemplateRenderer(unittest.TestCase):
    def test_invitation_is_wrapped_in_base_layout(self):
        renderer = EmailTemplateRenderer(app_url="https://app.example.com")

        html = renderer.render(
            "invitation",
            {
                "first_name": "Ana",
                "invited_by_name": "Bob",
                "role": "admin",
                "accept_url": "https://app.example.com/invite/accept",
                "expires_at": "2026-03-09 12:00 UTC",
            },
            subject="Join us",
        )

        self.assertIn("<title>Join us</title>", html)
        self.assertIn("Hello Ana,", html)
        self.assertIn("Bob has invited you", html)
        self.assertIn("2026-03-09 12:00 UTC", html)
        self.assertIn("https://app.example.com/invite/accept", html)

    def test_missing_template_raises(self):
        with self.assertRaises(FileNotFoundError):
            EmailTemplateRenderer().render("nope", {})


class TestHttpProviders(unittest.TestCase):
    def client(self, handler):
        self.requests = []

        def record(request):
            self.requests.append(request)
            return handler(request)

        return httpx.Client(transport=httpx.MockTransport(record))

    def test_twilio_posts_form_to_account_messages(self):
        provider = TwilioProvider(
            "AC123", "secret", "+15550000000",
            client=self.client(lambda request: httpx.Response(201, json={"sid": "SM1"})),
        )

        provider.send("+40700000000", "hello")

        request = self.requests[0]
        self.assertEqual(
            str(request.url), "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json"
        )
        self.assertIn(b"Body=hello", request.content)
        self.assertTrue(request.headers["authorization"].startswith("Basic "))

    def test_http_error_status_raises_provider_error(self):
        provider = TwilioProvider(
            "AC123", "secret", "+15550000000",
            client=self.client(lambda request: httpx.Response(401, text="unauthorized")),
        )

        with self.assertRaises(ProviderError):
            provider.send("+40700000000", "hello")

    def test_transport_error_raises_provider_error(self):
        def boom(request):
            raise httpx.ConnectError("refused", request=request)

        provider = MailgunProvider(
            "key", "mg.example.com", "noreply@mg.example.com", "https://api.mailgun.net/v3",
            client=self.client(boom),
        )

        with self.assertRaises(ProviderError):
            provider.send("a@x.com", EmailContent(subject="s", text="t"))

    def test_mailgun_posts_to_domain_messages(self):
        provider = MailgunProvider(
            "key", "mg.example.com", "noreply@mg.example.com", "https://api.mailgun.net/v3/",
            client=self.client(lambda request: httpx.Response(200, json={"id": "1"})),
        )

        provider.send("a@x.com", EmailContent(subject="Hi", text="t", html="<b>t</b>"))

        request = self.requests[0]
        self.assertEqual(str(request.url), "https://api.mailgun.net/v3/mg.example.com/messages")
        self.assertIn(b"html=", request.content)

    def test_vonage_rejection_in_body_raises(self):
        provider = VonageProvider(
            "key", "secret", "InviteHub",
            client=self.client(
                lambda request: httpx.Response(
                    200, json={"messages": [{"status": "4", "error-text": "Bad Credentials"}]}
                )
            ),
        )

        with self.assertRaises(ProviderError) as ctx:
            provider.send("+40700000000", "hello")
        self.assertIn("Bad Credentials", str(ctx.exception))
        self.assertIn(b"to=40700000000", self.requests[0].content)


if __name__ == "__main__":
    unittest.main()
