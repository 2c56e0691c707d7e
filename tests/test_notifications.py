from datetime import datetime, timedelta

from loguru import logger
from starlette.websockets import WebSocketState

from bloodnet.models.request import EmergencyRequest
from bloodnet.utils.live_updates import LiveUpdateHub
from bloodnet.utils.notifications import NotificationService, SmsNotification, normalize_phone_number


class FakeMessages:
    def __init__(self, unreachable=()):
        self.created = []
        self.unreachable = set(unreachable)

    def create(self, **kwargs):
        if kwargs["to"] in self.unreachable:
            raise ConnectionError("connection reset")
        self.created.append(kwargs)


class FakeTwilio:
    def __init__(self, unreachable=()):
        self.messages = FakeMessages(unreachable)


class FakeSocketServer:
    def __init__(self):
        self.emitted = []

    async def emit(self, event, payload):
        self.emitted.append((event, payload))


class FakeWebSocket:
    def __init__(self, fail=False):
        self.client_state = WebSocketState.CONNECTED
        self.fail = fail
        self.sent = []

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)


def sample_request():
    return EmergencyRequest(
        _id="65f000000000000000000010",
        patient_id="65f000000000000000000011",
        blood_group="O-",
        quantity=3,
        urgency_level="critical",
        location={"address": "1 MG Road", "city": "Pune", "state": "Maharashtra"},
        patient_name="Meera",
        patient_phone="9876543210",
        hospital="City Hospital",
        required_by=datetime(2026, 3, 2) + timedelta(hours=6),
    )


def test_normalize_phone_number():
    assert normalize_phone_number("98765 43210", country_code="+91") == "+919876543210"
    assert normalize_phone_number("+1 (555) 123-4567") == "+15551234567"
    assert normalize_phone_number("") == ""


async def test_mock_service_only_logs():
    service = NotificationService()
    service.client = None
    lines = []
    sink = logger.add(lines.append, format="{message}")
    try:
        for _ in range(3):
            assert await service.send_sms(SmsNotification(to="+15550000000", body="hello"))
    finally:
        logger.remove(sink)
    assert [line.strip() for line in lines] == ["Mock SMS: +15550000000 -> hello"] * 3
    assert not hasattr(service, "sent")


async def test_alert_donors_texts_each_donor_with_a_phone():
    twilio = FakeTwilio()
    service = NotificationService(client=twilio)
    donors = [{"phone": "+919876543210"}, {"phone": "+919876543211"}, {"name": "no phone"}]

    delivered = await service.alert_donors(sample_request(), donors)

    assert delivered == 2
    assert [message["to"] for message in twilio.messages.created] == ["+919876543210", "+919876543211"]
    assert "O-" in twilio.messages.created[0]["body"]
    assert "CRITICAL" in twilio.messages.created[0]["body"]


async def test_hub_broadcasts_and_drops_broken_sockets():
    sio = FakeSocketServer()
    hub = LiveUpdateHub(sio)
    healthy, broken = FakeWebSocket(), FakeWebSocket(fail=True)
    hub.websockets.update({healthy, broken})

    await hub.notify("request_created", {"id": "abc"})

    assert healthy.sent == [{"event": "request_created", "payload": {"id": "abc"}}]
    assert hub.websockets == {healthy}
    assert sio.emitted == [("request_created", {"id": "abc"})]


async def test_transport_failure_does_not_stop_the_alert_run():
    twilio = FakeTwilio(unreachable={"+919876543210"})
    service = NotificationService(client=twilio)
    donors = [{"phone": "+919876543210"}, {"phone": "+919876543211"}]

    delivered = await service.alert_donors(sample_request(), donors)

    assert delivered == 1
    assert [message["to"] for message in twilio.messages.created] == ["+919876543211"]
