"""Push channel messages about booking mutations"""

from typing import Any, Dict, List, Mapping, Optional, Tuple
import json
import logging
import queue
import paho.mqtt.client as mqtt
from charger_availability.booking_interfaces import (
    BookingStatus,
    MalformedBookingError,
)


class PushEventType:
    CREATED = "created"
    UPDATED = "updated"
    CANCELLED = "cancelled"
    CHARGER_ADDED = "charger-added"
    CHARGER_DELETED = "charger-deleted"

    ALL = (CREATED, UPDATED, CANCELLED)
    CHARGER_EVENTS = (CHARGER_ADDED, CHARGER_DELETED)


def parse_push_message(message: Mapping[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """
    Return event type and booking record of a push message.
    Cancellation messages force the record's status to cancelled.
    Charger list messages return a record with the charger id only.
    """
    if not isinstance(message, Mapping):
        raise MalformedBookingError(f"Push message is not a mapping: {message!r}")
    event_type = str(message.get("type", "")).lower()
    if event_type in PushEventType.CHARGER_EVENTS:
        charger_id = message.get("charger_id", message.get("chargerId"))
        if charger_id is None or not str(charger_id).strip():
            raise MalformedBookingError(f"Charger message without charger id: {message!r}")
        return event_type, {"chargerId": str(charger_id)}
    if event_type.startswith("booking-"):
        event_type = event_type[len("booking-") :]
    if event_type == "canceled":
        event_type = PushEventType.CANCELLED
    if event_type not in PushEventType.ALL:
        raise MalformedBookingError(
            f"Unknown push message type '{message.get('type')}'."
        )
    booking = message.get("booking")
    if not isinstance(booking, Mapping):
        raise MalformedBookingError(f"Push message without booking: {message!r}")
    record = dict(booking)
    if event_type == PushEventType.CANCELLED:
        record["status"] = BookingStatus.CANCELLED
    return event_type, record


class PushChannel:
    """
    Thread-safe queue of push messages.

    Transports put messages from any thread, the engine drains them
    on its own thread.
    """

    def __init__(self) -> None:
        self.messages: "queue.Queue[Mapping[str, Any]]" = queue.Queue()

    def put(self, message: Mapping[str, Any]) -> None:
        self.messages.put(message)

    def drain(self) -> List[Mapping[str, Any]]:
        """Return all queued messages in arrival order."""
        drained: List[Mapping[str, Any]] = []
        while True:
            try:
                drained.append(self.messages.get_nowait())
            except queue.Empty:
                return drained

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass


class MqttPushChannel(PushChannel):
    """Push channel receiving JSON booking messages from an MQTT topic."""

    def __init__(
        self,
        host: str,
        port: int = 1883,
        topic: str = "bookings/changed",
        keepalive: int = 60,
        client_id: Optional[str] = None,
    ) -> None:
        super().__init__()
        self.host = host
        self.port = port
        self.topic = topic
        self.keepalive = keepalive
        self.client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2, client_id=client_id or ""
        )
        self.client.on_connect = self.on_connect
        self.client.on_message = self.on_message

    def on_connect(
        self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any
    ) -> None:
        logging.info(f"Connected to {self.host}:{self.port} ({reason_code}).")
        # Subscribe on every connect to survive reconnects.
        client.subscribe(self.topic)

    def on_message(self, client: mqtt.Client, userdata: Any, message: Any) -> None:
        try:
            payload = json.loads(message.payload)
        except (TypeError, ValueError, UnicodeDecodeError) as e:
            logging.warning(
                f"Warning: Dropped undecodable message on {message.topic}: {e}"
            )
            return
        self.put(payload)

    def start(self) -> None:
        self.client.connect_async(self.host, self.port, self.keepalive)
        self.client.loop_start()

    def stop(self) -> None:
        # The network loop sends the DISCONNECT packet.
        self.client.disconnect()
        self.client.loop_stop()
