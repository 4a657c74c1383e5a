#!/usr/bin/env python3
from typing import Dict, List, Optional
from datetime import datetime, timedelta, timezone
import json
import sys
import paho.mqtt.client as mqtt
from charger_availability.booking_store import BookingConflictError, BookingStore
from charger_availability.config import Config, load_config


def publish_message(config: Config, message: Dict[str, object]) -> None:
    client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
    client.connect(config.mqtt_host, config.mqtt_port, config.mqtt_keepalive)
    client.publish(config.mqtt_topic, json.dumps(message))
    client.disconnect()


def create_sample_bookings(
    store: BookingStore,
    charger_id: str = "C1",
    now: Optional[datetime] = None,
) -> List[Dict[str, object]]:
    """
    Create one booking running now, one back-to-back after it,
    and one later in the day for charger_id. Skip conflicting ones.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    now = now.replace(second=0, microsecond=0)
    samples = [
        (now - timedelta(minutes=15), 60.0),
        (now + timedelta(minutes=45), 30.0),
        (now + timedelta(hours=3), 90.0),
    ]
    created: List[Dict[str, object]] = []
    for start_time, duration_minutes in samples:
        try:
            created.append(
                store.create_booking(
                    charger_id, start_time, duration_minutes=duration_minutes
                )
            )
        except BookingConflictError as e:
            print(e)
    return created


if __name__ == "__main__":
    if len(sys.argv) <= 3:
        config = load_config(sys.argv[2] if len(sys.argv) > 2 else None)
        store = BookingStore(
            config.database_url,
            publisher=lambda message: publish_message(config, message),
            local_timezone=config.local_timezone,
            default_duration=config.default_duration,
        )
        bookings = create_sample_bookings(
            store, sys.argv[1] if len(sys.argv) > 1 else "C1"
        )
        print(f"Created {len(bookings)} sample bookings.")
    else:
        print(
            "Usage: python -m charger_availability.create_sample_bookings"
            " [<charger id> [<config.yaml>]]"
        )
