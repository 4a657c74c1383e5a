#!/usr/bin/env python3
"""Run the availability engine against the booking store and MQTT push channel"""

from typing import Optional
import logging
import sys
from charger_availability.booking_store import BookingStore
from charger_availability.config import Config, load_config
from charger_availability.engine import AvailabilityEngine
from charger_availability.push_channel import MqttPushChannel


class Monitor(AvailabilityEngine):
    """Engine which logs the busy chargers whenever the revision changes."""

    def __init__(self, config: Config) -> None:
        self.booking_store = BookingStore(
            config.database_url,
            local_timezone=config.local_timezone,
            default_duration=config.default_duration,
        )
        super().__init__(
            self.booking_store.fetch_bookings,
            config,
            push_channel=MqttPushChannel(
                config.mqtt_host,
                config.mqtt_port,
                config.mqtt_topic,
                config.mqtt_keepalive,
            ),
        )
        self.reported_revision: Optional[int] = None

    def tick(self) -> int:
        count = super().tick()
        if self.revision != self.reported_revision:
            self.reported_revision = self.revision
            logging.info(
                f"Busy chargers at revision {self.revision}: [{', '.join(self.busy_chargers())}]"
            )
        return count


def main(config_filepath: Optional[str] = None) -> None:
    logging.basicConfig(level=logging.DEBUG)
    config = load_config(config_filepath)
    monitor = Monitor(config)
    monitor.mount()
    logging.info(f"Monitoring bookings: {monitor.status()}")
    try:
        monitor.run()
    except KeyboardInterrupt:
        pass
    finally:
        monitor.unmount()


if __name__ == "__main__":
    if len(sys.argv) <= 2:
        main(sys.argv[1] if len(sys.argv) > 1 else None)
    else:
        print("Usage: python -m charger_availability.monitor [<config.yaml>]")
