from __future__ import annotations

# Check-in client.
#
# A check-in is a short-lived process:
# - connect to broker
# - publish a register request to the desk
# - wait for the reply
# - print the assigned queue number and exit

import argparse
import time

from .mqtt_client import MqttClient
from .topics import desk_requests, desk_responses


def check_in(
    *,
    mqtt_host: str,
    mqtt_port: int,
    namespace: str,
    queue_id: str,
    category: str,
    name: str,
    uid: str = "",
    timeout: float = 5.0,
) -> dict:
    # Unique client id so several people can check in concurrently.
    client_id = f"checkin-{int(time.time() * 1000)}"
    mqtt = MqttClient(client_id=client_id, host=mqtt_host, port=mqtt_port)
    mqtt.start()

    reply_topic = desk_responses(client_id, namespace)
    mqtt.subscribe(reply_topic)

    try:
        return mqtt.request(
            request_topic=desk_requests(namespace),
            response_topic=reply_topic,
            message={"type": "register", "queue_id": queue_id, "category": category, "name": name, "uid": uid},
            timeout=timeout,
        )
    finally:
        mqtt.stop()


def main(argv: list[str] | None = None) -> None:
    from .config import Settings, add_mqtt_args

    defaults = Settings.from_env()
    parser = argparse.ArgumentParser(description="Check in to a queue (MQTT)")
    parser.add_argument("--queue-id", required=True)
    parser.add_argument("--category", required=True, help="category name, e.g. Enrollment")
    parser.add_argument("--name", required=True)
    add_mqtt_args(parser, defaults)
    args = parser.parse_args(argv)

    resp = check_in(
        mqtt_host=args.mqtt_host,
        mqtt_port=args.mqtt_port,
        namespace=args.namespace,
        queue_id=args.queue_id,
        category=args.category,
        name=args.name,
    )
    if resp.get("type") == "registered":
        print(f"[checkin {args.name}] {resp['category']} queue number {resp['number']}")
    else:
        print(f"[checkin {args.name}] error: {resp.get('message', resp)}")


if __name__ == "__main__":
    main()
