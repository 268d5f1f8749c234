"""
Spool Relay — 設定

起動時に環境変数から 1 回だけ読み込み、以後は変更しない。
必須の変数が無ければ KeyError で起動に失敗する。
"""

import os
from typing import Literal, Mapping

from pydantic import BaseModel, ConfigDict


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    kafka_brokers: list[str]
    consumer_topic: str
    producer_topic: str
    consumer_group: str = "spool-relay"
    spoolman_api_url: str
    locations_endpoint: str = "/location"
    transport: Literal["kafka", "redis"] = "kafka"
    redis_url: str = "redis://localhost:6379"
    dead_letter_topic: str | None = None
    http_timeout: float = 10.0
    drain_timeout: float = 30.0
    redelivery_delay: float = 1.0


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ
    brokers = env.get("KAFKA_BROKERS", "localhost:9092")
    return Settings(
        kafka_brokers=[b.strip() for b in brokers.split(",") if b.strip()],
        consumer_topic=env["KAFKA_CONSUMER_TOPIC"],
        producer_topic=env["KAFKA_PRODUCER_TOPIC"],
        consumer_group=env.get("KAFKA_CONSUMER_GROUP", "spool-relay"),
        spoolman_api_url=env["SPOOLMAN_API_URL"],
        locations_endpoint=env.get("SPOOLMAN_LOCATIONS_ENDPOINT", "/location"),
        transport=env.get("RELAY_TRANSPORT", "kafka"),
        redis_url=env.get("REDIS_URL", "redis://localhost:6379"),
        dead_letter_topic=env.get("DEAD_LETTER_TOPIC") or None,
        http_timeout=env.get("HTTP_TIMEOUT", "10.0"),
        drain_timeout=env.get("DRAIN_TIMEOUT", "30.0"),
        redelivery_delay=env.get("REDELIVERY_DELAY", "1.0"),
    )
