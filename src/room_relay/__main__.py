"""Entrypoint: python -m room_relay"""
from __future__ import annotations

import logging

import uvicorn

from room_relay.api.middleware.correlation_id import CorrelationIdFilter


def main() -> None:
    handler = logging.StreamHandler()
    handler.addFilter(CorrelationIdFilter())
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s [%(correlation_id)s]: %(message)s",
        handlers=[handler],
    )
    uvicorn.run(
        "room_relay.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        log_level="info",
    )


if __name__ == "__main__":
    main()
