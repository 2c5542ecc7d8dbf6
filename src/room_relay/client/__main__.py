"""Entrypoint: python -m room_relay.client ROOM_ID"""
from __future__ import annotations

import argparse
import asyncio
import getpass
import logging

from room_relay.application.exceptions import KeyDerivationError, ValidationError
from room_relay.client.config import client_settings
from room_relay.client.engine import ClientEngine
from room_relay.client.identity import IdentityStore
from room_relay.client.session import RelaySession


def _print_view(engine: ClientEngine, seen: set[str]) -> None:
    for row in engine.view():
        if row.message_id in seen:
            continue
        seen.add(row.message_id)
        tick = f" {row.tick}" if row.tick else ""
        print(f"[{row.display_name}] {row.text}{tick}")


async def run(room_id: str) -> None:
    store = IdentityStore(client_settings.IDENTITY_FILE)
    identity = store.load(client_settings.DISPLAY_NAME)
    engine = ClientEngine(
        room_id,
        user_id=identity.user_id,
        display_name=identity.display_name,
        identity_store=store,
        placeholder=client_settings.PLACEHOLDER_TEXT,
    )
    session = RelaySession(engine, client_settings.SERVER_URL)
    await session.open()
    try:
        while not engine.unlocked:
            passphrase = await asyncio.to_thread(getpass.getpass, "Passphrase: ")
            try:
                fp = await engine.unlock(passphrase)
            except KeyDerivationError as exc:
                print(f"Unlock failed ({exc.detail}), try again.")
                continue
            print(f"Key fingerprint: {fp}")

        seen: set[str] = set()
        while session.is_open:
            _print_view(engine, seen)
            line = await asyncio.to_thread(input, "> ")
            if line.strip() == "/quit":
                break
            try:
                await engine.send(line)
            except ValidationError as exc:
                print(exc.detail)
    finally:
        await session.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Room relay console client")
    parser.add_argument("room_id")
    args = parser.parse_args()
    logging.basicConfig(level=logging.WARNING, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(run(args.room_id))


if __name__ == "__main__":
    main()
