from __future__ import annotations

import asyncio
import functools
import logging
from typing import Optional

from commands import dispatch
from config import ServerConfig
from protocol import Decoder, ProtocolError, RESPError, encode
from store import Store

log = logging.getLogger(__name__)


async def _read(reader: asyncio.StreamReader, config: ServerConfig) -> bytes:
    if config.idle_timeout is None:
        return await reader.read(config.read_size)
    return await asyncio.wait_for(reader.read(config.read_size), config.idle_timeout)


async def handle_client(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    store: Store,
    config: Optional[ServerConfig] = None,
) -> None:
    config = config or ServerConfig()
    addr = writer.get_extra_info("peername")
    log.info("New connection from %s", addr)

    decoder = Decoder(config.limits)

    try:
        while True:
            chunk = await _read(reader, config)
            if not chunk:
                break

            decoder.feed(chunk)

            while decoder:
                try:
                    parsed = decoder.next_frame()
                except ProtocolError as e:
                    # Frame boundaries are lost; drop what is buffered.
                    log.warning("Protocol error from %s: %s", addr, e)
                    decoder.reset()
                    writer.write(encode(RESPError(f"ERR Protocol error: {e}")))
                    await writer.drain()
                    break

                if parsed is None:
                    break

                frame, _ = parsed

                result = await dispatch(frame, store)
                writer.write(encode(result))

                await writer.drain()
    except asyncio.TimeoutError:
        log.info("Idle timeout: %s", addr)
    except (OSError, asyncio.IncompleteReadError) as e:
        log.error("Client error: %s", e)
    finally:
        writer.close()
        log.info("Connection closed: %s", addr)


async def create_server(config: ServerConfig, store: Optional[Store] = None) -> asyncio.Server:
    """Bind the listener; every connection shares one store."""
    store = store if store is not None else Store()
    handler = functools.partial(handle_client, store=store, config=config)
    return await asyncio.start_server(handler, config.host, config.port)


async def start_server(config: ServerConfig) -> None:
    server = await create_server(config)
    addrs = ", ".join(str(sock.getsockname()) for sock in server.sockets)
    log.info("Key-value server listening on %s", addrs)

    async with server:
        await server.serve_forever()
