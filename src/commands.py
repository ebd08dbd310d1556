from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from protocol import NULL_BULK, BulkString, RESPArray, RESPError, RESPValue, SimpleString
from store import Store

log = logging.getLogger(__name__)

OK = SimpleString("OK")
PONG = SimpleString("PONG")
UNEXPECTED_FORMAT = RESPError("ERR unexpected command format")

Handler = Callable[[Store, list[str]], Awaitable[RESPValue]]


def _arity_error(cmd: str) -> RESPError:
    return RESPError(f"ERR wrong number of arguments for '{cmd}' command")


def _quoted(name: str) -> str:
    # Error replies are single lines.
    return name[:128].replace("\r", " ").replace("\n", " ")


async def handle_ping(store: Store, args: list[str]) -> RESPValue:
    if len(args) > 1:
        return _arity_error("ping")
    return BulkString(args[0]) if args else PONG


async def handle_echo(store: Store, args: list[str]) -> RESPValue:
    if len(args) != 1:
        return _arity_error("echo")
    return BulkString(args[0])


async def handle_get(store: Store, args: list[str]) -> RESPValue:
    if len(args) != 1:
        return _arity_error("get")
    value = await store.get(args[0])
    return NULL_BULK if value is None else BulkString(value)


async def handle_set(store: Store, args: list[str]) -> RESPValue:
    if len(args) != 2:
        return _arity_error("set")
    key, value = args
    await store.set(key, value)
    return OK


COMMAND_REGISTRY: dict[str, Handler] = {
    "ping": handle_ping,
    "echo": handle_echo,
    "get": handle_get,
    "set": handle_set,
}


def _command_name(head: RESPValue) -> Optional[str]:
    match head:
        case BulkString(str() as name):
            return name
        case SimpleString(name):
            return name
    return None


async def dispatch(frame: RESPValue, store: Store) -> RESPValue:
    """Run one request frame against ``store``.

    Client mistakes come back as ``RESPError`` replies; nothing here raises
    for bad input.
    """
    if not isinstance(frame, RESPArray) or not frame.items:
        return UNEXPECTED_FORMAT

    name = _command_name(frame.items[0])
    if name is None:
        return UNEXPECTED_FORMAT

    cmd = name.lower()
    handler = COMMAND_REGISTRY.get(cmd)
    if handler is None:
        return RESPError(f"ERR unknown command '{_quoted(name)}'")

    args = []
    for item in frame.items[1:]:
        if not isinstance(item, BulkString) or item.value is None:
            return RESPError(f"ERR wrong argument type for '{cmd}' command")
        args.append(item.value)

    log.debug("Dispatching %s with %d argument(s)", cmd, len(args))
    return await handler(store, args)
