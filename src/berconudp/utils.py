import asyncio
import inspect
import ipaddress
from typing import Awaitable, Callable, ParamSpec, TypeVar

P = ParamSpec("P")
T = TypeVar("T")

MaybeCoroFunc = Callable[P, T | Awaitable[T]]


def normalize_address(ip: str, port: int) -> tuple[str, int]:
    """Returns the canonical form of a remote address, matching the
    addresses reported for incoming datagrams.

    :raises ValueError: The IP is not a numeric address or the port is invalid.

    """
    if port not in range(1, 65536):
        raise ValueError(f"port must be within 1-65535, not {port!r}")
    return str(ipaddress.ip_address(ip)), port


def connection_id(ip: str, port: int) -> str:
    """Returns the key identifying a remote address.

    :raises ValueError: The IP is not a numeric address or the port is invalid.

    """
    ip, port = normalize_address(ip, port)
    if ":" in ip:
        return f"[{ip}]:{port}"
    return f"{ip}:{port}"


def consume_exception(fut: asyncio.Future) -> BaseException | None:
    """Retrieves the exception of a finished future, if any, so asyncio
    does not complain about it never being retrieved.
    """
    if not fut.done() or fut.cancelled():
        return None
    return fut.exception()


async def maybe_coro(
    func: MaybeCoroFunc[P, T],
    *args: P.args,
    **kwargs: P.kwargs,
) -> T:
    ret = func(*args, **kwargs)
    if inspect.isawaitable(ret):
        return await ret
    return ret  # type: ignore
