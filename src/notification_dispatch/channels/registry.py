"""ChannelRegistry — name → channel lookup shared by all workers."""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import TYPE_CHECKING

from ..exceptions import ChannelNotFoundError, ChannelRegistrationError

if TYPE_CHECKING:
    import builtins
    from collections.abc import Iterable, Mapping

    from ..ports.channel import IChannel

logger = logging.getLogger("notification_dispatch.channels")


class ChannelRegistry:
    """
    Copy-on-write registry of channels.

    Writers build a new mapping and swap the reference; readers only ever
    see a complete, read-only mapping, so concurrent ``get`` calls need no
    lock. Registration is meant to happen at startup; ``freeze()`` closes
    it for good.
    """

    def __init__(self, channels: Iterable[IChannel] = ()) -> None:
        self._channels: Mapping[str, IChannel] = MappingProxyType({})
        self._frozen = False
        for channel in channels:
            self.register(channel)

    def register(self, channel: IChannel, *, replace: bool = False) -> None:
        """Add a channel under ``channel.name``.

        Raises:
            ChannelRegistrationError: if the name is taken (and ``replace``
                is false) or the registry is frozen.
        """
        if self._frozen:
            raise ChannelRegistrationError(
                f'Cannot register channel "{channel.name}": registry is frozen'
            )
        name = channel.name.strip().lower()
        if name in self._channels and not replace:
            raise ChannelRegistrationError(f'Channel "{name}" is already registered')
        updated = dict(self._channels)
        updated[name] = channel
        self._channels = MappingProxyType(updated)
        logger.info("Channel registered: %s", name)

    def unregister(self, name: str) -> bool:
        if self._frozen:
            raise ChannelRegistrationError(
                f'Cannot unregister channel "{name}": registry is frozen'
            )
        name = name.strip().lower()
        if name not in self._channels:
            return False
        updated = dict(self._channels)
        del updated[name]
        self._channels = MappingProxyType(updated)
        return True

    def get(self, name: str) -> IChannel:
        """Return the channel registered under ``name``.

        Raises:
            ChannelNotFoundError: if no such channel is registered.
        """
        channel = self._channels.get(name.strip().lower())
        if channel is None:
            raise ChannelNotFoundError(name)
        return channel

    def has(self, name: str) -> bool:
        return name.strip().lower() in self._channels

    def list(self) -> builtins.list[str]:
        return list(self._channels)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has(name)

    def __len__(self) -> int:
        return len(self._channels)
