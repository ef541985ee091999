import asyncio
import json

from .logsetup import get_logger
from .signatures import SPACE_CONFIG_QUERY
from .utils import now_ts

logr = get_logger('space_config')

SPACE_CONFIG_TTL = 24 * 60 * 60

DELEGATION_STRATEGY = 'delegation'

class SpaceConfigError(Exception):
    pass

class SpaceConfigCache:
    """
    Strategy set + network of a Snapshot space, as configured on the hub.

    Refetched once the cached value is older than `ttl`.  If a refetch fails the
    last good value is served; with nothing cached the failure propagates.
    """

    def __init__(self, hub_client, space, ttl=SPACE_CONFIG_TTL, clock=now_ts):
        self.hub_client = hub_client
        self.space = space
        self.ttl = ttl
        self.clock = clock
        self.cached = None
        self.lock = asyncio.Lock()

    def is_fresh(self, now):
        return self.cached is not None and (now - self.cached['lastUpdatedAt']) < self.ttl

    async def get(self):

        async with self.lock:

            now = self.clock()

            if self.is_fresh(now):
                return self.cached

            try:
                data = await self.hub_client.query(SPACE_CONFIG_QUERY, {'id': self.space})

                space = data.get('space')
                if not space:
                    raise SpaceConfigError(f"Space {self.space} not found")

                self.cached = {
                    'network': space['network'],
                    'strategies': space['strategies'],
                    'lastUpdatedAt': now,
                }

                logr.info(f"Loaded space config for {self.space}: {json.dumps(self.cached, indent=2)}")

                return self.cached

            except Exception as e:
                logr.error(f"Error loading space config for {self.space}: {e!r}")

                if self.cached is not None:
                    logr.warning("Using cached space config as fallback")
                    return self.cached

                if isinstance(e, SpaceConfigError):
                    raise
                raise SpaceConfigError(f"No space config available for {self.space}") from e


def split_strategies(strategies):
    """(index of the delegation strategy or None, strategies without it)"""

    delegation_index = None
    own = []

    for i, strategy in enumerate(strategies):
        if strategy['name'] == DELEGATION_STRATEGY:
            if delegation_index is None:
                delegation_index = i
        else:
            own.append(strategy)

    return delegation_index, own
