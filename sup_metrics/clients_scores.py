import json
import time
from pathlib import Path

import httpx
import backoff

from . import dev_modes
from .clients_graph import is_permanent
from .logsetup import get_logger
from .space_config import split_strategies
from .utils import chunk_list

logr = get_logger('clients_scores')

class ScoreApiError(Exception):
    pass

class ScoreApiClient:
    """
    Snapshot score API.

    /api/scores scores a batch of addresses, one {address: score} dict per strategy.
    The JSON-RPC root answers get_vp for a single address.
    """

    def __init__(self, url, timeout=120, max_tries=3, transport=None):
        self.url = url.rstrip('/')
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._post = backoff.on_exception(
            backoff.expo,
            (httpx.HTTPStatusError, httpx.RequestError),
            max_tries=max_tries,
            giveup=is_permanent,
            jitter=backoff.full_jitter,
            logger=logr,
        )(self._post_once)

    async def _post_once(self, url, payload):
        response = await self.client.post(url, json=payload)
        response.raise_for_status()
        body = response.json()
        if body.get('error'):
            raise ScoreApiError(f"Score API error: {body['error']}")
        return body['result']

    async def get_scores(self, space, network, strategies, addresses, snapshot='latest'):
        payload = {
            'params': {
                'space': space,
                'network': network,
                'snapshot': snapshot,
                'strategies': strategies,
                'addresses': addresses,
            }
        }
        result = await self._post(f"{self.url}/api/scores", payload)
        return result['scores']

    async def get_vp(self, address, space, network, strategies, snapshot='latest'):
        payload = {
            'jsonrpc': '2.0',
            'method': 'get_vp',
            'params': {
                'address': address,
                'space': space,
                'network': network,
                'strategies': strategies,
                'snapshot': snapshot,
                'delegation': False,
            }
        }
        return await self._post(self.url, payload)

    async def aclose(self):
        await self.client.aclose()


class StrategyClient:
    """Voting power for the configured space, using the hub's current strategy set."""

    def __init__(self, score_api, space_config, space, chunk_size, capture_dir=None):
        self.score_api = score_api
        self.space_config = space_config
        self.space = space
        self.chunk_size = chunk_size
        self.capture_dir = Path(capture_dir) if capture_dir else None

    def capture(self, i, chunk_scores):
        self.capture_dir.mkdir(parents=True, exist_ok=True)
        with open(self.capture_dir / f"scores_chunk_{i}.json", "w") as f:
            f.write(json.dumps(chunk_scores, indent=2))

    async def own_voting_power_batch(self, addresses):
        """
        {address: own vp} for every address given.

        The delegation strategy is left out, so an account's own power never
        includes what was delegated to it.  Addresses are scored in chunks of at
        most `chunk_size`, one request at a time.
        """

        config = await self.space_config.get()
        _, strategies = split_strategies(config['strategies'])

        addresses = [a.lower() for a in addresses]
        chunks = chunk_list(addresses, self.chunk_size)

        logr.info(f"Processing {len(addresses)} addresses in {len(chunks)} chunks of max {self.chunk_size}")

        own = {}

        for i, chunk in enumerate(chunks):

            start = time.perf_counter()

            chunk_scores = await self.score_api.get_scores(self.space, config['network'], strategies, chunk)

            logr.info(f"Chunk {i + 1}/{len(chunks)} ({len(chunk)} addresses) completed in {time.perf_counter() - start:.2f}s")

            if dev_modes.CAPTURE_CLIENT_OUTPUTS_TO_DISK and self.capture_dir:
                self.capture(i, chunk_scores)

            for strategy_scores in chunk_scores:
                for address, score in strategy_scores.items():
                    address = address.lower()
                    own[address] = own.get(address, 0) + (score or 0)

        return {address: own.get(address, 0) for address in addresses}

    async def get_vp(self, address):
        """Live total & delegated voting power of one address, using all strategies."""

        config = await self.space_config.get()
        delegation_index, _ = split_strategies(config['strategies'])

        result = await self.score_api.get_vp(address.lower(), self.space, config['network'], config['strategies'])

        by_strategy = result.get('vp_by_strategy') or []

        delegated = 0
        if delegation_index is not None and delegation_index < len(by_strategy):
            delegated = by_strategy[delegation_index]

        return {
            'address': address.lower(),
            'total': result.get('vp') or 0,
            'delegated': delegated or 0,
        }
