import re
import itertools
import pytest
from unittest.mock import AsyncMock, Mock

from sanic import Sanic

from sup_metrics.cache import FileStorage
from sup_metrics.clients_chain import ChainReadClient
from sup_metrics.config import DEFAULTS

def addr(n):
    return f"0x{n:040x}"

A, B, C, D = addr(0xa), addr(0xb), addr(0xc), addr(0xd)

LOCKER_1, LOCKER_2, LOCKER_3 = addr(0x1001), addr(0x1002), addr(0x1003)

TOKEN = addr(0x50)
L1_TOKEN = addr(0x51)
PROGRAM_MANAGER = addr(0x60)
STAKING_REWARD_CONTROLLER = addr(0x61)
VESTING_FACTORY = addr(0x62)
DAO_TREASURY = addr(0x63)
FOUNDATION_TREASURY = addr(0x64)

WEI = 10 ** 18

class FakeGraphClient:
    """
    Serves GraphQL collections the way a subgraph pages them: sorted by id,
    after the `id_gt` cursor, at most `first` items.

    `collections` maps a collection name to a list of items, or to a callable
    taking the query text and returning the items (eg. to filter by pool).
    """

    def __init__(self, collections, url='http://fake-subgraph'):
        self.collections = collections
        self.url = url
        self.queries = []

    def is_valid(self):
        return True

    def items_for(self, query):
        for name, items in self.collections.items():
            if re.search(rf"\b{name}\(", query):
                return items(query) if callable(items) else items
        raise AssertionError(f"Unexpected query: {query}")

    async def post(self, query, variables=None):
        self.queries.append(query)

        name = re.search(r"(\w+)\(", query).group(1)
        first = int(re.search(r"first: (\d+)", query).group(1))
        last_id = re.search(r'id_gt: "([^"]*)"', query).group(1)

        items = sorted(self.items_for(query), key=lambda item: item['id'])
        page = [item for item in items if item['id'] > last_id][:first]

        return {'data': {name: page}}

    async def aclose(self):
        pass


def fake_chain(table, concurrency=5):
    """
    A ChainReadClient whose contract calls are answered from
    `table[(address, fn_name, *args)]`, all lower case.  Missing keys & Exception
    values raise, like a failed read would.
    """

    client = ChainReadClient('http://localhost:8545', concurrency=concurrency)
    client.calls = []

    async def call(address, fn_name, *args):
        key = (address.lower(), fn_name) + tuple(str(a).lower() for a in args)
        client.calls.append(key)
        value = table[key]
        if isinstance(value, Exception):
            raise value
        return value

    client.call = call
    return client


def fake_strategies(own_vp):
    strategies = Mock()
    strategies.own_voting_power_batch = AsyncMock(
        side_effect=lambda addresses: {a: own_vp.get(a, 0) for a in addresses})
    return strategies


class FakeClock:

    def __init__(self, now=1_700_000_000):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()

@pytest.fixture
def storage(tmp_path):
    return FileStorage(tmp_path / 'data')

@pytest.fixture
def config(tmp_path):
    config = dict(DEFAULTS)
    config.update({
        'data_dir': str(tmp_path / 'data'),
        'token_address': TOKEN,
        'l1_token_address': L1_TOKEN,
        'ep_program_manager': PROGRAM_MANAGER,
        'staking_reward_controller': STAKING_REWARD_CONTROLLER,
        'vesting_factory': VESTING_FACTORY,
        'dao_treasury': DAO_TREASURY,
        'foundation_treasury': FOUNDATION_TREASURY,
        'snapshot_space': 'superfluid.eth',
        'additional_holders_file': str(tmp_path / 'holders.json'),
        'balance_batch_size': 2,
    })
    return config

@pytest.fixture
def unified_data():
    """A committed unified scores snapshot, already sorted by total vp."""
    return {
        'members': {
            D: {'ownVp': 0, 'delegatedVp': 500000, 'nrDelegators': 2},
            A: {'ownVp': 300000, 'locker': LOCKER_1, 'delegate': D},
            B: {'ownVp': 200000, 'locker': LOCKER_2, 'delegate': D},
            C: {'ownVp': 50000},
        },
        'totalScore': {'totalScore': 1234567, 'poolCount': 3, 'additionalTotalScore': 1000},
    }

_app_names = itertools.count()

@pytest.fixture
def sanic_app():
    return Sanic(f"test_app_{next(_app_names)}")
