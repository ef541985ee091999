import json
from functools import partial
from collections import defaultdict

from .abcs import Aggregator
from .clients_graph import query_all_pages, format_http_error
from .logsetup import get_logger
from .signatures import (flow_distribution_events_query, pool_members_query, delegations_query,
                         vesting_schedules_query, lockers_query, fountains_query,
                         GET_AVAILABLE_BALANCE, GET_STAKED_BALANCE, GET_LIQUIDITY_BALANCE)
from .utils import chunk_list, now_ts, to_tokens, gather_or_cancel, WEI_PER_TOKEN, ZERO_ADDRESS

logr = get_logger('data_products')

####################################
#
#  Shared fetches
#

async def fetch_vesting_schedules(client, token):
    if client is None or not client.is_valid():
        logr.warning("No vesting subgraph configured, skipping vesting schedules")
        return []

    return await query_all_pages(client,
                                 partial(vesting_schedules_query, token),
                                 lambda body: body['data']['vestingSchedules'])

def load_holder_list(path):
    """Lower-cased addresses from a JSON array file, or [] if it is missing or unreadable."""
    if not path:
        return []
    try:
        with open(path, 'r') as f:
            holders = json.load(f)
    except FileNotFoundError:
        logr.warning(f"Holder list {path} not found, skipping")
        return []
    except json.JSONDecodeError as e:
        logr.warning(f"Holder list {path} is not valid JSON ({e}), skipping")
        return []
    return [holder.lower() for holder in holders]

####################################
#
#  Unified scores: members, their own & delegated voting power
#

def compute_total_score(events, now, additional_total_score=0):
    """
    Tokens distributed through the program's pools, extrapolated to `now`.
    Only the most recently updated state of each pool is used.
    """

    latest = {}
    for event in events:
        pool = event['pool']
        prev = latest.get(pool['id'])
        if prev is None or int(pool['updatedAtTimestamp']) > int(prev['updatedAtTimestamp']):
            latest[pool['id']] = pool

    total = int(additional_total_score) * WEI_PER_TOKEN

    for pool in latest.values():
        elapsed = now - int(pool['updatedAtTimestamp'])
        total += int(pool['totalAmountDistributedUntilUpdatedAt']) + int(pool['flowRate']) * elapsed

    return {
        'totalScore': to_tokens(total),
        'poolCount': len(latest),
        'additionalTotalScore': int(additional_total_score),
    }

def current_delegations(edges):
    """
    {delegator: delegate} from the raw edges.  The edge with the latest timestamp
    wins for each delegator, equal timestamps go to the later edge.  Delegators
    whose latest edge points at the zero address have no delegate.
    """

    latest = {}
    for edge in edges:
        delegator = edge['delegator'].lower()
        timestamp = int(edge.get('timestamp') or 0)
        prev = latest.get(delegator)
        if prev is None or timestamp >= prev[0]:
            latest[delegator] = (timestamp, edge['delegate'].lower())

    return {delegator: delegate for delegator, (_, delegate) in latest.items() if delegate != ZERO_ADDRESS}

def aggregate_delegations(current, own_vp):
    """Delegated vp & delegator count per delegate.  Delegators without own vp don't count."""

    delegated_vp = defaultdict(int)
    delegator_cnt = defaultdict(int)

    for delegator, delegate in current.items():
        vp = own_vp.get(delegator, 0)
        if vp > 0:
            delegated_vp[delegate] += vp
            delegator_cnt[delegate] += 1

    return delegated_vp, delegator_cnt

def total_vp(member):
    return member['ownVp'] + member.get('delegatedVp', 0)

def sort_members(members):
    return dict(sorted(members.items(), key=lambda item: total_vp(item[1]), reverse=True))

def build_members(own_vp, edges, locker_owner):
    """
    Merge own vp, locker ownership and delegations into {address: MemberData},
    sorted by own + delegated vp, descending.
    """

    current = current_delegations(edges)
    delegated_vp, delegator_cnt = aggregate_delegations(current, own_vp)

    # First locker found for an owner is the one reported.
    owner_locker = {}
    for locker, owner in locker_owner.items():
        owner_locker.setdefault(owner, locker)

    addresses = list(own_vp.keys())
    for delegator, delegate in current.items():
        addresses.append(delegator)
        addresses.append(delegate)

    members = {}

    for address in addresses:

        if address in members:
            continue

        member = {'ownVp': own_vp.get(address, 0)}

        if address in owner_locker:
            member['locker'] = owner_locker[address]

        if delegated_vp.get(address, 0) > 0:
            member['delegatedVp'] = delegated_vp[address]
            member['nrDelegators'] = delegator_cnt[address]

        if address in current:
            member['delegate'] = current[address]

        members[address] = member

    return sort_members(members)


class UnifiedScores(Aggregator):
    """
    Everyone with a stake in governance: locker owners of the program's pools,
    vesting receivers, extra holders and both ends of every delegation, each
    with own voting power and, for delegates, the voting power delegated to them.
    """

    def __init__(self, config, graph, delegation_graph, vesting_graph, chain, strategies, clock=now_ts):
        self.config = config
        self.graph = graph
        self.delegation_graph = delegation_graph
        self.vesting_graph = vesting_graph
        self.chain = chain
        self.strategies = strategies
        self.clock = clock

    def default(self):
        return {'members': {}, 'totalScore': {'totalScore': 0, 'poolCount': 0, 'additionalTotalScore': 0}}

    async def flow_distribution_events(self):
        return await query_all_pages(self.graph,
                                     partial(flow_distribution_events_query, self.config['ep_program_manager']),
                                     lambda body: body['data']['flowDistributionUpdatedEvents'])

    async def resolve_locker_owners(self, pool_ids):

        locker_owner = {}
        failed = 0

        for pool_id in pool_ids:

            logr.info(f"Getting members for pool {pool_id} ...")

            try:
                lockers = await query_all_pages(self.graph,
                                                partial(pool_members_query, pool_id),
                                                lambda body: body['data']['poolMembers'],
                                                lambda item: item['account']['id'].lower())
            except Exception as e:
                logr.error(format_http_error(e, f"Error fetching members for pool {pool_id}"))
                continue

            lockers = [locker for locker in lockers if locker not in locker_owner]

            owners, failures = await self.chain.locker_owners(lockers)

            logr.info(f"Found {len(lockers)} pool members for pool {pool_id}, resolved {len(owners)} owners, {failures} failed")

            locker_owner.update(owners)
            failed += failures

        return locker_owner, failed

    async def delegation_edges(self):
        return await query_all_pages(self.delegation_graph,
                                     partial(delegations_query, self.config['snapshot_space']),
                                     lambda body: body['data']['delegations'])

    async def compute(self):

        logr.info("Starting unified scores fetch...")
        now = self.clock()

        # 0. Total score & 1. pools
        events = await self.flow_distribution_events()
        total_score = compute_total_score(events, now, self.config['additional_total_score'])
        pool_ids = list(dict.fromkeys(event['pool']['id'] for event in events))

        logr.info(f"Found {len(events)} flow distribution events, {len(pool_ids)} unique pools, total score {total_score['totalScore']}")

        accounts = {}

        def add(address):
            address = address.lower()
            if address != ZERO_ADDRESS:
                accounts[address] = True

        # 2. Locker owners, vesting receivers, extra holders
        locker_owner, failed = await self.resolve_locker_owners(pool_ids)
        if failed:
            logr.warning(f"{failed} locker owner lookups failed")
        for owner in locker_owner.values():
            add(owner)

        schedules = await fetch_vesting_schedules(self.vesting_graph, self.config['token_address'])
        for schedule in schedules:
            add(schedule['receiver'])

        holders = load_holder_list(self.config['additional_holders_file'])
        logr.info(f"Adding {len(holders)} additional holders to unique accounts")
        for holder in holders:
            add(holder)

        # 3. Delegations
        logr.info("Fetching delegations...")
        edges = await self.delegation_edges()
        for edge in edges:
            add(edge['delegator'])
            add(edge['delegate'])

        # 4. Own voting power
        logr.info(f"Fetching own voting power for {len(accounts)} accounts...")
        own_vp = await self.strategies.own_voting_power_batch(list(accounts))

        # 5. Delegated voting power & merge
        members = build_members(own_vp, edges, locker_owner)

        logr.info(f"Unified scores: {len(members)} members, {len(edges)} delegation edges, {len(locker_owner)} lockers")

        return {'members': members, 'totalScore': total_score}

####################################
#
#  Distribution metrics: where the total supply sits
#

LOCKER_BALANCE_FNS = [
    ('reserveBalances', GET_AVAILABLE_BALANCE),
    ('stakedSup', GET_STAKED_BALANCE),
    ('lpSup', GET_LIQUIDITY_BALANCE),
]

CATEGORIES = ['reserveBalances', 'stakedSup', 'lpSup', 'streamingOut', 'communityCharge',
              'investorsTeamLocked', 'daoTreasury', 'foundationTreasury']

def treasury_streaming_remaining(schedules, receiver, now):
    """Still to be streamed to `receiver` by its vesting schedules, in wei."""

    receiver = receiver.lower()
    remaining = 0

    for schedule in schedules:
        if schedule['receiver'].lower() != receiver:
            continue
        if schedule.get('deletedAt') or schedule.get('endExecutedAt'):
            continue
        remaining += int(schedule['flowRate']) * max(0, int(schedule['endDate']) - now)

    return remaining

def account_for_supply(categories, total_supply):
    """Add 'other' (never clamped) & 'totalSupply' to the named categories."""

    metrics = {k: categories[k] for k in CATEGORIES}
    metrics['other'] = total_supply - sum(metrics.values())
    metrics['totalSupply'] = total_supply
    return metrics


class DistributionMetrics(Aggregator):
    """Breakdown of the total supply across custody categories, in whole tokens."""

    def __init__(self, config, chain, l1_chain, locker_graph, vesting_graph, clock=now_ts):
        self.config = config
        self.chain = chain
        self.l1_chain = l1_chain
        self.locker_graph = locker_graph
        self.vesting_graph = vesting_graph
        self.clock = clock

    def default(self):
        return {k: 0 for k in CATEGORIES + ['other', 'totalSupply']}

    async def sum_reads(self, label, addresses, read_fn):
        """Sum of read_fn(batch) over fixed size batches, failed reads count as zero."""

        total = 0
        failed = 0

        for batch in chunk_list(addresses, self.config['balance_batch_size']):
            settled = await read_fn(batch)
            total += sum(result.value for result in settled if result.ok)
            failed += sum(1 for result in settled if not result.ok)

        if failed:
            logr.warning(f"{label}: {failed} of {len(addresses)} reads failed and were counted as zero")

        return total

    async def locker_balances(self):

        lockers = await query_all_pages(self.locker_graph, lockers_query,
                                        lambda body: body['data']['lockers'],
                                        lambda item: item['id'].lower())

        logr.info(f"Reading balances of {len(lockers)} lockers")

        totals = {}
        for key, fn_name in LOCKER_BALANCE_FNS:
            totals[key] = to_tokens(await self.sum_reads(key, lockers, partial(self.chain.read_many, fn_name=fn_name)))

        return totals

    async def streaming_out(self):

        fountains = await query_all_pages(self.locker_graph, fountains_query,
                                          lambda body: body['data']['fountains'],
                                          lambda item: item['id'].lower())

        token = self.config['token_address']
        wei = await self.sum_reads('streamingOut', fountains, partial(self.chain.balances_of, token))

        return to_tokens(wei)

    async def community_charge(self):
        return to_tokens(await self.chain.balance_of(self.config['token_address'], self.config['staking_reward_controller']))

    async def investors_team_locked(self):
        return to_tokens(await self.chain.total_supply(self.config['vesting_factory']))

    async def dao_treasury(self, schedules, now):
        treasury = self.config['dao_treasury']
        balance = await self.chain.balance_of(self.config['token_address'], treasury)
        return to_tokens(balance + treasury_streaming_remaining(schedules, treasury, now))

    async def foundation_treasury(self):
        return to_tokens(await self.l1_chain.balance_of(self.config['l1_token_address'], self.config['foundation_treasury']))

    async def total_supply(self):
        return to_tokens(await self.l1_chain.total_supply(self.config['l1_token_address']))

    async def compute(self):

        logr.info("Starting distribution metrics fetch...")
        now = self.clock()

        schedules = await fetch_vesting_schedules(self.vesting_graph, self.config['token_address'])

        (locker_totals, streaming_out, community_charge, investors_team_locked,
         dao_treasury, foundation_treasury, total_supply) = await gather_or_cancel(
            self.locker_balances(),
            self.streaming_out(),
            self.community_charge(),
            self.investors_team_locked(),
            self.dao_treasury(schedules, now),
            self.foundation_treasury(),
            self.total_supply(),
        )

        categories = dict(locker_totals)
        categories.update({
            'streamingOut': streaming_out,
            'communityCharge': community_charge,
            'investorsTeamLocked': investors_team_locked,
            'daoTreasury': dao_treasury,
            'foundationTreasury': foundation_treasury,
        })

        metrics = account_for_supply(categories, total_supply)

        logr.info(f"Distribution metrics: {metrics}")

        return metrics
