######################################################################
#
# Contract ABIs.  Only the view functions we read are listed.
#
######################################################################

def view_fn(name, inputs=(), output='uint256'):
    return {
        'inputs': [{'name': n, 'type': t} for n, t in inputs],
        'name': name,
        'outputs': [{'name': '', 'type': output}],
        'stateMutability': 'view',
        'type': 'function',
    }

LOCKER_OWNER = 'lockerOwner'
GET_AVAILABLE_BALANCE = 'getAvailableBalance'
GET_STAKED_BALANCE = 'getStakedBalance'
GET_LIQUIDITY_BALANCE = 'getLiquidityBalance'

BALANCE_OF = 'balanceOf'
TOTAL_SUPPLY = 'totalSupply'

LOCKER_ABI = [
    view_fn(LOCKER_OWNER, output='address'),
    view_fn(GET_AVAILABLE_BALANCE),
    view_fn(GET_STAKED_BALANCE),
    view_fn(GET_LIQUIDITY_BALANCE),
]

# Also covers SupVestingFactory, which reports the SUP still locked in all
# vesting contracts through totalSupply().
ERC20_ABI = [
    view_fn(BALANCE_OF, inputs=[('account', 'address')]),
    view_fn(TOTAL_SUPPLY),
]

ABIS = {
    LOCKER_OWNER: LOCKER_ABI,
    GET_AVAILABLE_BALANCE: LOCKER_ABI,
    GET_STAKED_BALANCE: LOCKER_ABI,
    GET_LIQUIDITY_BALANCE: LOCKER_ABI,
    BALANCE_OF: ERC20_ABI,
    TOTAL_SUPPLY: ERC20_ABI,
}

######################################################################
#
# GraphQL page queries.  Every collection is crawled by id, ascending,
# so the cursor of the next page is the id of the last item.
#
######################################################################

PAGE_SIZE = 1000

def flow_distribution_events_query(program_manager, last_id=""):
    return f"""{{
      flowDistributionUpdatedEvents(
        first: {PAGE_SIZE},
        where: {{
          poolDistributor_: {{account: "{program_manager.lower()}"}},
          id_gt: "{last_id}"
        }},
        orderBy: id,
        orderDirection: asc
      ) {{
        id
        pool {{
          id
          flowRate
          totalAmountDistributedUntilUpdatedAt
          updatedAtTimestamp
        }}
      }}
    }}"""

def pool_members_query(pool_id, last_id=""):
    return f"""{{
      poolMembers(
        first: {PAGE_SIZE},
        where: {{
          pool: "{pool_id}",
          id_gt: "{last_id}"
        }},
        orderBy: id,
        orderDirection: asc
      ) {{
        id
        account {{
          id
        }}
      }}
    }}"""

def delegations_query(space, last_id=""):
    return f"""{{
      delegations(
        first: {PAGE_SIZE},
        where: {{
          space: "{space}",
          id_gt: "{last_id}"
        }},
        orderBy: id,
        orderDirection: asc
      ) {{
        id
        delegator
        delegate
        timestamp
      }}
    }}"""

def delegate_for_query(space, delegator):
    return f"""{{
      delegations(
        first: 1,
        where: {{
          space: "{space}",
          delegator: "{delegator.lower()}"
        }},
        orderBy: timestamp,
        orderDirection: desc
      ) {{
        delegate
      }}
    }}"""

def vesting_schedules_query(token, last_id=""):
    return f"""{{
      vestingSchedules(
        first: {PAGE_SIZE},
        where: {{
          superToken: "{token.lower()}",
          id_gt: "{last_id}"
        }},
        orderBy: id,
        orderDirection: asc
      ) {{
        id
        sender
        receiver
        flowRate
        startDate
        endDate
        deletedAt
        endExecutedAt
      }}
    }}"""

def lockers_query(last_id=""):
    return f"""{{
      lockers(
        first: {PAGE_SIZE},
        where: {{id_gt: "{last_id}"}},
        orderBy: id,
        orderDirection: asc
      ) {{
        id
      }}
    }}"""

def fountains_query(last_id=""):
    return f"""{{
      fountains(
        first: {PAGE_SIZE},
        where: {{id_gt: "{last_id}"}},
        orderBy: id,
        orderDirection: asc
      ) {{
        id
      }}
    }}"""

SPACE_CONFIG_QUERY = """
query GetSpaceConfig($id: String!) {
  space(id: $id) {
    id
    name
    network
    strategies {
      name
      network
      params
    }
  }
}
"""
