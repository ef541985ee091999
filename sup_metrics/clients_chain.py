import asyncio

import backoff
from web3 import AsyncWeb3, Web3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from .logsetup import get_logger
from .signatures import ABIS, BALANCE_OF, LOCKER_OWNER, TOTAL_SUPPLY
from .utils import settle_all, successes, ZERO_ADDRESS

logr = get_logger('clients_chain')

def is_revert(e):
    # Reverts & empty return data (no code at the address) won't change on retry.
    return isinstance(e, (ContractLogicError, BadFunctionCallOutput))

class ChainReadClient:
    """
    Read-only contract calls against one chain's JSON-RPC endpoint.

    `call` is strict.  `read_many` is best-effort: it runs the same call against
    many addresses, at most `concurrency` in flight, and returns a Settled per
    address so the caller decides what to do with the failures.
    """

    def __init__(self, url, chain_name='base', timeout=25, max_tries=3, concurrency=20):
        self.url = url
        self.chain_name = chain_name
        self.timeout = timeout
        self.concurrency = concurrency
        self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(url))
        self._call = backoff.on_exception(
            backoff.expo,
            Exception,
            max_tries=max_tries,
            giveup=is_revert,
            jitter=backoff.full_jitter,
            logger=logr,
        )(self._call_once)

    def is_valid(self):
        return self.url not in ('', 'ignored', None)

    async def aclose(self):
        await self.w3.provider.disconnect()

    async def _call_once(self, address, fn_name, args):
        contract = self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=ABIS[fn_name])
        fn = getattr(contract.functions, fn_name)(*args)
        return await asyncio.wait_for(fn.call(), timeout=self.timeout)

    async def call(self, address, fn_name, *args):
        return await self._call(address, fn_name, args)

    async def read_many(self, addresses, fn_name, *args):
        return await settle_all((self.call(address, fn_name, *args) for address in addresses),
                                limit=self.concurrency)

    async def balance_of(self, token, account):
        return await self.call(token, BALANCE_OF, Web3.to_checksum_address(account))

    async def total_supply(self, contract):
        return await self.call(contract, TOTAL_SUPPLY)

    async def balances_of(self, token, accounts):
        account_args = [Web3.to_checksum_address(a) for a in accounts]
        return await settle_all((self.call(token, BALANCE_OF, a) for a in account_args),
                                limit=self.concurrency)

    async def locker_owners(self, lockers):
        """
        {locker: owner} for the lockers whose owner could be read, plus the
        number of lookups that failed.  Failed lockers are left out.
        """

        settled = await self.read_many(lockers, LOCKER_OWNER)

        owners = {}
        for locker, owner in successes(lockers, settled):
            owner = owner.lower()
            if owner != ZERO_ADDRESS:
                owners[locker.lower()] = owner

        failures = [(locker, result.error) for locker, result in zip(lockers, settled) if not result.ok]
        for locker, error in failures:
            logr.debug(f"Error fetching lockerOwner for {locker}: {error}")

        return owners, len(failures)
