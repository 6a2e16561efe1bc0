"""
Pre-run prefetching of transaction parameters

Everything here runs before the measured window opens, on clients whose
calls are never reported into a flow's call log.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from web3 import AsyncWeb3

from app_config import ZERO_ADDRESS

logger = logging.getLogger(__name__)

# Freshly generated identities have never sent a transaction
FRESH_ACCOUNT_NONCE = 0


@dataclass(frozen=True)
class PrefetchOptions:
    """Which transaction parameters to fetch before a run"""
    nonce: bool = False
    gas_params: bool = False
    chain_id: bool = False

    @property
    def all_enabled(self) -> bool:
        return self.nonce and self.gas_params and self.chain_id

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'PrefetchOptions':
        """Build options from a JSON body; accepts camelCase or snake_case keys"""
        data = data or {}
        if not isinstance(data, dict):
            raise ValueError("Prefetch options must be an object")

        values = {}
        for name, keys in (('nonce', ('nonce',)),
                           ('gas_params', ('gas_params', 'gasParams')),
                           ('chain_id', ('chain_id', 'chainId'))):
            for key in keys:
                if key in data:
                    if not isinstance(data[key], bool):
                        raise ValueError(f"Prefetch option '{key}' must be a boolean")
                    values[name] = data[key]
        return cls(**values)

    def to_dict(self) -> Dict[str, bool]:
        return {
            'nonce': self.nonce,
            'gas_params': self.gas_params,
            'chain_id': self.chain_id,
        }


@dataclass(frozen=True)
class PrefetchedGas:
    """Gas parameters captured once per run"""
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    gas: int

    def to_dict(self) -> Dict[str, int]:
        return {
            'max_fee_per_gas': self.max_fee_per_gas,
            'max_priority_fee_per_gas': self.max_priority_fee_per_gas,
            'gas': self.gas,
        }


def derive_max_fee(base_fee: Optional[int], priority_fee: int) -> int:
    """Fee cap is base fee plus tip, or just the tip on chains without a base fee"""
    if base_fee is None:
        return int(priority_fee)
    return int(base_fee) + int(priority_fee)


async def prefetch_gas(w3: AsyncWeb3, address: str) -> PrefetchedGas:
    """
    Fetch fee cap, priority fee and gas limit for a zero-value transfer.

    The latest block, the priority fee suggestion and the gas estimate are
    requested concurrently.
    """
    block, priority_fee, gas = await asyncio.gather(
        w3.eth.get_block('latest'),
        w3.eth.max_priority_fee,
        w3.eth.estimate_gas({
            'from': address,
            'to': ZERO_ADDRESS,
            'value': 0,
        }),
    )

    prefetched = PrefetchedGas(
        max_fee_per_gas=derive_max_fee(block.get('baseFeePerGas'), priority_fee),
        max_priority_fee_per_gas=int(priority_fee),
        gas=int(gas),
    )
    logger.info(
        f"Prefetched gas: maxFeePerGas={prefetched.max_fee_per_gas}, "
        f"maxPriorityFeePerGas={prefetched.max_priority_fee_per_gas}, gas={prefetched.gas}")
    return prefetched


async def resolve_starting_nonces(
    clients: Sequence[Any],
    options: PrefetchOptions,
) -> List[int]:
    """
    Return the starting nonce for each client's identity.

    With both nonce and chain id prefetching enabled the identities are
    assumed fresh and get FRESH_ACCOUNT_NONCE. Otherwise the transaction
    count is queried for every identity concurrently.
    """
    if options.nonce and options.chain_id:
        return [FRESH_ACCOUNT_NONCE for _ in clients]

    counts = await asyncio.gather(*[
        c.public.eth.get_transaction_count(c.address) for c in clients
    ])
    nonces = [int(count) for count in counts]
    logger.info(f"Resolved starting nonces from network: {nonces}")
    return nonces
