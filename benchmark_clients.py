"""
Client construction for benchmark flows

Each flow gets its own identity, a wallet client (used to prepare and sign)
and a public client (used to submit and read receipts). Both clients run on
instrumented providers that report into the same call log.
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.providers.async_base import AsyncBaseProvider

from instrumented_transport import CallObserver, InstrumentedProvider

logger = logging.getLogger(__name__)

# Keys that only zkSync EIP-712 transactions understand
PAYMASTER_KEYS = ('paymaster', 'paymasterInput')

TransportFactory = Callable[[], AsyncBaseProvider]


class LocalSigner:
    """
    Signs EIP-1559 transactions with an eth_account LocalAccount.

    Requests carrying paymaster fields are rejected; pass a signer that
    produces zkSync EIP-712 transactions to use a paymaster.
    """

    def __init__(self, account: LocalAccount):
        self.account = account

    @property
    def address(self) -> str:
        return self.account.address

    async def sign_transaction(self, request: Dict[str, Any]) -> str:
        paymaster_keys = [key for key in PAYMASTER_KEYS if request.get(key) is not None]
        if paymaster_keys:
            raise ValueError(
                f"Cannot sign {paymaster_keys}: sponsored transactions need a zkSync EIP-712 "
                f"signer, LocalSigner only produces EIP-1559 transactions")
        signed = self.account.sign_transaction(request)
        return Web3.to_hex(signed.raw_transaction)


def http_transport_factory(rpc_url: str) -> TransportFactory:
    """Return a factory creating a fresh HTTP provider for ``rpc_url``"""
    def _factory() -> AsyncBaseProvider:
        return AsyncHTTPProvider(rpc_url)
    return _factory


def build_web3(provider: AsyncBaseProvider) -> AsyncWeb3:
    # No middleware: the call log must contain exactly the calls we issue
    return AsyncWeb3(provider, middleware=[])


@dataclass
class BenchmarkClients:
    """Wallet and public clients bound to one signer"""
    wallet: AsyncWeb3
    public: AsyncWeb3
    signer: Any
    chain_id: int
    providers: List[InstrumentedProvider] = field(default_factory=list)

    @property
    def address(self) -> str:
        return self.signer.address

    async def close(self):
        for provider in self.providers:
            await provider.disconnect()


def create_benchmark_clients(
    signer,
    transport_factory: TransportFactory,
    chain_id: int,
    on_complete: Optional[CallObserver] = None,
    on_start: Optional[CallObserver] = None,
    prefetch_chain_id: bool = False,
) -> BenchmarkClients:
    """
    Create the client pair for one flow.

    Only the wallet client short-circuits eth_chainId; the public client
    always forwards to the network.
    """
    logger.debug(f"Creating clients for {signer.address} (prefetch_chain_id={prefetch_chain_id})")
    sequence = itertools.count(1)

    wallet_provider = InstrumentedProvider(
        transport_factory(),
        on_complete=on_complete,
        on_start=on_start,
        prefetch_chain_id=prefetch_chain_id,
        chain_id=chain_id,
        sequence=sequence,
    )
    public_provider = InstrumentedProvider(
        transport_factory(),
        on_complete=on_complete,
        on_start=on_start,
        sequence=sequence,
    )

    return BenchmarkClients(
        wallet=build_web3(wallet_provider),
        public=build_web3(public_provider),
        signer=signer,
        chain_id=chain_id,
        providers=[wallet_provider, public_provider],
    )


def create_setup_client(
    signer,
    transport_factory: TransportFactory,
    chain_id: int,
    prefetch_chain_id: bool = False,
) -> BenchmarkClients:
    """Clients whose calls are never logged (pre-run setup cost)"""
    return create_benchmark_clients(
        signer,
        transport_factory,
        chain_id,
        prefetch_chain_id=prefetch_chain_id,
    )
