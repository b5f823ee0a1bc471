"""
Solana JSON-RPC client.

Thin aiohttp wrapper over the handful of RPC methods the trader needs:
balances, mint authorities, holder distribution, DAS asset metadata,
transaction submission and confirmation.
"""

import asyncio
import base64
import logging
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000


class RpcError(Exception):
    """Raised when an RPC call fails or returns an error object."""
    pass


class TransactionFailedError(RpcError):
    """The transaction landed but its execution failed on-chain."""
    pass


class SolanaRpcClient:
    """Async JSON-RPC client for a Solana node (Helius, Alchemy or public)."""

    CONFIRM_POLL_INTERVAL = 0.5  # seconds between getSignatureStatuses polls

    def __init__(self, rpc_url: str, timeout: float = 30.0):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def close(self):
        """Close the client session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def call(self, method: str, params: Any = None) -> Any:
        """
        Execute a JSON-RPC call and return its `result`.

        Raises:
            RpcError: transport failure, non-200 status or an RPC error object
        """
        session = await self._get_session()
        payload = {
            'jsonrpc': '2.0',
            'id': 1,
            'method': method,
            'params': params if params is not None else [],
        }

        try:
            async with session.post(self.rpc_url, json=payload) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise RpcError(f"{method} failed: HTTP {resp.status} - {text[:200]}")
                data = await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise RpcError(f"{method} request failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise RpcError(f"{method} timed out") from e

        error = data.get('error')
        if error:
            message = error.get('message', 'Unknown error') if isinstance(error, dict) else str(error)
            raise RpcError(f"{method} error: {message}")

        return data.get('result')

    async def get_balance(self, address: str) -> float:
        """Get SOL balance for an address."""
        result = await self.call('getBalance', [address])
        lamports = (result or {}).get('value', 0)
        return lamports / LAMPORTS_PER_SOL

    async def get_mint_authorities(self, mint: str) -> Tuple[bool, bool]:
        """
        Check whether mint and freeze authorities are still set.

        Returns:
            Tuple of (can_mint, can_freeze). An account that is missing or not
            jsonParsed reports (False, False).
        """
        result = await self.call('getAccountInfo', [mint, {'encoding': 'jsonParsed'}])
        value = (result or {}).get('value')
        if not value:
            return False, False

        data = value.get('data')
        if not isinstance(data, dict) or 'parsed' not in data:
            return False, False

        info = data['parsed'].get('info', {})
        return info.get('mintAuthority') is not None, info.get('freezeAuthority') is not None

    async def get_token_largest_accounts(self, mint: str) -> List[Dict[str, Any]]:
        """Largest token accounts for a mint (at most 20, largest first)."""
        result = await self.call('getTokenLargestAccounts', [mint])
        return (result or {}).get('value') or []

    async def get_asset(self, mint: str) -> Dict[str, Any]:
        """DAS getAsset (Helius). Not every RPC provider supports it."""
        result = await self.call('getAsset', {'id': mint})
        return result or {}

    async def get_token_balance(self, owner: str, mint: str) -> float:
        """UI token balance held by owner across all its accounts for mint."""
        result = await self.call('getTokenAccountsByOwner', [
            owner,
            {'mint': mint},
            {'encoding': 'jsonParsed'},
        ])

        total = 0.0
        for account in (result or {}).get('value') or []:
            try:
                amount = account['account']['data']['parsed']['info']['tokenAmount']
                total += float(amount.get('uiAmount') or 0)
            except (KeyError, TypeError, ValueError):
                continue
        return total

    async def send_transaction(
        self,
        transaction_bytes: bytes,
        skip_preflight: bool = True,
        max_retries: int = 3,
    ) -> str:
        """Submit a signed transaction and return its signature."""
        signature = await self.call('sendTransaction', [
            base64.b64encode(transaction_bytes).decode(),
            {
                'encoding': 'base64',
                'skipPreflight': skip_preflight,
                'preflightCommitment': 'confirmed',
                'maxRetries': max_retries,
            }
        ])
        if not signature:
            raise RpcError("sendTransaction returned no signature")
        return signature

    async def confirm_transaction(
        self,
        signature: str,
        commitment: str = 'confirmed',
        timeout: float = 60.0,
    ) -> str:
        """
        Wait until the transaction reaches the requested commitment.

        Returns:
            The confirmation status reached ('confirmed' or 'finalized')

        Raises:
            RpcError: the transaction failed on-chain or the wait timed out
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        accepted = {
            'processed': ('processed', 'confirmed', 'finalized'),
            'confirmed': ('confirmed', 'finalized'),
            'finalized': ('finalized',),
        }[commitment]

        while loop.time() < deadline:
            try:
                result = await self.call('getSignatureStatuses', [
                    [signature],
                    {'searchTransactionHistory': True},
                ])
                statuses = (result or {}).get('value') or []
                status = statuses[0] if statuses else None

                if status:
                    if status.get('err'):
                        raise TransactionFailedError(f"Transaction failed: {status['err']}")
                    conf_status = status.get('confirmationStatus') or ''
                    if conf_status in accepted:
                        return conf_status
            except TransactionFailedError:
                raise
            except RpcError as e:
                logger.warning(f"Error checking tx status: {e}")

            await asyncio.sleep(self.CONFIRM_POLL_INTERVAL)

        raise RpcError(f"Transaction confirmation timeout after {timeout:.0f}s: {signature}")
