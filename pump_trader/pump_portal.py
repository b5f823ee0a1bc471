"""
Trade execution through the PumpPortal trade-local API.

PumpPortal builds an unsigned VersionedTransaction for the requested trade;
it is signed locally with the wallet keypair and submitted to our own RPC
node. The secret key never leaves the process.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp
import base58
from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from .config import ConfigError
from .rpc import SolanaRpcClient

logger = logging.getLogger(__name__)

SOLSCAN_TX_URL = "https://solscan.io/tx/{}"


class TradeExecutionError(Exception):
    """Raised when a buy or sell could not be built, signed, sent or confirmed."""
    pass


def load_keypair(private_key: str) -> Keypair:
    """Decode a base58 secret key into a Keypair."""
    if not private_key:
        raise ConfigError("Wallet private key not configured")
    try:
        return Keypair.from_bytes(base58.b58decode(private_key.strip()))
    except Exception as e:
        raise ConfigError("Invalid wallet private key format. Must be base58 encoded.") from e


class PumpPortalClient:
    """Buys and sells Pump.fun tokens for a single wallet."""

    def __init__(self, config, rpc: SolanaRpcClient, keypair: Optional[Keypair] = None):
        self.config = config
        self.rpc = rpc
        self.api_url = config.pumpportal_api_url
        self._keypair = keypair or load_keypair(config.wallet_private_key)
        self._session: Optional[aiohttp.ClientSession] = None
        logger.info(f"Wallet loaded: {self.wallet_address}")

    @property
    def wallet_address(self) -> str:
        return str(self._keypair.pubkey())

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout)
            )
        return self._session

    async def close(self):
        """Close the client session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def _request_transaction(self, payload: Dict[str, Any]) -> bytes:
        """POST the trade request and return the serialized unsigned transaction."""
        session = await self._get_session()
        try:
            async with session.post(self.api_url, json=payload) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise TradeExecutionError(f"PumpPortal error: {resp.status} - {text[:200]}")
                return await resp.read()
        except aiohttp.ClientError as e:
            raise TradeExecutionError(f"PumpPortal request failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise TradeExecutionError("PumpPortal request timed out") from e

    def sign_transaction(self, tx_bytes: bytes) -> bytes:
        """Sign a serialized VersionedTransaction with the wallet keypair."""
        tx = VersionedTransaction.from_bytes(tx_bytes)
        signed_tx = VersionedTransaction(tx.message, [self._keypair])
        return bytes(signed_tx)

    async def _execute(self, action: str, payload: Dict[str, Any]) -> str:
        tx_bytes = await self._request_transaction(payload)
        signed = self.sign_transaction(tx_bytes)

        signature = await self.rpc.send_transaction(signed, skip_preflight=True, max_retries=3)
        logger.info(f"{action.capitalize()} transaction sent: {signature}")

        await self.rpc.confirm_transaction(
            signature,
            commitment='confirmed',
            timeout=self.config.tx_confirm_timeout,
        )
        logger.info(f"{action.capitalize()} confirmed: {SOLSCAN_TX_URL.format(signature)}")
        return signature

    async def buy_token(self, token_mint: str, amount_sol: float) -> str:
        """
        Buy `amount_sol` SOL worth of a token.

        Returns:
            Confirmed transaction signature

        Raises:
            TradeExecutionError: any stage of the trade failed
        """
        logger.info(f"Buying {amount_sol} SOL worth of {token_mint}...")
        payload = {
            'publicKey': self.wallet_address,
            'action': 'buy',
            'mint': token_mint,
            'denominatedInSol': 'true',
            'amount': amount_sol,
            'slippage': self.config.buy_slippage,
            'priorityFee': self.config.priority_fee,
            'pool': 'pump',
        }

        try:
            return await self._execute('buy', payload)
        except Exception as e:
            logger.error(f"Buy failed: {e}")
            raise TradeExecutionError(f"Failed to buy token: {e}") from e

    async def sell_token(self, token_mint: str, percentage: float = 100) -> str:
        """
        Sell a percentage of the wallet's holding of a token.

        Raises:
            TradeExecutionError: any stage of the trade failed
        """
        logger.info(f"Selling {percentage}% of {token_mint}...")
        amount = '100%' if percentage == 100 else f"{percentage:g}%"
        payload = {
            'publicKey': self.wallet_address,
            'action': 'sell',
            'mint': token_mint,
            'denominatedInSol': 'false',
            'amount': amount,
            'slippage': self.config.sell_slippage,
            'priorityFee': self.config.priority_fee,
            'pool': 'pump',
        }

        try:
            return await self._execute('sell', payload)
        except Exception as e:
            logger.error(f"Sell failed: {e}")
            raise TradeExecutionError(f"Failed to sell token: {e}") from e

    async def get_sol_balance(self) -> float:
        return await self.rpc.get_balance(self.wallet_address)

    async def get_token_balance(self, token_mint: str) -> float:
        """Token balance of the wallet; 0 when it cannot be read."""
        try:
            return await self.rpc.get_token_balance(self.wallet_address, token_mint)
        except Exception as e:
            logger.error(f"Failed to get token balance: {e}")
            return 0.0
