"""
Call Builder - encodes a validated intent as a market contract call.

Each intent becomes one ``buyShares(bool isYes, uint256 amount)`` call against
the market contract, with the amount in base units of the settlement asset.
"""
from decimal import Decimal

from eth_abi import encode
from web3 import Web3

from swipebatch.domain.intent import CallDescriptor, Side, validate_stake
from swipebatch.domain.market import SettlementTarget

BUY_SHARES_SIGNATURE = "buyShares(bool,uint256)"
BUY_SHARES_SELECTOR = bytes(Web3.keccak(text=BUY_SHARES_SIGNATURE)[:4])

USDC_DECIMALS = 6


class CallBuilder:
    """Pure transformation from (target, side, stake) to a call descriptor."""

    def __init__(self, asset_decimals: int = USDC_DECIMALS):
        self._decimals = asset_decimals

    @property
    def asset_decimals(self) -> int:
        return self._decimals

    def to_base_units(self, stake: Decimal) -> int:
        """Convert a decimal stake to integer base units of the asset."""
        stake = validate_stake(stake, self._decimals)
        return int(stake.scaleb(self._decimals))

    def build(self, target: SettlementTarget, side: Side, stake: Decimal) -> CallDescriptor:
        """Build the contract call for one intent.

        Raises:
            InvalidIntentError: If the stake is non-positive or too precise.
        """
        amount = self.to_base_units(stake)
        args = encode(["bool", "uint256"], [side is Side.YES, amount])
        return CallDescriptor(
            to=Web3.to_checksum_address(target.contract_address),
            data="0x" + (BUY_SHARES_SELECTOR + args).hex(),
            value=0,
        )
