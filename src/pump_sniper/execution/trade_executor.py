from dataclasses import dataclass, field
from logging import Logger
from time import time
from typing import Callable, List, Optional
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.instruction import Instruction
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed, Processed
from pump_sniper.core.types import CachedValue, Position, PositionState, TokenBalance
from pump_sniper.core.position_manager import PositionManager
from pump_sniper.core.trade_stats import TradeStatsRecorder
from pump_sniper.utils.chain_tracker import BlockhashProvider
from pump_sniper.utils.confirmation import ConfirmationPoller, DEFAULT_CONFIRMATION_TIMEOUT
from pump_sniper.utils.config import TrackingParameters
from .bonding_curve import CurveClient
from .instructions import Instructions, TransactionBuildError, get_associated_bonding_curve
from .jito_client import BundleSubmitter
from .pricing import ZeroReservesError, calculate_buy_quote, calculate_sell_quote, partial_amount


@dataclass
class TradingContext:
    """Everything a trade attempt needs, shared across positions"""
    wallet: Keypair
    client: AsyncClient
    bundle_submitter: BundleSubmitter
    blockhash_provider: BlockhashProvider
    stats_recorder: TradeStatsRecorder
    position_manager: PositionManager
    tip_account: Pubkey
    buy_amount_lamports: int
    slippage_bps: int
    tip_lamports: int
    compute_units: int
    priority_fee_micro_lamports: int = 0
    tracking: TrackingParameters = field(default_factory=TrackingParameters)


class TradeExecutor:
    def __init__(
        self,
        context: TradingContext,
        curve_client: CurveClient,
        logger: Logger,
        clock: Callable[[], float] = time
    ):
        self.context = context
        self.curve_client = curve_client
        self.logger = logger
        self.clock = clock
        self.instructions = Instructions(context.wallet)
        self.poller = ConfirmationPoller(context.client, logger)

    def _budget_instructions(self) -> List[Instruction]:
        return self.instructions.create_compute_budget_instructions(
            compute_unit_limit=self.context.compute_units,
            priority_fee=self.context.priority_fee_micro_lamports
        )

    async def _submit(self, instructions: List[Instruction]) -> str:
        """Build, sign and bundle a transaction; returns its signature"""
        try:
            blockhash = await self.context.blockhash_provider.get_latest_blockhash()
        except Exception as e:
            raise TransactionBuildError(f"Failed to get latest blockhash: {str(e)}") from e
        tx = self.instructions.build_transaction(instructions, blockhash)
        signature = str(tx.signatures[0])
        bundle_id = await self.context.bundle_submitter.send_bundle([tx])
        self.logger.info(f"Bundle {bundle_id} submitted for transaction {signature}")
        return signature

    async def _describe_failure(self, signature: str) -> str:
        """Best-effort on-chain error for a transaction that did not confirm"""
        try:
            response = await self.context.client.get_transaction(
                Signature.from_string(signature),
                commitment=Confirmed,
                max_supported_transaction_version=0
            )
            value = response.value
            if value is None or value.transaction.meta is None:
                return "N/A"
            return str(value.transaction.meta.err)
        except Exception as e:
            self.logger.error(f"Failed to get transaction details for {signature}: {str(e)}")
            return "failed to get details"

    # Buy

    def _fail_buy(self, position: Position, error: str) -> bool:
        self.logger.error(f"Buy failed for {position.mint}: {error}")
        position.buy_error = error
        position.transition_to(PositionState.FAILED)
        self.context.stats_recorder.record(position)
        self.context.position_manager.release(position)
        return False

    async def buy(self, position: Position) -> bool:
        """Buy into a freshly created token.

        Expects the position in BUYING. On success the position is TRACKING
        with the buy signature and token balance recorded. Every failure
        path marks it FAILED, records stats and releases the slot.
        """
        mint = Pubkey.from_string(position.mint)
        bonding_curve = Pubkey.from_string(position.bonding_curve)
        associated_bonding_curve = get_associated_bonding_curve(mint, bonding_curve)
        user_ata = self.instructions.get_user_ata(mint)
        self.logger.debug(f"Buying {position.mint}: ATA {user_ata}, bonding curve {bonding_curve}")

        curve, fetch_error = await self.curve_client.fetch_curve_with_retry(bonding_curve, Processed)
        if curve is None:
            return self._fail_buy(
                position, f"Failed to fetch bonding curve: {fetch_error or 'retries exceeded'}"
            )

        try:
            quote = calculate_buy_quote(
                curve.virtual_sol_reserves,
                curve.virtual_token_reserves,
                self.context.buy_amount_lamports,
                self.context.slippage_bps
            )
        except ZeroReservesError as e:
            return self._fail_buy(position, str(e))

        self.logger.info(
            f"Buy quote for {position.mint}: expected={quote.expected_tokens}, "
            f"min={quote.min_tokens}, max_sol={quote.max_sol_cost}, slippage={self.context.slippage_bps}bps"
        )

        try:
            instructions = self._budget_instructions() + [
                self.instructions.create_ata_idempotent_instruction(mint),
                self.instructions.create_buy_instruction(
                    mint=mint,
                    bonding_curve=bonding_curve,
                    associated_bonding_curve=associated_bonding_curve,
                    user_ata=user_ata,
                    token_amount=quote.min_tokens,
                    max_sol_amount=quote.max_sol_cost
                ),
                self.instructions.create_tip_instruction(self.context.tip_account, self.context.tip_lamports),
            ]
        except Exception as e:
            return self._fail_buy(position, f"Failed to build buy instructions: {str(e)}")

        try:
            signature = await self._submit(instructions)
        except TransactionBuildError as e:
            return self._fail_buy(position, str(e))
        except Exception as e:
            return self._fail_buy(position, f"Jito bundle error: {str(e)}")

        self.logger.info(f"Waiting for buy confirmation of {signature}")
        confirmed = await self.poller.wait(signature, Processed, DEFAULT_CONFIRMATION_TIMEOUT)
        if not confirmed:
            details = await self._describe_failure(signature)
            return self._fail_buy(position, f"Confirmation timeout ('processed'). Details: {details}")

        position.buy_tx_signature = signature
        position.transition_to(PositionState.TRACKING)

        balance = await self.curve_client.fetch_token_balance_with_retry(user_ata, Processed)
        position.tokens_held = balance
        if balance.is_known:
            position.cached_balance = CachedValue(balance, self.clock())

        self.logger.info(f"Buy successful for {position.mint}: {signature}, tokens held {balance}")
        return True

    # Sell

    def _abort_sell(self, position: Position, error: Optional[str]) -> bool:
        if error:
            self.logger.error(f"Sell aborted for {position.mint}: {error}")
            position.sell_error = error
        position.transition_to(PositionState.TRACKING)
        return False

    def _complete_sale(self, position: Position) -> None:
        position.tokens_held = TokenBalance.known(0)
        position.transition_to(PositionState.SOLD)
        self.context.stats_recorder.record(position)
        self.context.position_manager.release(position)

    async def sell(self, position: Position, sell_pct: Optional[float] = None, is_shutdown: bool = False) -> bool:
        """Sell from the cached balance using the cached curve.

        Args:
            position: Position in TRACKING or already moved to SELLING
            sell_pct: Percent of the balance to sell, None for everything
            is_shutdown: Caps the confirmation wait during shutdown

        Returns:
            True when the sale confirmed (or there was nothing to sell)
        """
        if position.state == PositionState.TRACKING:
            position.transition_to(PositionState.SELLING)
        elif position.state != PositionState.SELLING:
            self.logger.warning(f"Cannot sell {position.mint} in state {position.state.value}")
            return False

        self.logger.info(
            f"Selling {position.mint}: pct={sell_pct if sell_pct is not None else 'ALL'}, "
            f"reason={position.sell_reason}, shutdown={is_shutdown}"
        )

        cached_balance = position.cached_balance
        cached_curve = position.cached_curve
        if cached_balance is None or cached_curve is None or not cached_balance.value.is_known:
            return self._abort_sell(position, "Missing cached balance or curve data")

        now = self.clock()
        tracking = self.context.tracking
        max_age = tracking.curve_max_staleness_multiplier * tracking.interval_sec
        age = max(cached_curve.age(now), cached_balance.age(now))
        if age > max_age:
            if tracking.abort_on_stale_cache:
                return self._abort_sell(position, f"Cached data is stale ({age:.3f}s > {max_age:.3f}s)")
            self.logger.warning(f"Selling {position.mint} on stale cached data ({age:.3f}s old)")

        balance = cached_balance.value.amount
        if balance == 0:
            self.logger.info(f"Cached balance for {position.mint} is zero, nothing to sell")
            self._complete_sale(position)
            return True

        full_sale = sell_pct is None or sell_pct >= 100
        amount = balance if full_sale else partial_amount(balance, sell_pct)
        if amount <= 0:
            self.logger.warning(f"Computed sell amount for {position.mint} is zero, skipping")
            return self._abort_sell(position, None)

        curve = cached_curve.value
        try:
            quote = calculate_sell_quote(
                curve.virtual_sol_reserves,
                curve.virtual_token_reserves,
                amount,
                self.context.slippage_bps
            )
        except ZeroReservesError as e:
            return self._abort_sell(position, f"Zero reserves (sell): {str(e)}")

        self.logger.info(
            f"Sell quote for {position.mint}: amount={amount}, expected_sol={quote.expected_sol}, "
            f"min_sol={quote.min_sol}"
        )

        mint = Pubkey.from_string(position.mint)
        bonding_curve = Pubkey.from_string(position.bonding_curve)
        try:
            instructions = self._budget_instructions() + [
                self.instructions.create_sell_instruction(
                    mint=mint,
                    bonding_curve=bonding_curve,
                    associated_bonding_curve=get_associated_bonding_curve(mint, bonding_curve),
                    user_ata=self.instructions.get_user_ata(mint),
                    token_amount=amount,
                    min_sol_output=quote.min_sol
                ),
                self.instructions.create_tip_instruction(self.context.tip_account, self.context.tip_lamports),
            ]
        except Exception as e:
            return self._abort_sell(position, f"Failed to build sell instructions: {str(e)}")

        try:
            signature = await self._submit(instructions)
        except TransactionBuildError as e:
            return self._abort_sell(position, str(e))
        except Exception as e:
            return self._abort_sell(position, f"Jito sell bundle error: {str(e)}")

        confirmed = await self.poller.wait(
            signature, Processed, DEFAULT_CONFIRMATION_TIMEOUT, is_shutdown=is_shutdown
        )
        if not confirmed:
            details = await self._describe_failure(signature)
            return self._abort_sell(
                position, f"Sell confirmation timeout ('processed'). Details: {details}"
            )

        position.sell_tx_signature = signature
        if full_sale:
            self.logger.info(f"Sold all of {position.mint}: {signature}")
            self._complete_sale(position)
            return True

        remaining = balance - amount
        position.tokens_held = TokenBalance.known(remaining)
        position.cached_balance = CachedValue(position.tokens_held, self.clock())
        position.transition_to(PositionState.TRACKING)
        self.context.stats_recorder.record_partial(position)
        self.logger.info(f"Partial sell of {position.mint} confirmed: {signature}, {remaining} tokens left")
        return True
