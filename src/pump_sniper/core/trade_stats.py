import json
import os
from datetime import datetime
from logging import Logger
from time import time
from typing import Any, Callable, Dict, Optional
import pandas as pd
from .types import BotStats, Position, PositionState

TRADE_COLUMNS = [
    'timestamp', 'mint', 'symbol', 'name', 'buy_timestamp', 'sell_timestamp',
    'duration_sec', 'buy_tx', 'sell_tx', 'buy_amount_sol', 'initial_mc_sol',
    'final_mc_sol', 'max_mc_sol', 'final_mc_usd', 'pnl_percent', 'sell_reason',
    'buy_sim_error', 'buy_error', 'sell_error', 'outcome'
]

OUTCOME_SUCCESS = "success"
OUTCOME_FAILED_BUY = "failed_buy"
OUTCOME_FAILED_SELL = "failed_sell"
OUTCOME_PARTIAL = "partial"
OUTCOME_OTHER = "other"


def classify(position: Position) -> str:
    if position.buy_tx_signature and position.state == PositionState.SOLD:
        return OUTCOME_SUCCESS
    if position.buy_error or position.buy_sim_error:
        return OUTCOME_FAILED_BUY
    if position.sell_error:
        return OUTCOME_FAILED_SELL
    return OUTCOME_OTHER


def pnl_percent(position: Position) -> Optional[float]:
    """Market cap based PnL; None without an entry and exit market cap"""
    initial, final = position.initial_market_cap, position.current_market_cap
    if not initial or initial <= 0 or final is None:
        return None
    return (final / initial - 1) * 100


def _iso(ts: Optional[float]) -> Optional[str]:
    return datetime.fromtimestamp(ts).isoformat() if ts else None


class TradeStatsRecorder:
    """Records one row per completed position and keeps running totals"""

    def __init__(
        self,
        csv_path: str,
        logger: Logger,
        buy_amount_sol: float,
        summary_path: str = "data/logs/bot_summary.json",
        db_service: Optional[Any] = None,
        sol_price_provider: Optional[Callable[[], Optional[float]]] = None
    ):
        self.csv_path = csv_path
        self.summary_path = summary_path
        self.logger = logger
        self.buy_amount_sol = buy_amount_sol
        self.db_service = db_service
        self.sol_price_provider = sol_price_provider
        self.stats = BotStats()

    def _initialize_csv(self):
        """Create CSV with headers if it doesn't exist"""
        if not os.path.exists(self.csv_path):
            directory = os.path.dirname(self.csv_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            pd.DataFrame(columns=TRADE_COLUMNS).to_csv(self.csv_path, index=False)

    def build_record(self, position: Position, outcome: str, pnl: Optional[float]) -> Dict[str, Any]:
        now = time()
        sol_price = self.sol_price_provider() if self.sol_price_provider else None
        final_mc = position.current_market_cap
        return {
            'timestamp': datetime.fromtimestamp(now).isoformat(),
            'mint': position.mint,
            'symbol': position.token_symbol,
            'name': position.token_name,
            'buy_timestamp': _iso(position.detected_at),
            'sell_timestamp': _iso(now),
            'duration_sec': round(now - position.detected_at, 3) if position.detected_at else None,
            'buy_tx': position.buy_tx_signature,
            'sell_tx': position.sell_tx_signature,
            'buy_amount_sol': self.buy_amount_sol,
            'initial_mc_sol': position.initial_market_cap,
            'final_mc_sol': final_mc,
            'max_mc_sol': position.max_market_cap,
            'final_mc_usd': final_mc * sol_price if final_mc is not None and sol_price else None,
            'pnl_percent': round(pnl, 2) if pnl is not None else None,
            'sell_reason': position.sell_reason,
            'buy_sim_error': position.buy_sim_error,
            'buy_error': position.buy_error,
            'sell_error': position.sell_error,
            'outcome': outcome,
        }

    def record(self, position: Position) -> Optional[Dict[str, Any]]:
        """Record a completed position once. Never raises."""
        if position.stats_recorded:
            self.logger.debug(f"Trade stats for {position.mint} already recorded")
            return None
        position.stats_recorded = True
        try:
            outcome = classify(position)
            pnl = pnl_percent(position) if outcome == OUTCOME_SUCCESS else None

            self.stats.total_trades += 1
            if outcome == OUTCOME_SUCCESS:
                self.stats.successful_trades += 1
                if pnl is not None:
                    self.stats.total_pnl_percent += pnl
            elif outcome == OUTCOME_FAILED_BUY:
                self.stats.failed_buys += 1
            elif outcome == OUTCOME_FAILED_SELL:
                self.stats.failed_sells += 1

            row = self.build_record(position, outcome, pnl)
            self._persist(row)
            self.log_stats()
            return row
        except Exception as e:
            self.logger.error(f"Failed to record trade stats for {position.mint}: {str(e)}")
            return None

    def record_partial(self, position: Position) -> Optional[Dict[str, Any]]:
        """Row for a partial sell on a still-held position; totals are untouched"""
        try:
            row = self.build_record(position, OUTCOME_PARTIAL, pnl_percent(position))
            self._persist(row)
            return row
        except Exception as e:
            self.logger.error(f"Failed to record partial sell for {position.mint}: {str(e)}")
            return None

    def _persist(self, row: Dict[str, Any]):
        try:
            self._initialize_csv()
            df = pd.DataFrame([row], columns=TRADE_COLUMNS)
            df.to_csv(self.csv_path, mode='a', header=False, index=False)
            self.logger.info(f"Recorded {row['outcome']} trade for {row['mint']}")
        except Exception as e:
            self.logger.error(f"Failed to write trade to {self.csv_path}: {str(e)}")

        if self.db_service is not None:
            try:
                self.db_service.save_trade(row)
            except Exception as e:
                self.logger.error(f"Failed to save trade to database: {str(e)}")

    def log_stats(self):
        avg = self.stats.average_pnl_percent
        self.logger.info(
            f"Bot stats: total={self.stats.total_trades}, successful={self.stats.successful_trades}, "
            f"failed_buys={self.stats.failed_buys}, failed_sells={self.stats.failed_sells}, "
            f"avg_pnl={f'{avg:.2f}%' if avg is not None else 'N/A'}"
        )

    def summary(self) -> Dict[str, Any]:
        avg = self.stats.average_pnl_percent
        return {
            'last_run_timestamp': datetime.now().isoformat(),
            'total_trades': self.stats.total_trades,
            'successful_trades': self.stats.successful_trades,
            'failed_buys': self.stats.failed_buys,
            'failed_sells': self.stats.failed_sells,
            'avg_pnl_percent': round(avg, 2) if avg is not None else None,
        }

    def save_summary(self) -> Optional[str]:
        try:
            directory = os.path.dirname(self.summary_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.summary_path, 'w') as f:
                json.dump(self.summary(), f, indent=2)
            self.logger.info(f"Bot summary saved to {self.summary_path}")
            return self.summary_path
        except Exception as e:
            self.logger.error(f"Failed to save bot summary: {str(e)}")
            return None
