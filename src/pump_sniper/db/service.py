from datetime import datetime
from typing import Any, Dict, List
from .database import DatabaseConnection
from .models import Trade
import logging


class DatabaseService:
    def __init__(self, db_url: str, run_id: str):
        self.db = DatabaseConnection(db_url)
        self.db.init_db()
        self.logger = logging.getLogger(__name__)
        self.run_id = run_id

    def save_trade(self, record: Dict[str, Any]) -> int:
        """Persist one trade record row"""
        session = self.db.get_session()
        try:
            trade = Trade(
                run_id=self.run_id,
                recorded_at=_parse_time(record.get("timestamp")) or datetime.now(),
                mint=record["mint"],
                symbol=record.get("symbol"),
                name=record.get("name"),
                outcome=record.get("outcome", "other"),
                buy_time=_parse_time(record.get("buy_timestamp")),
                sell_time=_parse_time(record.get("sell_timestamp")),
                duration_sec=record.get("duration_sec"),
                buy_tx=record.get("buy_tx"),
                sell_tx=record.get("sell_tx"),
                buy_amount_sol=record.get("buy_amount_sol"),
                initial_mc_sol=record.get("initial_mc_sol"),
                final_mc_sol=record.get("final_mc_sol"),
                max_mc_sol=record.get("max_mc_sol"),
                final_mc_usd=record.get("final_mc_usd"),
                pnl_percent=record.get("pnl_percent"),
                sell_reason=record.get("sell_reason"),
                buy_sim_error=record.get("buy_sim_error"),
                buy_error=record.get("buy_error"),
                sell_error=record.get("sell_error")
            )
            session.add(trade)
            session.commit()
            return trade.id
        except Exception as e:
            self.logger.error(f"Error saving trade: {str(e)}")
            session.rollback()
            raise
        finally:
            session.close()

    def get_trades(self) -> List[Trade]:
        """Get all trades recorded by this run"""
        session = self.db.get_session()
        try:
            return session.query(Trade).filter(Trade.run_id == self.run_id).all()
        finally:
            session.close()

    def close(self):
        self.db.close()


def _parse_time(value: Any):
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))
