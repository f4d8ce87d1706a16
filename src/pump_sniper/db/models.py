from sqlalchemy import Column, Integer, String, DateTime, Float, func
from .database import Base


class Trade(Base):
    __tablename__ = 'trades'

    id = Column(Integer, primary_key=True)
    run_id = Column(String, nullable=False)
    recorded_at = Column(DateTime, nullable=False)
    mint = Column(String, nullable=False, index=True)
    symbol = Column(String)
    name = Column(String)
    outcome = Column(String, nullable=False)     # success / failed_buy / failed_sell / partial / other
    buy_time = Column(DateTime)
    sell_time = Column(DateTime)
    duration_sec = Column(Float)
    buy_tx = Column(String)
    sell_tx = Column(String)
    buy_amount_sol = Column(Float)
    initial_mc_sol = Column(Float)
    final_mc_sol = Column(Float)
    max_mc_sol = Column(Float)
    final_mc_usd = Column(Float)
    pnl_percent = Column(Float)
    sell_reason = Column(String)
    buy_sim_error = Column(String)
    buy_error = Column(String)
    sell_error = Column(String)
    created_at = Column(DateTime, server_default=func.now())
