import argparse
import sys
from typing import Dict, Optional
import numpy as np
import pandas as pd

# Outcomes that close a position; partial rows describe a still-held position
CLOSED_OUTCOMES = ('success', 'failed_buy', 'failed_sell', 'other')


class TradeResultsAnalyzer:
    def __init__(self, trades_file: str):
        """Initialize with path to the bot's trades CSV file"""
        self.df = pd.read_csv(trades_file)
        for column in ('timestamp', 'buy_timestamp', 'sell_timestamp'):
            self.df[column] = pd.to_datetime(self.df[column], errors='coerce')

        for column in ('pnl_percent', 'duration_sec', 'initial_mc_sol', 'final_mc_sol', 'max_mc_sol'):
            self.df[column] = pd.to_numeric(self.df[column], errors='coerce')

        self.df['entry_hour'] = self.df['buy_timestamp'].dt.hour
        self.df['max_mc_multiple'] = self.df['max_mc_sol'] / self.df['initial_mc_sol'].replace(0, np.nan)

        self.define_peak_buckets()

    def define_peak_buckets(self):
        """Bucket positions by how far the market cap ran above entry"""
        multiple = self.df['max_mc_multiple']

        conditions = [
            multiple < 1.0,
            (multiple >= 1.0) & (multiple < 1.5),
            (multiple >= 1.5) & (multiple < 2.0),
            (multiple >= 2.0) & (multiple < 5.0),
            multiple >= 5.0
        ]

        buckets = [
            'never_up',
            'under_tp1',
            'tp1_to_tp2',
            'two_to_five_x',
            'moonshot'
        ]

        self.df['peak_bucket'] = np.select(conditions, buckets, default='unknown')

    @property
    def closed(self) -> pd.DataFrame:
        return self.df[self.df['outcome'].isin(CLOSED_OUTCOMES)]

    @property
    def successful(self) -> pd.DataFrame:
        return self.df[self.df['outcome'] == 'success']

    def analyze_sell_reasons(self) -> Dict:
        """Performance per exit rule over successful sells"""
        reasons = {}
        trades = self.successful
        for reason, group in trades.groupby('sell_reason'):
            pnl = group['pnl_percent']
            reasons[reason] = {
                'trade_count': len(group),
                'win_rate': (pnl > 0).mean() if len(group) > 0 else 0,
                'avg_pnl_percent': pnl.mean(),
                'median_pnl_percent': pnl.median(),
                'avg_duration_sec': group['duration_sec'].mean(),
            }
        return reasons

    def analyze_trades(self) -> Dict:
        """Analyze trade results and return summary statistics"""
        closed = self.closed
        trades = self.successful
        pnl = trades['pnl_percent'].dropna()
        wins = pnl[pnl > 0]
        losses = pnl[pnl <= 0]

        summary_stats = {
            'Overall_Statistics': {
                'total_positions': len(closed),
                'successful_trades': len(trades),
                'partial_sells': int((self.df['outcome'] == 'partial').sum()),
                'win_rate': len(wins) / len(pnl) if len(pnl) > 0 else 0,
                'avg_pnl_percent': pnl.mean() if not pnl.empty else 0,
                'median_pnl_percent': pnl.median() if not pnl.empty else 0,
                'largest_win_percent': pnl.max() if not pnl.empty else 0,
                'largest_loss_percent': pnl.min() if not pnl.empty else 0,
                'avg_duration_sec': trades['duration_sec'].mean() if not trades.empty else 0,
                'profit_factor': abs(wins.sum() / losses.sum()) if losses.sum() != 0 else float('inf')
            },
            'Outcome_Counts': closed['outcome'].value_counts().to_dict(),
            'Sell_Reasons': self.analyze_sell_reasons(),
            'Peak_Buckets': self.df.loc[self.df['outcome'] != 'partial', 'peak_bucket'].value_counts().to_dict(),
            'Hourly_Performance': {
                'best_hours': trades.groupby('entry_hour')['pnl_percent'].mean().nlargest(3).to_dict(),
                'worst_hours': trades.groupby('entry_hour')['pnl_percent'].mean().nsmallest(3).to_dict(),
                'most_active_hours': closed['entry_hour'].value_counts().head(3).to_dict(),
            },
            'Errors': {
                'buy_errors': closed['buy_error'].dropna().value_counts().head(5).to_dict(),
                'sell_errors': closed['sell_error'].dropna().value_counts().head(5).to_dict(),
            }
        }

        return summary_stats

    def export_analysis(self, output_file: str):
        """Export analysis results to CSV"""
        summary_stats = self.analyze_trades()

        # Flatten the nested dictionary for CSV export
        flat_data = {}
        for category, stats in summary_stats.items():
            for metric, value in stats.items():
                flat_data[f'{category.lower()}_{metric}'] = value

        summary_df = pd.DataFrame([flat_data])
        summary_df.to_csv(output_file, index=False)


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Summarize the sniper's trade log")
    parser.add_argument("trades_csv", nargs="?", default="data/trades/trades.csv")
    parser.add_argument("--export", help="write the flattened summary to this CSV")
    args = parser.parse_args(argv)

    try:
        analyzer = TradeResultsAnalyzer(args.trades_csv)
    except (OSError, pd.errors.EmptyDataError, KeyError) as e:
        print(f"Could not load {args.trades_csv}: {str(e)}", file=sys.stderr)
        return 1

    stats = analyzer.analyze_trades()
    for category, metrics in stats.items():
        print(f"\n{category}:")
        for metric, value in metrics.items():
            print(f"  {metric}: {value}")

    if args.export:
        analyzer.export_analysis(args.export)
        print(f"\nSummary exported to {args.export}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
