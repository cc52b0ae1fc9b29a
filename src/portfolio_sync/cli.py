"""
Command line interface for the portfolio sync service.

Usage:
    portfolio-sync login --api-key KEY --user-key KEY
    portfolio-sync login --env-file .env
    portfolio-sync show
    portfolio-sync refresh
    portfolio-sync trades --days 30
    portfolio-sync candles --ids 1001,1002 --count 30
    portfolio-sync colors
    portfolio-sync watchlists
    portfolio-sync logout

Exit codes: 0 on success, 1 when the sync or a primary request fails,
2 when credentials are missing.
"""

import argparse
import asyncio
import sys
from typing import List, Optional, Sequence

from colorama import Fore, Style

from .api import PortfolioFetcher, TradingApiClient, fetch_trade_history
from .colors import group_by_symbol, symbol_color
from .config import PortfolioSyncConfig, load_config, load_env_keys
from .exceptions import MissingCredentialsError, PortfolioSyncError
from .models.entities import EnrichedTrade, PortfolioData
from .sync import PortfolioStore
from .utils import LogCategory, get_logger, setup_logging, shutdown_logging

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_MISSING_CREDENTIALS = 2


def _signed(value: Optional[float], suffix: str = '') -> str:
    if value is None:
        return '-'
    color = Fore.GREEN if value >= 0 else Fore.RED
    return f"{color}{value:+,.2f}{suffix}{Style.RESET_ALL}"


def format_portfolio(portfolio: PortfolioData) -> str:
    lines = [f"{'SYMBOL':<14}{'DIR':<6}{'UNITS':>12}{'OPEN':>12}{'CURRENT':>12}{'AMOUNT':>14}  P&L"]
    for p in portfolio.positions:
        current = f"{p.current_rate:,.4f}" if p.current_rate is not None else '-'
        lines.append(
            f"{(p.symbol or f'#{p.instrument_id}'):<14}"
            f"{('LONG' if p.is_buy else 'SHORT'):<6}"
            f"{p.units:>12,.4f}{p.open_rate:>12,.4f}{current:>12}"
            f"{p.amount:>14,.2f}  {_signed(p.pnl)} ({_signed(p.pnl_percent, '%')})"
        )
    lines.append('')
    lines.append(f"Invested: {portfolio.total_invested:,.2f}   "
                 f"P&L: {_signed(portfolio.total_pnl)}   Credit: {portfolio.credit:,.2f}")
    return '\n'.join(lines)


def format_trades(trades: Sequence[EnrichedTrade]) -> str:
    lines = [f"{'CLOSED':<22}{'SYMBOL':<14}{'DIR':<6}{'INVESTED':>14}  NET PROFIT"]
    ordered = sorted(trades, key=lambda t: t.close_timestamp, reverse=True)
    for t in ordered:
        lines.append(
            f"{t.close_timestamp[:19]:<22}{(t.symbol or f'#{t.instrument_id}'):<14}"
            f"{('LONG' if t.is_buy else 'SHORT'):<6}{t.investment:>14,.2f}  {_signed(t.net_profit)}"
        )
    lines.append('')
    lines.append(f"{len(trades)} trades, net {_signed(sum(t.net_profit for t in trades))}")
    return '\n'.join(lines)


def _parse_ids(raw: str) -> List[int]:
    try:
        return [int(part) for part in raw.split(',') if part.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"instrument ids must be comma-separated integers: {raw}")


class CliRunner:
    """Runs one sub-command against a PortfolioStore."""

    def __init__(self, config: PortfolioSyncConfig):
        self.config = config
        self.store = PortfolioStore(config)

    async def run(self, args: argparse.Namespace) -> int:
        handler = getattr(self, f"cmd_{args.command}")
        try:
            return await handler(args)
        except MissingCredentialsError as e:
            print(f"{e}. Run 'portfolio-sync login' first.", file=sys.stderr)
            return EXIT_MISSING_CREDENTIALS
        except PortfolioSyncError as e:
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_ERROR
        finally:
            await self.store.close()

    def _require_keys(self):
        keys = self.store.state.keys
        if keys is None:
            raise MissingCredentialsError()
        return keys

    def _report(self) -> int:
        state = self.store.state
        if state.error:
            print(f"Error: {state.error}", file=sys.stderr)
            if state.portfolio is None:
                return EXIT_ERROR
        if state.portfolio is not None:
            print(format_portfolio(state.portfolio))
            if state.last_synced:
                source = 'cache' if state.from_cache else 'live'
                print(f"Last synced {state.last_synced.isoformat()} ({source})")
        return EXIT_ERROR if state.error else EXIT_OK

    async def cmd_login(self, args: argparse.Namespace) -> int:
        if args.api_key and args.user_key:
            api_key, user_key = args.api_key, args.user_key
        else:
            env_keys = load_env_keys(args.env_file)
            if env_keys is None:
                raise MissingCredentialsError(
                    "No credentials given: pass --api-key and --user-key, "
                    "or set ETORO_API_KEY and ETORO_USER_KEY"
                )
            api_key, user_key = env_keys
        self.store.save_keys(api_key, user_key)
        print("Credentials saved.")
        return EXIT_OK

    async def cmd_logout(self, args: argparse.Namespace) -> int:
        self.store.clear_keys()
        print("Credentials and cached data cleared.")
        return EXIT_OK

    async def cmd_show(self, args: argparse.Namespace) -> int:
        self._require_keys()
        await self.store.load()
        return self._report()

    async def cmd_refresh(self, args: argparse.Namespace) -> int:
        await self.store.refresh()
        return self._report()

    async def cmd_trades(self, args: argparse.Namespace) -> int:
        trades = await fetch_trade_history(self._require_keys(), args.days, self.config.api)
        print(format_trades(trades))
        return EXIT_OK

    async def cmd_candles(self, args: argparse.Namespace) -> int:
        async with TradingApiClient(self._require_keys(), self.config.api) as client:
            batch = await PortfolioFetcher(client).fetch_all_candles_detailed(args.ids, args.count)

        for instrument_id in args.ids:
            if instrument_id in batch.candles:
                candles = batch.candles[instrument_id]
                last = candles[-1]
                print(f"{instrument_id:>8}  {len(candles):>4} candles  last {last.date[:10]} close {last.close:,.4f}")
            elif instrument_id in batch.failed:
                print(f"{instrument_id:>8}  failed: {batch.failed[instrument_id]}")
            else:
                print(f"{instrument_id:>8}  no candles")
        return EXIT_OK

    async def cmd_colors(self, args: argparse.Namespace) -> int:
        self._require_keys()
        await self.store.load()
        portfolio = self.store.state.portfolio
        if portfolio is None:
            return self._report()

        color_map = await self.store.build_colors()
        for group in group_by_symbol(portfolio.positions):
            source = 'logo' if group.symbol in color_map else 'fallback'
            print(f"{group.symbol:<14}{symbol_color(group.symbol, color_map):<20}{source}")
        return EXIT_OK

    async def cmd_watchlists(self, args: argparse.Namespace) -> int:
        async with TradingApiClient(self._require_keys(), self.config.api) as client:
            fetcher = PortfolioFetcher(client)
            watchlists = await fetcher.fetch_watchlists()
            if not watchlists:
                print("No watchlists with instruments.")
            for watchlist in watchlists:
                print(f"{watchlist.name} ({len(watchlist.instrument_ids)})")
                for row in await fetcher.fetch_watchlist_instruments(watchlist.instrument_ids):
                    rate = f"{row.current_rate:,.4f}" if row.current_rate is not None else '-'
                    print(f"  {(row.symbol or f'#{row.instrument_id}'):<14}{rate:>14}  {row.display_name or ''}")
        return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='portfolio-sync',
        description='Sync, value and cache a trading account portfolio',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        '--config', '-c',
        type=str,
        default=None,
        help='Path to a YAML or JSON configuration file (defaults apply when omitted)'
    )
    parser.add_argument(
        '--log-level',
        type=str,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        default=None,
        help='Override the configured log level'
    )
    parser.add_argument('--version', '-v', action='version', version='%(prog)s 1.0.0')

    sub = parser.add_subparsers(dest='command', required=True)

    login = sub.add_parser('login', help='Save API credentials')
    login.add_argument('--api-key', type=str, help='API key')
    login.add_argument('--user-key', type=str, help='User key')
    login.add_argument('--env-file', type=str, default=None,
                       help='.env file with ETORO_API_KEY / ETORO_USER_KEY')

    sub.add_parser('logout', help='Clear credentials and cached data')
    sub.add_parser('show', help='Show the portfolio, from cache when available')
    sub.add_parser('refresh', help='Fetch a fresh portfolio snapshot')

    trades = sub.add_parser('trades', help='Show closed trades')
    trades.add_argument('--days', type=int, default=None, help='History window in days')

    candles = sub.add_parser('candles', help='Fetch daily candles for instruments')
    candles.add_argument('--ids', type=_parse_ids, required=True, help='Comma-separated instrument ids')
    candles.add_argument('--count', type=int, default=None, help='Candles per instrument')

    sub.add_parser('colors', help='Show the symbol color map')
    sub.add_parser('watchlists', help='Show watchlists with current rates')

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Console entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_ERROR

    logging_config = config.logging.to_logging_dict()
    if args.log_level:
        logging_config['logging']['level'] = args.log_level
    setup_logging(logging_config)

    try:
        return asyncio.run(CliRunner(config).run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user", extra={'category': LogCategory.SYSTEM.value})
        return EXIT_OK
    finally:
        shutdown_logging()
