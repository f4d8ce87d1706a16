import argparse
import asyncio
import signal
import sys
from typing import Optional
from pump_sniper.core.trading_system import TradingSystem
from pump_sniper.utils.config import Config, ConfigError
from pump_sniper.utils.logger import TradingLogger

EXIT_OK = 0
EXIT_ERROR = 1


class InitTradingSystem:
    def __init__(self, config: Config, logger: TradingLogger):
        self.config = config
        self.logger = logger
        self.trading_bot: Optional[TradingSystem] = None
        self.exit_code = EXIT_OK
        self._shutdown_event = asyncio.Event()

    def handle_shutdown(self, sig: signal.Signals):
        """Handle shutdown signals"""
        self.logger.info(f"Received signal {sig.name}. Starting graceful shutdown...")
        self._shutdown_event.set()

    def handle_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict):
        """Unhandled errors in background tasks are fatal"""
        error = context.get("exception")
        self.logger.critical(f"Unhandled error in event loop: {context.get('message')} {error or ''}")
        self.exit_code = EXIT_ERROR
        self._shutdown_event.set()

    async def check_connections(self):
        """Fail fast when the RPC endpoint is unreachable; warn on an unknown tip account"""
        bot = self.trading_bot
        epoch = await bot.client.get_epoch_info()
        self.logger.info(f"RPC reachable, epoch {epoch.value.epoch} slot {epoch.value.absolute_slot}")

        if bot.db_service is not None and not bot.db_service.db.test_connection():
            raise RuntimeError("Database configured by DB_URL is unreachable")

        try:
            tip_accounts = await bot.bundle_client.get_tip_accounts()
        except Exception as e:
            self.logger.warning(f"Could not fetch Jito tip accounts: {str(e)}")
            return
        if str(bot.tip_account) not in tip_accounts:
            self.logger.warning(
                f"Configured tip account {bot.tip_account} is not in the block engine's tip accounts: {tip_accounts}"
            )

    async def run_trading_system(self) -> int:
        """Run trading system until a signal or fatal error, then shut down"""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.handle_shutdown, sig)
        loop.set_exception_handler(self.handle_loop_exception)

        try:
            self.trading_bot = TradingSystem(self.config, self.logger)
            await self.trading_bot.start()
            await self.check_connections()
            self.logger.info("Trading system started successfully")
        except Exception as e:
            self.logger.critical(f"Startup failed: {str(e)}")
            self.exit_code = EXIT_ERROR
            await self.shutdown()
            return self.exit_code

        await self._shutdown_event.wait()
        self.logger.info("Shutdown requested, initiating shutdown sequence")
        await self.shutdown()
        return self.exit_code

    async def shutdown(self):
        """Gracefully shutdown the trading system"""
        if self.trading_bot is None:
            return
        try:
            await self.trading_bot.stop()
        except Exception as e:
            self.logger.error(f"Error during shutdown: {str(e)}")
            self.exit_code = EXIT_ERROR


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="pump.fun single-position sniper")
    parser.add_argument("--config", default="config.yaml", help="YAML settings file")
    parser.add_argument("--env-file", default=".env", help="dotenv file with secrets and endpoints")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        config = Config(config_path=args.config, env_file=args.env_file)
    except ConfigError as e:
        print(f"Configuration error: {str(e)}", file=sys.stderr)
        return EXIT_ERROR

    settings = config.logging
    logger = TradingLogger(
        level=settings.log_level,
        log_to_file=settings.log_to_file,
        console_output=settings.console_output
    )
    if logger.log_file:
        logger.info(f"Logging to {logger.log_file}")

    init_system = InitTradingSystem(config, logger)
    try:
        logger.info("Starting trading system...")
        return await init_system.run_trading_system()
    except Exception as e:
        logger.critical(f"Fatal error: {str(e)}")
        await init_system.shutdown()
        return EXIT_ERROR
    finally:
        logger.info("Trading system shutdown complete")


def run():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
