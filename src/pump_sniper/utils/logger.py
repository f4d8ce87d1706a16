import logging
from datetime import datetime
import os

ROOT_LOGGER_NAME = "pump_sniper"


class TradingLogger:
    def __init__(
        self,
        name: str = ROOT_LOGGER_NAME,
        log_dir: str = "data/logs",
        level: str = "INFO",
        log_to_file: bool = True,
        console_output: bool = True
    ):
        self.log_dir = log_dir
        self.log_file = None

        # Module loggers (pump_sniper.*) propagate here
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG)

        # Re-creating the wrapper must not stack handlers
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        self._setup_handlers(self._resolve_level(level), log_to_file, console_output)

    @staticmethod
    def _resolve_level(level: str) -> int:
        resolved = logging.getLevelName(str(level).upper())
        return resolved if isinstance(resolved, int) else logging.INFO

    def _setup_handlers(self, level: int, log_to_file: bool, console_output: bool):
        if console_output:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(max(level, logging.INFO))
            console_format = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')
            console_handler.setFormatter(console_format)
            self.logger.addHandler(console_handler)

        if log_to_file:
            os.makedirs(self.log_dir, exist_ok=True)
            timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
            self.log_file = os.path.join(self.log_dir, f'trading_{timestamp}.log')
            file_handler = logging.FileHandler(self.log_file)
            file_handler.setLevel(level)
            file_format = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            file_handler.setFormatter(file_format)
            self.logger.addHandler(file_handler)

    def critical(self, message: str) -> None:
        """Log critical message"""
        self.logger.critical(message)

    def debug(self, message: str) -> None:
        """Log debug message"""
        self.logger.debug(message)

    def info(self, message: str) -> None:
        """Log info message"""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log warning message"""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log error message"""
        self.logger.error(message)
