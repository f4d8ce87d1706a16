from dataclasses import dataclass, fields
from typing import Any, Callable, Dict, Optional
import os
import yaml
from dotenv import load_dotenv

DEFAULT_PUMP_PROGRAM_ID = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"


class ConfigError(Exception):
    """Raised for missing or invalid configuration values"""
    pass


@dataclass
class TradingParameters:
    """Entry sizing and transaction parameters"""
    buy_amount_sol: float = 0.01
    slippage_bps: int = 500                      # 1bp = 0.01%
    jito_fixed_tip_lamports: int = 100_000
    default_compute_units: int = 400_000
    priority_fee_micro_lamports: int = 0         # 0 omits the compute unit price instruction

    @property
    def buy_amount_lamports(self) -> int:
        return int(self.buy_amount_sol * 1_000_000_000)


@dataclass
class ExitParameters:
    """Exit rule thresholds"""
    tp1_mc_mult: float = 1.5               # Market cap multiple for the first take profit
    tp1_sell_pct: float = 40.0             # Percent of balance sold at TP1
    tp2_mc_mult: float = 2.0               # Market cap multiple for the full exit
    entry_sl_pct: float = 5.0              # Stop loss below the entry market cap
    max_mc_sl_pct: float = 10.0            # Trailing stop below the max market cap
    stagnation_timeout_sec: float = 12.0   # Exit if no new max within this window


@dataclass
class TrackingParameters:
    mc_check_interval_ms: int = 100
    curve_max_staleness_multiplier: float = 2.5
    abort_on_stale_cache: bool = False

    @property
    def interval_sec(self) -> float:
        return self.mc_check_interval_ms / 1000


@dataclass
class LoggingSettings:
    log_level: str = "INFO"
    log_to_file: bool = True
    console_output: bool = True


@dataclass
class ConnectionSettings:
    """Secrets and endpoints; only ever read from the environment"""
    wallet_private_key: str = ""
    rpc_url: str = ""
    ws_url: str = ""
    jito_block_engine_url: str = ""
    jito_tip_account: str = ""
    pump_program_id: str = DEFAULT_PUMP_PROGRAM_ID
    stream_mode: str = "transaction"
    db_url: Optional[str] = None


REQUIRED_ENV = {
    "TRADING_WALLET_PRIVATE_KEY": "wallet_private_key",
    "RPC_URL": "rpc_url",
    "WS_URL": "ws_url",
    "JITO_BLOCK_ENGINE_URL": "jito_block_engine_url",
    "JITO_TIP_ACCOUNT_PUBKEY": "jito_tip_account",
}

OPTIONAL_ENV = {
    "PUMP_FUN_PROGRAM_ID": "pump_program_id",
    "STREAM_MODE": "stream_mode",
    "DB_URL": "db_url",
}

# env name -> (section attribute, field name)
NUMERIC_ENV = {
    "BUY_AMOUNT_SOL": ("trading", "buy_amount_sol"),
    "SLIPPAGE_BPS": ("trading", "slippage_bps"),
    "JITO_FIXED_TIP_LAMPORTS": ("trading", "jito_fixed_tip_lamports"),
    "DEFAULT_COMPUTE_UNITS": ("trading", "default_compute_units"),
    "PRIORITY_FEE_MICRO_LAMPORTS": ("trading", "priority_fee_micro_lamports"),
    "TP1_MC_MULT": ("exits", "tp1_mc_mult"),
    "TP1_SELL_PCT": ("exits", "tp1_sell_pct"),
    "TP2_MC_MULT": ("exits", "tp2_mc_mult"),
    "ENTRY_SL_PCT": ("exits", "entry_sl_pct"),
    "MAX_MC_SL_PCT": ("exits", "max_mc_sl_pct"),
    "STAGNATION_TIMEOUT_SEC": ("exits", "stagnation_timeout_sec"),
    "MC_CHECK_INTERVAL_MS": ("tracking", "mc_check_interval_ms"),
    "CURVE_MAX_STALENESS_MULTIPLIER": ("tracking", "curve_max_staleness_multiplier"),
    "ABORT_ON_STALE_CACHE": ("tracking", "abort_on_stale_cache"),
    "LOG_LEVEL": ("logging", "log_level"),
    "LOG_TO_FILE": ("logging", "log_to_file"),
}

SECTIONS = {
    "trading": TradingParameters,
    "exits": ExitParameters,
    "tracking": TrackingParameters,
    "logging": LoggingSettings,
}


def parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("true", "1", "yes", "on"):
        return True
    if lowered in ("false", "0", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _converter(current: Any) -> Callable[[str], Any]:
    if isinstance(current, bool):
        return parse_bool
    if isinstance(current, int):
        return int
    if isinstance(current, float):
        return float
    return str


class Config:
    def __init__(
        self,
        config_path: str = "config.yaml",
        env_file: Optional[str] = ".env",
        require_connection: bool = True
    ):
        self.trading = TradingParameters()
        self.exits = ExitParameters()
        self.tracking = TrackingParameters()
        self.logging = LoggingSettings()
        self.connection = ConnectionSettings()

        if config_path and os.path.exists(config_path):
            self.load_config(config_path)

        if env_file and os.path.exists(env_file):
            load_dotenv(env_file, override=False)
        self.apply_env(os.environ, require_connection)
        self.validate()

    def load_config(self, config_path: str):
        """Load configuration from YAML file"""
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}

        if not isinstance(config_data, dict):
            raise ConfigError(f"{config_path} must contain a mapping of sections")

        for section, cls in SECTIONS.items():
            if section in config_data:
                try:
                    setattr(self, section, cls(**(config_data[section] or {})))
                except TypeError as e:
                    raise ConfigError(f"Invalid '{section}' section in {config_path}: {str(e)}") from e

    def apply_env(self, environ: Dict[str, str], require_connection: bool = True):
        """Overlay environment variables on top of file values"""
        missing = []
        for env_name, attr in REQUIRED_ENV.items():
            value = environ.get(env_name, "")
            if value:
                setattr(self.connection, attr, value)
            elif require_connection:
                missing.append(env_name)
        if missing:
            raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

        for env_name, attr in OPTIONAL_ENV.items():
            value = environ.get(env_name, "")
            if value:
                setattr(self.connection, attr, value)

        for env_name, (section, attr) in NUMERIC_ENV.items():
            value = environ.get(env_name, "")
            if value == "":
                continue
            target = getattr(self, section)
            convert = _converter(getattr(target, attr))
            try:
                setattr(target, attr, convert(value))
            except ValueError as e:
                raise ConfigError(f"Environment variable {env_name} is invalid: {str(e)}") from e

    def validate(self):
        t, x, tr = self.trading, self.exits, self.tracking
        if t.buy_amount_sol <= 0:
            raise ConfigError(f"buy_amount_sol must be positive, got {t.buy_amount_sol}")
        if not 0 <= t.slippage_bps <= 10_000:
            raise ConfigError(f"slippage_bps must be within 0-10000, got {t.slippage_bps}")
        if t.jito_fixed_tip_lamports < 0 or t.default_compute_units <= 0 or t.priority_fee_micro_lamports < 0:
            raise ConfigError("Tip, compute units and priority fee must be non-negative")
        if not 0 < x.tp1_sell_pct <= 100:
            raise ConfigError(f"tp1_sell_pct must be within (0, 100], got {x.tp1_sell_pct}")
        if x.tp1_mc_mult <= 0 or x.tp2_mc_mult <= 0:
            raise ConfigError("Take profit multiples must be positive")
        if tr.mc_check_interval_ms <= 0:
            raise ConfigError(f"mc_check_interval_ms must be positive, got {tr.mc_check_interval_ms}")
        if self.connection.stream_mode not in ("transaction", "logs"):
            raise ConfigError(f"STREAM_MODE must be 'transaction' or 'logs', got {self.connection.stream_mode}")

    def as_dict(self) -> Dict[str, Any]:
        """Non-secret settings, for logging at startup"""
        return {
            section: {f.name: getattr(getattr(self, section), f.name) for f in fields(cls)}
            for section, cls in SECTIONS.items()
        }
