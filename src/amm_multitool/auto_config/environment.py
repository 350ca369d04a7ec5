import os
import logging
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[3]

DEFAULT_RPC_URLS = {
    'mainnet': 'https://api.mainnet-beta.solana.com',
    'devnet': 'https://api.devnet.solana.com',
}
DEFAULT_JUPITER_API_URL = 'https://lite-api.jup.ag/swap/v1'


def load_env_file(env_path: Optional[Path] = None) -> bool:
    """
        Load environment variables from a .env file using python-dotenv.

        Args:
            env_path: Optional path to the .env file. When None, AMM_MULTITOOL_ENV
                      is used if set, otherwise <project root>/config/.env.

        Returns:
            True if a .env file was found and loaded, False otherwise.
        """
    if env_path is None:
        override = os.environ.get('AMM_MULTITOOL_ENV')
        env_path = Path(override) if override else PROJECT_ROOT / "config" / ".env"

    if not Path(env_path).exists():
        logger.debug(f"No .env file found at {env_path}")
        return False

    try:
        was_loaded = load_dotenv(dotenv_path=env_path, override=False)
        if not was_loaded:
            logger.warning(f"Environment variables NOT LOADED from: {env_path}")
        return was_loaded
    except OSError as e:
        logger.warning(f"Could not load .env file from {env_path}: {e}")
        return False


class Config:
    def __init__(self, load_env: bool = True) -> None:
        if load_env:
            load_env_file()

        # Cluster selection drives the default RPC URL and the program ids
        self.network = self._get_env_var('SOLANA_NETWORK', default='mainnet').lower()
        if self.network not in DEFAULT_RPC_URLS:
            logger.warning(f"Invalid SOLANA_NETWORK: {self.network}. Using mainnet.")
            self.network = 'mainnet'

        # Solana RPC Configuration
        self.solana_rpc_url = self._get_env_var(
            'SOLANA_RPC_URL',
            default=DEFAULT_RPC_URLS[self.network]
        )

        fallback_url = self._get_env_var('FALLBACK_RPC_URL')
        self.fallback_rpc_url: Optional[str] = fallback_url if fallback_url else None

        # Rate Limiting Configuration
        self.max_requests_per_second = self._get_int('MAX_REQUESTS_PER_SECOND', 8)

        # Wallet: either an inline secret or a solana-cli keyfile
        self.private_key: Optional[str] = self._get_env_var('PRIVATE_KEY') or None
        self.keypair_path: Optional[str] = self._get_env_var('KEYPAIR_PATH') or None

        # Swap defaults
        self.jupiter_api_url = self._get_env_var('JUPITER_API_URL', default=DEFAULT_JUPITER_API_URL).rstrip('/')
        self.default_slippage_bps = self._get_int('DEFAULT_SLIPPAGE_BPS', 100)
        self.compute_unit_limit = self._get_int('COMPUTE_UNIT_LIMIT', 200_000)
        self.compute_unit_price = self._get_int('COMPUTE_UNIT_PRICE', 100_000)
        self.swap_delay_seconds = self._get_float('SWAP_DELAY_SECONDS', 2.0)

        # Output
        output_dir = self._get_env_var('OUTPUT_DIR')
        self.output_dir = Path(output_dir) if output_dir else PROJECT_ROOT / "data"
        self.wipe_output_on_start = self._get_env_var('WIPE_OUTPUT_ON_START', default='False').lower() == 'true'

        # Logging Configuration
        log_level_str = self._get_env_var('LOG_LEVEL', default='INFO').upper()

        level_map = {
            'DEBUG': logging.DEBUG,
            'INFO': logging.INFO,
            'WARNING': logging.WARNING,
            'ERROR': logging.ERROR,
            'CRITICAL': logging.CRITICAL
        }

        if log_level_str not in level_map:
            logger.warning(f"Invalid LOG_LEVEL: {log_level_str}. Using INFO.")
            self.log_level = logging.INFO
        else:
            self.log_level = level_map[log_level_str]

        self._validate_config()

    def _get_env_var(self, key: str, default: str = '') -> str:
        """
        Args:
            key: Environment variable key
            default: Default value if not set
        """

        value = os.environ.get(key)
        return value if value is not None else default

    def _get_int(self, key: str, default: int) -> int:
        try:
            return int(self._get_env_var(key, default=str(default)))
        except (ValueError, TypeError):
            logger.warning(f"Invalid {key} value. Using default: {default}")
            return default

    def _get_float(self, key: str, default: float) -> float:
        try:
            return float(self._get_env_var(key, default=str(default)))
        except (ValueError, TypeError):
            logger.warning(f"Invalid {key} value. Using default: {default}")
            return default

    def _validate_config(self) -> None:
        """Validate configuration values with fallbacks for invalid values."""
        if not self.solana_rpc_url or not self.solana_rpc_url.startswith('http'):
            logger.warning(f"Invalid SOLANA_RPC_URL: {self._mask_url(self.solana_rpc_url)}. Using default public RPC endpoint.")
            self.solana_rpc_url = DEFAULT_RPC_URLS[self.network]

        if self.max_requests_per_second <= 0:
            logger.warning(f"Invalid MAX_REQUESTS_PER_SECOND: {self.max_requests_per_second}. Using 8 req/sec.")
            self.max_requests_per_second = 8

        if not 0 <= self.default_slippage_bps <= 10_000:
            logger.warning(f"Invalid DEFAULT_SLIPPAGE_BPS: {self.default_slippage_bps}. Using 100.")
            self.default_slippage_bps = 100

        if self.swap_delay_seconds < 0:
            logger.warning(f"Invalid SWAP_DELAY_SECONDS: {self.swap_delay_seconds}. Using 2.0.")
            self.swap_delay_seconds = 2.0

    def get_rpc_url(self, use_fallback: bool = False) -> str:
        if use_fallback:
            if self.fallback_rpc_url is not None:
                return self.fallback_rpc_url
            raise ValueError("A fallback RPC URL was requested, but none is configured.")

        return self.solana_rpc_url

    def is_public_rpc(self) -> bool:
        return self.solana_rpc_url in DEFAULT_RPC_URLS.values()

    def get_provider_key(self) -> str:
        """Get provider key for report metadata."""
        url = self.solana_rpc_url.lower()
        if 'quiknode' in url:
            return "quicknode"
        elif 'alchemy' in url:
            return "alchemy"
        elif 'helius' in url:
            return "helius"
        elif self.is_public_rpc():
            return "public_rpc"
        else:
            return "custom_rpc"

    def _mask_url(self, url: str) -> str:
        """Mask sensitive parts of URL for display."""
        if not url:
            return "None"

        # last part might contain API key
        parts = url.split('/')
        if len(parts) >= 4:
            for i in range(len(parts) - 1, -1, -1):
                if parts[i] and len(parts[i]) > 10:
                    parts[i] = '*' * 8
                    break

        if '?' in parts[-1]:
            head, _ = parts[-1].split('?', 1)
            parts[-1] = f"{head}?********"

        return '/'.join(parts)

    def summary(self) -> dict:
        """Configuration for display, with URLs masked and key material omitted."""
        return {
            "Network": self.network,
            "RPC URL": self._mask_url(self.solana_rpc_url),
            "Fallback RPC": self._mask_url(self.fallback_rpc_url) if self.fallback_rpc_url else "None",
            "Rate Limit": f"{self.max_requests_per_second} req/sec",
            "Provider": self.get_provider_key(),
            "Wallet": "keypair file" if self.keypair_path else ("env secret" if self.private_key else "not configured"),
            "Jupiter API": self.jupiter_api_url,
            "Slippage": f"{self.default_slippage_bps} bps",
            "Compute Units": f"{self.compute_unit_limit} @ {self.compute_unit_price} micro-lamports",
            "Swap Delay": f"{self.swap_delay_seconds}s",
            "Output Dir": str(self.output_dir),
            "Log Level": logging.getLevelName(self.log_level),
        }


config = Config()

# Access the config
def get_solana_rpc_url(use_fallback: bool = False) -> str:
    """Get the configured Solana RPC URL."""
    return config.get_rpc_url(use_fallback)

def get_max_requests_per_second() -> int:
    """Get the configured rate limit."""
    return config.max_requests_per_second

def get_network() -> str:
    return config.network
