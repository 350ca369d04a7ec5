import json
import logging
from pathlib import Path
from typing import Optional

import base58
from solders.keypair import Keypair

from amm_multitool.auto_config.environment import config
from amm_multitool.errors import ConfigError

logger = logging.getLogger(__name__)


def _keypair_from_json(text: str, source: str) -> Keypair:
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"{source} is not a JSON byte array") from e
    if not isinstance(raw, list) or len(raw) != 64 or not all(isinstance(b, int) and 0 <= b <= 255 for b in raw):
        raise ConfigError(f"{source} must be a JSON array of 64 bytes")
    try:
        return Keypair.from_bytes(bytes(raw))
    except ValueError as e:
        raise ConfigError(f"{source} is not a valid ed25519 keypair") from e


def load_keypair(private_key: Optional[str] = None, keypair_path: Optional[str] = None) -> Keypair:
    """
    Load the signing wallet.

    Accepts, in order of precedence: an explicit secret, an explicit keyfile path,
    then PRIVATE_KEY and KEYPAIR_PATH from the environment. A secret is either a
    base58 string or a JSON array of 64 bytes; a keyfile is a solana-cli JSON file.
    """
    if private_key is None and keypair_path is None:
        private_key = config.private_key
        keypair_path = config.keypair_path

    if private_key:
        secret = private_key.strip()
        if secret.startswith("["):
            keypair = _keypair_from_json(secret, "PRIVATE_KEY")
        else:
            try:
                raw = base58.b58decode(secret)
            except ValueError as e:
                raise ConfigError("PRIVATE_KEY is not valid base58") from e
            if len(raw) != 64:
                raise ConfigError(f"PRIVATE_KEY must decode to 64 bytes, got {len(raw)}")
            try:
                keypair = Keypair.from_bytes(raw)
            except ValueError as e:
                raise ConfigError("PRIVATE_KEY is not a valid ed25519 keypair") from e
        logger.info(f"Loaded wallet {keypair.pubkey()} from secret")
        return keypair

    if keypair_path:
        path = Path(keypair_path).expanduser()
        if not path.exists():
            raise ConfigError(f"Keypair file not found: {path}")
        keypair = _keypair_from_json(path.read_text(encoding="utf-8"), str(path))
        logger.info(f"Loaded wallet {keypair.pubkey()} from {path}")
        return keypair

    raise ConfigError("No wallet configured: set PRIVATE_KEY or KEYPAIR_PATH")
