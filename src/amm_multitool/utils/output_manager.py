import json
import shutil
import logging
from pathlib import Path
from time import time
from typing import Any, Optional

from amm_multitool.auto_config.environment import config

logger = logging.getLogger(__name__)


class OutputManager:
    """Centralized output management for inspection reports, pool dumps and swap results."""

    def __init__(self, output_root: Optional[Path] = None, wipe: bool = False):
        self.output_root = Path(output_root) if output_root else config.output_dir
        if wipe:
            self.wipe_output()

    def wipe_output(self) -> None:
        """Delete all files and folders in the output root directory."""
        if self.output_root.exists():
            for item in self.output_root.iterdir():
                if item.is_dir():
                    shutil.rmtree(item)
                else:
                    item.unlink()

    def save_output(self, data: Any, subpath: str, name: Optional[str] = None, as_text: bool = False) -> str:
        """
        Save data to output_root/subpath/name, auto-generating name if not set.
        If as_text is True or name ends with .txt, saves as plain text, else as JSON.
        Returns the full path to the saved file.
        """
        full_dir = self.output_root / subpath
        full_dir.mkdir(parents=True, exist_ok=True)

        if name is None:
            ts = int(time())
            sig = None
            if isinstance(data, dict):
                if "transaction" in data and "signatures" in data["transaction"]:
                    sig = data["transaction"]["signatures"][0]
                elif "signatures" in data:
                    sig = data["signatures"][0]
                elif "signature" in data:
                    sig = data["signature"]
                elif "address" in data:
                    sig = data["address"]
            if as_text or isinstance(data, str):
                name = f"output_{ts}.txt"
            elif sig:
                name = f"{sig}_{ts}.json"
            else:
                name = f"output_{ts}.json"

        if as_text or name.endswith('.txt'):
            path = full_dir / name
            with open(path, "w", encoding="utf-8") as f:
                f.write(data if isinstance(data, str) else str(data))
        else:
            if not name.endswith('.json'):
                name += '.json'
            path = full_dir / name
            with open(path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=4, default=str)

        logger.info(f"Saved output to {path}")
        return str(path)


_output_manager: Optional[OutputManager] = None


def get_output_manager() -> OutputManager:
    global _output_manager
    if _output_manager is None:
        _output_manager = OutputManager(wipe=config.wipe_output_on_start)
    return _output_manager


def save_output(data: Any, subpath: str, name: Optional[str] = None, as_text: bool = False) -> str:
    """
    Convenience function to save data using the global output manager.
    """
    return get_output_manager().save_output(data, subpath, name=name, as_text=as_text)
