import json
from decimal import Decimal

from amm_multitool.utils import output_manager
from amm_multitool.utils.output_manager import OutputManager


def test_save_json_with_explicit_name(tmp_path):
    manager = OutputManager(tmp_path)
    path = manager.save_output({"fee": Decimal("0.000005")}, "txs", "abc.json")

    assert path == str(tmp_path / "txs" / "abc.json")
    assert json.loads((tmp_path / "txs" / "abc.json").read_text()) == {"fee": "0.000005"}


def test_save_names_file_after_signature(tmp_path):
    manager = OutputManager(tmp_path)
    path = manager.save_output({"transaction": {"signatures": ["5sig"]}, "slot": 1}, "pools/p/txs")
    assert path.startswith(str(tmp_path / "pools" / "p" / "txs" / "5sig_"))
    assert path.endswith(".json")


def test_save_names_file_after_address(tmp_path):
    path = OutputManager(tmp_path).save_output({"address": "Pool1"}, "pools")
    assert "Pool1_" in path


def test_save_appends_json_extension(tmp_path):
    path = OutputManager(tmp_path).save_output([1, 2], "misc", "numbers")
    assert path.endswith("numbers.json")


def test_save_text(tmp_path):
    path = OutputManager(tmp_path).save_output("hello", "logs", as_text=True)
    assert path.endswith(".txt")
    assert open(path, encoding="utf-8").read() == "hello"


def test_wipe_output(tmp_path):
    (tmp_path / "old").mkdir()
    (tmp_path / "old" / "x.json").write_text("{}")
    (tmp_path / "stale.txt").write_text("x")

    OutputManager(tmp_path, wipe=True)

    assert list(tmp_path.iterdir()) == []


def test_module_level_save_uses_configured_directory(tmp_path, monkeypatch):
    monkeypatch.setattr(output_manager, "_output_manager", None)
    path = output_manager.save_output({"signature": "s"}, "swaps", "s.json")
    assert path == str(tmp_path / "data" / "swaps" / "s.json")
