# tests/test_layout.py
from pathlib import Path

import pytest

from terminal_fleet.errors import InvalidSlotError
from terminal_fleet.layout import InstanceLayout, instance_dir_name
from terminal_fleet.models import InstanceSlot


def test_index_one_uses_base_path():
    assert instance_dir_name(r"C:\Program Files\MetaTrader 5", 1) == r"C:\Program Files\MetaTrader 5"


def test_higher_index_appends_number():
    assert instance_dir_name(r"C:\Program Files\MetaTrader 5", 4) == r"C:\Program Files\MetaTrader 5 4"


def test_paths(layout: InstanceLayout, program_files: Path):
    slot = InstanceSlot("mt5", 2)
    assert layout.install_path(slot) == program_files / "MetaTrader 5 2"
    assert layout.executable_path(slot) == program_files / "MetaTrader 5 2" / "terminal64.exe"
    assert layout.plugin_dir(slot) == program_files / "MetaTrader 5 2" / "MQL5" / "Experts"


@pytest.mark.parametrize("index", [0, -1, 6])
def test_index_out_of_range(layout: InstanceLayout, index):
    with pytest.raises(InvalidSlotError):
        layout.install_path(InstanceSlot("mt4", index))


def test_non_integer_index(layout: InstanceLayout):
    with pytest.raises(InvalidSlotError):
        layout.install_path(InstanceSlot("mt4", True))


def test_unknown_family(layout: InstanceLayout):
    with pytest.raises(InvalidSlotError, match="Unknown family"):
        layout.install_path(InstanceSlot("ctrader", 1))


def test_slots_order(layout: InstanceLayout):
    assert layout.slots(2) == [
        InstanceSlot("mt4", 1),
        InstanceSlot("mt5", 1),
        InstanceSlot("mt4", 2),
        InstanceSlot("mt5", 2),
    ]
