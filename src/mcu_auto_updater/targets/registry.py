"""
Flash target registry.

Provides a single source of truth for:
- Debug interfaces (adapter driver, SWD pin mapping, reset wiring)
- Chip profiles (OpenOCD target script)
- Rendering an OpenOCD configuration from an interface + chip pair

Usage:
    from mcu_auto_updater.targets import get_interface, get_chip, render_openocd_config

    cfg = render_openocd_config(get_interface("cm5-gpio"), get_chip("rp2040"))
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class DebugInterface:
    """Definition of a host-side SWD adapter."""
    name: str
    driver: str
    description: str = ""
    swd_nums: Optional[Tuple[int, int]] = None   # (swclk, swdio) GPIO numbers
    trst_num: Optional[int] = None
    srst_num: Optional[int] = None
    reset_config: str = "srst_only srst_nogate"
    adapter_speed_khz: Optional[int] = None

    def config_lines(self) -> List[str]:
        """OpenOCD commands selecting and wiring this adapter."""
        lines = [f"interface {self.driver}"]
        if self.swd_nums is not None:
            swclk, swdio = self.swd_nums
            lines.append(f"{self.driver}_swd_nums {swclk} {swdio}")
        if self.trst_num is not None:
            lines.append(f"{self.driver}_trst_num {self.trst_num}")
        if self.srst_num is not None:
            lines.append(f"{self.driver}_srst_num {self.srst_num}")
        if self.adapter_speed_khz is not None:
            lines.append(f"adapter speed {self.adapter_speed_khz}")
        lines.append("transport select swd")
        if self.reset_config:
            lines.append(f"reset_config {self.reset_config}")
        return lines


@dataclass(frozen=True)
class ChipProfile:
    """Definition of a target MCU as OpenOCD knows it."""
    name: str
    target_script: str
    description: str = ""
    aliases: Tuple[str, ...] = field(default_factory=tuple)


INTERFACES: Dict[str, DebugInterface] = {
    "cm5-gpio": DebugInterface(
        name="cm5-gpio",
        driver="bcm2835gpio",
        description="Compute Module GPIO bit-bang (SWD on GPIO18/15, reset on GPIO20)",
        swd_nums=(18, 15),
        trst_num=20,
    ),
    "cmsis-dap": DebugInterface(
        name="cmsis-dap",
        driver="cmsis-dap",
        description="USB CMSIS-DAP probe (Raspberry Pi Debug Probe, picoprobe)",
        reset_config="",
        adapter_speed_khz=5000,
    ),
}

CHIPS: Dict[str, ChipProfile] = {
    "rp2040": ChipProfile(
        name="rp2040",
        target_script="target/rp2040.cfg",
        description="Raspberry Pi RP2040 (dual Cortex-M0+)",
    ),
    "rp2350": ChipProfile(
        name="rp2350",
        target_script="target/rp2350.cfg",
        description="Raspberry Pi RP2350 (dual Cortex-M33 / Hazard3)",
        aliases=("rp235x",),
    ),
}


def list_interfaces() -> List[DebugInterface]:
    return [INTERFACES[k] for k in sorted(INTERFACES)]


def list_chips() -> List[ChipProfile]:
    return [CHIPS[k] for k in sorted(CHIPS)]


def get_interface(name: str) -> DebugInterface:
    """
    Look up a debug interface by name (case-insensitive).

    Raises:
        ValueError: If the name is unknown.
    """
    key = name.strip().lower()
    if key not in INTERFACES:
        raise ValueError(
            f"Unknown debug interface '{name}'. Known: {', '.join(sorted(INTERFACES))}"
        )
    return INTERFACES[key]


def get_chip(name: str) -> ChipProfile:
    """
    Look up a chip profile by name or alias (case-insensitive).

    Raises:
        ValueError: If the name is unknown.
    """
    key = name.strip().lower()
    if key in CHIPS:
        return CHIPS[key]
    for chip in CHIPS.values():
        if key in chip.aliases:
            return chip
    raise ValueError(f"Unknown chip '{name}'. Known: {', '.join(sorted(CHIPS))}")


def render_openocd_config(interface: DebugInterface, chip: ChipProfile) -> str:
    """Full OpenOCD configuration file text for interface driving chip."""
    lines = interface.config_lines()
    lines.append(f"source [find {chip.target_script}]")
    return "\n".join(lines) + "\n"
