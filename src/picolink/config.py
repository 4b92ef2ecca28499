"""
PicoLink Configuration
======================

Link configuration: serial settings, protocol markers, transfer limits
and wait timings. Configuration can come from:
- Default values (defined here)
- Keyword arguments to LinkConfig
- Environment variables (LinkConfig.from_env)

The marker strings must match what the board firmware prints. The boot
banner in particular is board specific; override it for boards other
than the Raspberry Pi Pico.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional
import os


class BusyPolicy(Enum):
    """What the session guard does when an operation is already running."""
    REJECT = "reject"   # Report the new operation as rejected
    QUEUE = "queue"     # Wait for the running operation, then proceed


@dataclass
class LinkConfig:
    """
    Configuration for a raw REPL link.

    Attributes:
        port: Serial device path, or None to auto-detect
        baud_rate: Serial baud rate (default: 115200)
        send_block_size: Largest write sent to the board at once (default: 255)
        max_upload_size: Uploads of this many bytes or more are refused
        raw_banner: Printed by the board on entering raw mode
        soft_reboot_banner: Printed by the board after a soft reset
        boot_banner: Printed by the board when the normal REPL starts
        marker_timeout: Seconds to wait for a marker, None waits forever
        prompt_retry_limit: Watchdog retries before the recovery nudge
        prompt_poll_interval: Seconds between watchdog retries
        busy_policy: Session guard behaviour for concurrent operations
        usb_vendor_id: USB VID used for port auto-detection
        usb_product_id: USB PID used for port auto-detection
    """

    # ═══════════════════════════════════════════════════════════════════════════
    # SERIAL
    # ═══════════════════════════════════════════════════════════════════════════

    port: Optional[str] = None
    baud_rate: int = 115200
    usb_vendor_id: int = 0x2E8A  # Raspberry Pi
    usb_product_id: int = 0x0005  # MicroPython on RP2040

    # ═══════════════════════════════════════════════════════════════════════════
    # TRANSFER
    # ═══════════════════════════════════════════════════════════════════════════

    send_block_size: int = 255
    max_upload_size: int = 2_000_000

    # ═══════════════════════════════════════════════════════════════════════════
    # PROTOCOL MARKERS
    # ═══════════════════════════════════════════════════════════════════════════

    raw_banner: str = "raw REPL; CTRL-B to exit"
    soft_reboot_banner: str = "MPY: soft reboot"
    boot_banner: str = "Raspberry Pi Pico with RP2040"

    # ═══════════════════════════════════════════════════════════════════════════
    # TIMING
    # ═══════════════════════════════════════════════════════════════════════════

    marker_timeout: Optional[float] = None
    prompt_retry_limit: int = 15
    prompt_poll_interval: float = 0.005

    busy_policy: BusyPolicy = BusyPolicy.REJECT

    # ═══════════════════════════════════════════════════════════════════════════
    # FACTORY METHODS
    # ═══════════════════════════════════════════════════════════════════════════

    @classmethod
    def from_env(cls) -> "LinkConfig":
        """
        Create LinkConfig from environment variables.

        Environment variables (all optional):
            PICOLINK_PORT: Serial device path
            PICOLINK_BAUD: Baud rate (integer)
            PICOLINK_BOOT_BANNER: Board boot banner text
            PICOLINK_BUSY_POLICY: "reject" or "queue"
            PICOLINK_MARKER_TIMEOUT: Seconds (float), or "none"

        Returns:
            LinkConfig with values from environment variables
        """
        config = cls()

        if port := os.environ.get("PICOLINK_PORT"):
            config.port = port

        if baud := os.environ.get("PICOLINK_BAUD"):
            try:
                config.baud_rate = int(baud)
            except ValueError:
                pass  # Ignore invalid values

        if banner := os.environ.get("PICOLINK_BOOT_BANNER"):
            config.boot_banner = banner

        if policy := os.environ.get("PICOLINK_BUSY_POLICY"):
            try:
                config.busy_policy = BusyPolicy(policy.lower())
            except ValueError:
                pass

        if timeout := os.environ.get("PICOLINK_MARKER_TIMEOUT"):
            if timeout.lower() == "none":
                config.marker_timeout = None
            else:
                try:
                    config.marker_timeout = float(timeout)
                except ValueError:
                    pass

        return config


# ═══════════════════════════════════════════════════════════════════════════════
# DEFAULT CONFIGURATION INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

# Global default configuration (can be overridden in tests)
_default_config: Optional[LinkConfig] = None


def get_default_config() -> LinkConfig:
    """
    Get the default link configuration.

    Creates from environment variables on first access.
    Can be overridden by calling set_default_config().
    """
    global _default_config
    if _default_config is None:
        _default_config = LinkConfig.from_env()
    return _default_config


def set_default_config(config: Optional[LinkConfig]) -> None:
    """Set (or with None, reset) the default link configuration."""
    global _default_config
    _default_config = config
