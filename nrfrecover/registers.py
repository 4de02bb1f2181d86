"""Register map for the nRF91x1 debug port, access ports, NVMC and UICR.

ARM ADIv5 SW-DP:
    DP IDR/ABORT  0x0
    CTRL/STAT     0x4   power-up request / acknowledge
    SELECT        0x8   APSEL[31:24] | APBANKSEL[7:4]
    RDBUFF        0xC

AHB-AP (AP0)    memory access; CSW bit 6 (DbgStatus) is the protection flag
CTRL-AP (AP4)   Nordic control access port, reachable even when locked

NVMC (secure alias 0x50039000) programs flash and UICR one word at a time.
"""

from __future__ import annotations

from dataclasses import dataclass


# =============================================================================
# Debug Port
# =============================================================================

DP_IDR = 0x0
DP_ABORT = 0x0   # write-only; reads at 0x0 return IDR
DP_CTRL_STAT = 0x4
DP_SELECT = 0x8
DP_RDBUFF = 0xC

CSYSPWRUPREQ = 1 << 30
CDBGPWRUPREQ = 1 << 28
CSYSPWRUPACK = 1 << 31
CDBGPWRUPACK = 1 << 29

POWER_UP_REQUEST = CSYSPWRUPREQ | CDBGPWRUPREQ   # 0x50000000
POWER_UP_ACK = CSYSPWRUPACK | CDBGPWRUPACK       # 0xA0000000

ABORT_STKCMPCLR = 1 << 1
ABORT_STKERRCLR = 1 << 2
ABORT_WDERRCLR = 1 << 3
ABORT_ORUNERRCLR = 1 << 4
ABORT_CLEAR_STICKY = ABORT_STKCMPCLR | ABORT_STKERRCLR | ABORT_WDERRCLR | ABORT_ORUNERRCLR  # 0x1E


def select_value(ap: int, offset: int) -> int:
    """DP SELECT value addressing ``offset`` on access port ``ap``."""
    return ((ap & 0xFF) << 24) | (offset & 0xF0)


# =============================================================================
# Access Ports
# =============================================================================

AHB_AP = 0
CTRL_AP = 4

# MEM-AP registers
AP_CSW = 0x00
AP_TAR = 0x04
AP_DRW = 0x0C
AP_IDR = 0xFC

CSW_SIZE_MASK = 0x7
CSW_SIZE32 = 0x2
CSW_ADDRINC_MASK = 0x3 << 4
CSW_DBGSTATUS = 1 << 6

# CTRL-AP registers
CTRL_AP_RESET = 0x000
CTRL_AP_ERASEALL = 0x004
CTRL_AP_ERASEALLSTATUS = 0x008
CTRL_AP_IDR = 0x0FC

ERASEALL_START = 1
ERASEALLSTATUS_READY = 0
RESET_ASSERT = 1
RESET_RELEASE = 0

# CTRL-AP identification register on nRF91/nRF53 parts
CTRL_AP_IDR_NRF = 0x12880000


# =============================================================================
# Cortex-M debug
# =============================================================================

DHCSR_ADDR = 0xE000EDF0
DBGKEY = 0xA05F << 16
C_DEBUGEN = 1 << 0
C_HALT = 1 << 1


# =============================================================================
# NVMC / Flash
# =============================================================================

NVMC_BASE = 0x50039000
NVMC_READY = NVMC_BASE + 0x400
NVMC_CONFIG = NVMC_BASE + 0x504

NVMC_READY_BIT = 1 << 0
NVMC_CONFIG_REN = 0
NVMC_CONFIG_WEN = 1

WORD_SIZE = 4
ERASED_WORD = 0xFFFFFFFF
ERASED_BYTE = 0xFF

FLASH_START = 0x00000000
FLASH_END = 0x00100000
UICR_START = 0x00FF8000
UICR_END = 0x00FF9000


# =============================================================================
# Configuration Write Set
# =============================================================================

@dataclass(frozen=True)
class ConfigurationWrite:
    """One fixed configuration register value."""

    name: str
    address: int
    value: int


# UICR.APPROTECT / UICR.SECUREAPPROTECT = HwUnprotected. Latched on reset, so
# these are written after firmware programming and before the final reset.
UICR_UNPROTECTED = 0x50FA50FA

CONFIGURATION_WRITE_SET: tuple[ConfigurationWrite, ...] = (
    ConfigurationWrite("UICR.APPROTECT", 0x00FF8000, UICR_UNPROTECTED),
    ConfigurationWrite("UICR.SECUREAPPROTECT", 0x00FF802C, UICR_UNPROTECTED),
)


# =============================================================================
# Probe identification
# =============================================================================

DEFAULT_VENDOR_ID = 0x2E8A    # Raspberry Pi
DEFAULT_PRODUCT_ID = 0x000C   # Debug Probe (CMSIS-DAP)
SEGGER_VENDOR_ID = 0x1366     # J-Link
DEFAULT_TIMEOUT_MS = 2000
