"""
Mock data generators.

Every call returns fresh random content with a fixed shape: device lists,
update lists and a system info snapshot built from the local host.
"""

import getpass
import os
import platform
import random
import socket
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import psutil

DEVICE_NAMES = [
    "Intel(R) HD Graphics 620",
    "Realtek High Definition Audio",
    "Intel(R) Wireless-AC 9560",
    "Standard SATA AHCI Controller",
    "Intel(R) Management Engine Interface",
    "Synaptics Touchpad",
    "Intel(R) Bluetooth Device",
    "Generic USB Hub",
    "Standard PS/2 Keyboard",
    "HID-compliant mouse",
]

MANUFACTURERS   = ["Intel Corporation", "Realtek", "Microsoft", "Generic", "Synaptics"]
DEVICE_STATUSES = ["OK", "Warning", "Error"]

UPDATE_TITLES = [
    "Intel Display Driver Update",
    "Realtek Audio Driver",
    "Network Adapter Driver",
    "USB Controller Driver",
    "Bluetooth Driver Update",
]

UPDATE_CATEGORIES = "Drivers, Hardware"

_default_rng = random.Random()


def _rng(rng: Optional[random.Random]) -> random.Random:
    return rng if rng is not None else _default_rng


# ───────── Host helpers ──────────────────────────────────────────────────────

def _cpu_model() -> str:
    return platform.processor() or platform.machine() or "Unknown"


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return os.getenv("USER") or os.getenv("USERNAME") or "Unknown"


# ───────── Generators ────────────────────────────────────────────────────────

def get_system_info(rng: Optional[random.Random] = None) -> Dict[str, Any]:
    rng = _rng(rng)
    boot_time = datetime.fromtimestamp(psutil.boot_time(), tz=timezone.utc)
    return {
        "computerName": socket.gethostname(),
        "operatingSystem": f"{platform.system()} {platform.release()}",
        "version": platform.release(),
        "totalRAM": round(psutil.virtual_memory().total / (1024 ** 3), 2),
        "processor": _cpu_model(),
        "lastBootTime": boot_time.isoformat(),
        "currentUser": _current_user(),
        "pythonVersion": platform.python_version(),
        "totalDevices": rng.randint(20, 69),
        "problemDevices": rng.randint(0, 4),
    }


def generate_mock_devices(rng: Optional[random.Random] = None) -> List[Dict[str, Any]]:
    rng = _rng(rng)
    devices = []
    for index, name in enumerate(DEVICE_NAMES):
        version = ".".join(str(n) for n in (
            rng.randint(1, 10), rng.randint(0, 9), rng.randint(0, 999), rng.randint(0, 99)
        ))
        devices.append({
            "name": name,
            "deviceId": f"PCI\\VEN_8086&DEV_{1000 + index:X}",
            "manufacturer": rng.choice(MANUFACTURERS),
            "status": rng.choice(DEVICE_STATUSES),
            "errorCode": rng.randint(1, 10) if rng.random() > 0.8 else 0,
            # not derived from errorCode, the two can disagree
            "hasProblem": rng.random() > 0.8,
            "needsUpdate": rng.random() > 0.7,
            "driverVersion": version,
        })
    return devices


def generate_mock_updates(rng: Optional[random.Random] = None) -> List[Dict[str, Any]]:
    rng = _rng(rng)
    return [
        {
            "title": title,
            "description": f"Updated driver for {title}",
            "sizeMB": round(rng.random() * 100 + 10),
            "isMandatory": rng.random() > 0.7,
            "updateId": str(uuid.uuid4()),
            "categories": UPDATE_CATEGORIES,
        }
        for title in UPDATE_TITLES
    ]
