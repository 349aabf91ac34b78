"""ILS drivers."""
from portal.services.ils.drivers.base import AbstractILSDriver
from portal.services.ils.drivers.demo import DemoDriver

DRIVERS = {
    "Demo": DemoDriver,
}

__all__ = ["AbstractILSDriver", "DemoDriver", "DRIVERS"]
