"""
I2C bus access for a single addressed device.
Thin wrapper over smbus2 so drivers only deal with register numbers.
"""
import logging

from smbus2 import SMBus


logger = logging.getLogger(__name__)


class I2CBus:
    """
    Open connection to /dev/i2c-<bus_id> addressing one device.

    Use i2cdetect to find the device address on the bus.
    """

    def __init__(self, address: int, bus_id: int = 1):
        """
        Open the bus.

        Args:
            address: 7-bit device address (e.g., 0x76)
            bus_id: I2C bus number

        Raises:
            OSError: If the bus device node cannot be opened
        """
        self.address = address
        self.bus_id = bus_id
        self._bus = SMBus(bus_id)
        logger.info(f"Opened I2C bus {bus_id} for device 0x{address:02x}")

    def read_byte(self, register: int) -> int:
        value = self._bus.read_byte_data(self.address, register)
        logger.debug(f"read 0x{register:02x} -> 0x{value:02x}")
        return value

    def read_block(self, register: int, length: int) -> bytes:
        data = bytes(self._bus.read_i2c_block_data(self.address, register, length))
        logger.debug(f"read {length} bytes at 0x{register:02x} -> {data.hex()}")
        return data

    def write_byte(self, register: int, value: int) -> None:
        logger.debug(f"write 0x{register:02x} <- 0x{value:02x}")
        self._bus.write_byte_data(self.address, register, value)

    def close(self) -> None:
        self._bus.close()
        logger.info(f"Closed I2C bus {self.bus_id}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
