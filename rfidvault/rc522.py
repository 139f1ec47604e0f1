"""Driver for the MFRC522 RFID reader over an SPI transport."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from functools import reduce
from operator import xor
from typing import Callable

logger = logging.getLogger(__name__)

REQUEST_IDLE = 0x26
REQUEST_ALL = 0x52
ANTICOLL_CL1 = (0x93, 0x20)
IRQ_POLL_LIMIT = 2000
FIFO_READ_LIMIT = 16
UID_LENGTH = 4


class Command(IntEnum):
    """Commands accepted by the reader's command register."""

    IDLE = 0x00
    MEM = 0x01
    RANDOM_ID = 0x02
    CALC_CRC = 0x03
    TRANSMIT = 0x04
    NO_CMD_CHANGE = 0x07
    RECEIVE = 0x08
    TRANSCEIVE = 0x0C
    AUTH = 0x0E
    SOFT_RESET = 0x0F


class Register(IntEnum):
    """Register addresses of the reader."""

    COMMAND = 0x01
    COMM_IE = 0x02
    DIV1_EN = 0x03
    COMM_IRQ = 0x04
    DIV_IRQ = 0x05
    ERROR = 0x06
    STATUS1 = 0x07
    STATUS2 = 0x08
    FIFO_DATA = 0x09
    FIFO_LEVEL = 0x0A
    WATER_LEVEL = 0x0B
    CONTROL = 0x0C
    BIT_FRAMING = 0x0D
    COLL = 0x0E
    MODE = 0x11
    TX_MODE = 0x12
    RX_MODE = 0x13
    TX_CONTROL = 0x14
    TX_AUTO = 0x15
    TX_SEL = 0x16
    RX_SEL = 0x17
    RX_THRESHOLD = 0x18
    DEMOD = 0x19
    MF_TX = 0x1C
    MF_RX = 0x1D
    SERIAL_SPEED = 0x1F
    CRC_RESULT_M = 0x21
    CRC_RESULT_L = 0x22
    MOD_WIDTH = 0x24
    RF_CFG = 0x26
    GS_N = 0x27
    CW_GS_P = 0x28
    MOD_GS_P = 0x29
    T_MODE = 0x2A
    T_PRESCALER = 0x2B
    T_RELOAD_H = 0x2C
    T_RELOAD_L = 0x2D
    T_COUNTER_VAL_H = 0x2E
    T_COUNTER_VAL_L = 0x2F
    VERSION = 0x37


class RC522Error(Exception):
    """Base error for reader operations."""


class CardTimeoutError(RC522Error):
    """The reader did not answer in time."""


class NoCardError(RC522Error):
    """No card answered the request."""


class CrcError(RC522Error):
    """The reader flagged an error or the UID checksum did not match."""


@dataclass(frozen=True)
class Card:
    """A card seen by the reader."""

    uid: bytes
    sak: int = 0


class SpiTransport(ABC):
    """Full-duplex byte transport to the reader."""

    @abstractmethod
    def transfer(self, data: bytes) -> bytes:
        """Send ``data`` and return the bytes clocked back, same length."""


def format_uid(uid: bytes) -> str:
    """Render UID bytes as upper-case hex pairs joined by colons."""
    return ":".join(f"{byte:02X}" for byte in uid)


class RC522:
    """An MFRC522 reader reached through an SpiTransport."""

    def __init__(
        self,
        transport: SpiTransport,
        sleep: Callable[[float], object] = time.sleep,
    ) -> None:
        self._transport = transport
        self._sleep = sleep
        self.initialized = False
        self._check_counter = 0

    def read_register(self, reg: int) -> int:
        """Read one register."""
        response = self._transport.transfer(bytes([((reg << 1) & 0x7E) | 0x80, 0x00]))
        return response[1]

    def write_register(self, reg: int, value: int) -> None:
        """Write one register."""
        self._transport.transfer(bytes([(reg << 1) & 0x7E, value & 0xFF]))

    def _set_bits(self, reg: int, mask: int) -> None:
        self.write_register(reg, self.read_register(reg) | mask)

    def _clear_bits(self, reg: int, mask: int) -> None:
        self.write_register(reg, self.read_register(reg) & ~mask & 0xFF)

    def init(self) -> None:
        """Soft-reset and configure the reader, then switch the antenna on."""
        logger.info("Initialising RC522")
        self.write_register(Register.COMMAND, Command.SOFT_RESET)
        self._sleep(0.05)
        self._sleep(0.05)

        self.write_register(Register.T_MODE, 0x8D)
        self.write_register(Register.T_PRESCALER, 0x3E)
        self.write_register(Register.T_RELOAD_L, 30)
        self.write_register(Register.T_RELOAD_H, 0)
        # Force 100% ASK modulation.
        self.write_register(Register.TX_AUTO, 0x40)
        # CRC preset 0x6363 (ISO 14443-3 part 6.2.4).
        self.write_register(Register.MODE, 0x3D)

        self.antenna_on()
        self.initialized = True
        logger.info("RC522 initialised")

    def deinit(self) -> None:
        """Switch the antenna off and mark the reader as released."""
        if not self.initialized:
            raise RC522Error("reader is not initialised")
        self.antenna_off()
        self.initialized = False
        logger.info("RC522 released")

    def antenna_on(self) -> None:
        """Enable both antenna drivers if they are off."""
        if not self.read_register(Register.TX_CONTROL) & 0x03:
            self._set_bits(Register.TX_CONTROL, 0x03)

    def antenna_off(self) -> None:
        """Disable both antenna drivers."""
        self._clear_bits(Register.TX_CONTROL, 0x03)

    def _communicate(self, command: int, send_data: bytes) -> tuple[bytes, int]:
        """Run ``command`` with ``send_data``; return (FIFO bytes, bit count)."""
        wait_irq = {Command.AUTH: 0x10, Command.TRANSCEIVE: 0x30}.get(command, 0x00)

        self.write_register(Register.COMM_IRQ, 0x7F)
        self._clear_bits(Register.FIFO_LEVEL, 0x80)
        self.write_register(Register.COMMAND, Command.IDLE)
        for byte in send_data:
            self.write_register(Register.FIFO_DATA, byte)

        self.write_register(Register.COMMAND, command)
        if command == Command.TRANSCEIVE:
            self._set_bits(Register.BIT_FRAMING, 0x80)

        for _ in range(IRQ_POLL_LIMIT):
            irq = self.read_register(Register.COMM_IRQ)
            if irq & wait_irq:
                break
            if irq & 0x01:
                raise CardTimeoutError("reader timer expired")
        else:
            raise CardTimeoutError("no interrupt from reader")

        if self.read_register(Register.ERROR) & 0x13:
            raise CrcError("reader reported an error")

        level = self.read_register(Register.FIFO_LEVEL)
        last_bits = self.read_register(Register.CONTROL) & 0x07
        bit_count = ((level - 1) * 8 + last_bits if last_bits else level * 8) & 0xFF
        to_read = min(max(level, 1), FIFO_READ_LIMIT)
        data = bytes(self.read_register(Register.FIFO_DATA) for _ in range(to_read))
        return data, bit_count

    def _request(self, mode: int) -> bytes:
        self.write_register(Register.BIT_FRAMING, 0x07)
        try:
            data, bit_count = self._communicate(Command.TRANSCEIVE, bytes([mode]))
        except RC522Error as exc:
            raise NoCardError("no card answered") from exc
        if bit_count != 0x10:
            raise NoCardError("unexpected answer length")
        return data[:2]

    def _anticoll(self) -> bytes:
        self.write_register(Register.BIT_FRAMING, 0x00)
        data, _ = self._communicate(Command.TRANSCEIVE, bytes(ANTICOLL_CL1))
        if len(data) <= UID_LENGTH:
            raise CrcError("short anticollision answer")
        serial = data[:UID_LENGTH]
        if reduce(xor, serial, 0) != data[UID_LENGTH]:
            raise CrcError("UID checksum mismatch")
        return serial

    def card_present(self) -> bool:
        """Return True if a card answers a wake-up request."""
        if not self.initialized:
            logger.warning("RC522 not initialised")
            return False
        try:
            self._request(REQUEST_ALL)
            present = True
        except RC522Error:
            present = False
        if self._check_counter % 10000 == 0:
            logger.info("Checking for card (present: %s)", present)
        self._check_counter += 1
        return present

    def read_card(self) -> Card:
        """Select the card in the field and return it with its 4-byte UID."""
        logger.info("Reading card")
        try:
            self._request(REQUEST_IDLE)
        except NoCardError:
            self._sleep(0.01)
            self._request(REQUEST_ALL)
        self._sleep(0.005)
        uid = self._anticoll()
        logger.info("Card detected - UID: %s", format_uid(uid))
        return Card(uid=uid)

    def read_card_uid(self) -> str:
        """Read the card in the field and return its UID as text."""
        uid = format_uid(self.read_card().uid)
        logger.info("UID: %s", uid)
        return uid

    def test_communication(self) -> int | None:
        """Probe a few registers; return the version byte if it was readable.

        Raises RC522Error when none of the probed registers can be read.
        """
        results: dict[Register, int | None] = {}
        for reg in (Register.VERSION, Register.COMMAND, Register.STATUS1):
            try:
                results[reg] = self.read_register(reg)
            except OSError as exc:
                logger.debug("Reading register 0x%02X failed: %s", reg, exc)
                results[reg] = None
        if all(value is None for value in results.values()):
            logger.error("RC522 does not respond")
            raise RC522Error("reader does not respond")
        version = results[Register.VERSION]
        if version in (0x91, 0x92, 0x00, 0xFF):
            logger.info("RC522 communication established")
        else:
            logger.warning("Unknown RC522 version, but the bus works")
        return version