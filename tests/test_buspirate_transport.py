"""Tests for the Bus Pirate binary SPI transport against a fake serial port."""

import pytest
import serial

from gba_multiboot.protocol import buspirate_transport
from gba_multiboot.protocol.buspirate_transport import (
    BusPirateError,
    BusPirateNoContact,
    BusPirateTransport,
    speed_index,
)
from gba_multiboot.protocol.multiboot import TransportError


class FakeBusPirate:
    """Minimal emulation of Bus Pirate binary mode over a serial port."""

    def __init__(self, answer_bitbang=True, spi_reply=None, bulk_ack=b"\x01", fail_reset=False, **kwargs):
        self.kwargs = kwargs
        self.timeout = kwargs.get("timeout")
        self.is_open = True
        self.written = []
        self.rx = bytearray()
        self.answer_bitbang = answer_bitbang
        self.spi_reply = spi_reply or (lambda word: word ^ 0xFFFFFFFF)
        self.bulk_ack = bulk_ack
        self.fail_reset = fail_reset

    def reset_input_buffer(self):
        if self.fail_reset:
            raise serial.SerialException("device reports readiness to read but returned no data")
        self.rx.clear()

    def reset_output_buffer(self):
        pass

    def write(self, data):
        self.written.append(bytes(data))
        cmd = data[0]
        if len(data) == 5 and cmd == 0x13:
            word = int.from_bytes(data[1:], "big")
            self.rx += self.bulk_ack + self.spi_reply(word).to_bytes(4, "big")
        elif cmd == 0x00:
            if self.answer_bitbang:
                self.rx += b"BBIO1"
        elif cmd == 0x01:
            self.rx += b"SPI1"
        elif cmd == 0x0F or 0x60 <= cmd <= 0x67 or 0x80 <= cmd <= 0x8F:
            self.rx += b"\x01"
        return len(data)

    def read(self, size=1):
        out = bytes(self.rx[:size])
        del self.rx[:size]
        return out

    def close(self):
        self.is_open = False


@pytest.fixture
def fake_serial(monkeypatch):
    """Patch serial.Serial; returns (created fakes, options applied to new fakes)."""
    created = []
    options = {}

    def factory(**kwargs):
        fake = FakeBusPirate(**options, **kwargs)
        created.append(fake)
        return fake

    monkeypatch.setattr(buspirate_transport.serial, "Serial", factory)
    monkeypatch.setattr(buspirate_transport.time, "sleep", lambda s: None)
    return created, options


def test_speed_index():
    assert speed_index("30k") == 0
    assert speed_index("125k") == 1
    assert speed_index("1m") == 3
    assert speed_index("8M") == 7
    with pytest.raises(ValueError):
        speed_index("100k")


def test_bus_pirate_error_is_transport_error():
    assert issubclass(BusPirateError, TransportError)
    assert issubclass(BusPirateNoContact, BusPirateError)


def test_open_enters_spi_mode_3(fake_serial):
    created, _ = fake_serial
    transport = BusPirateTransport("/dev/ttyUSB0")
    transport.open()

    fake = created[0]
    assert fake.kwargs["port"] == "/dev/ttyUSB0"
    assert fake.kwargs["baudrate"] == 115200
    assert b"\x00" in fake.written
    # SPI mode, 125 kHz, mode 3 with 3.3V outputs
    assert fake.written[-3:] == [b"\x01", b"\x61", b"\x8C"]


def test_open_drain_and_bitrate(fake_serial):
    created, _ = fake_serial
    transport = BusPirateTransport("/dev/ttyUSB0", bitrate="1M", open_drain=True)
    transport.open()
    assert created[0].written[-2:] == [b"\x63", b"\x84"]


def test_exchange_sends_bulk_transfer_msb_first(fake_serial):
    created, _ = fake_serial
    with BusPirateTransport("/dev/ttyUSB0") as transport:
        reply = transport.exchange(0x00006202)
        assert created[0].written[-1] == b"\x13\x00\x00\x62\x02"
        assert reply == 0xFFFF9DFD


def test_close_resets_and_is_idempotent(fake_serial):
    created, _ = fake_serial
    transport = BusPirateTransport("/dev/ttyUSB0")
    transport.open()
    transport.close()

    fake = created[0]
    assert not fake.is_open
    assert fake.written[-2:] == [b"\x00", b"\x0f"]

    transport.close()
    assert fake.written[-2:] == [b"\x00", b"\x0f"]


def test_no_bitbang_answer_raises_no_contact(fake_serial):
    created, options = fake_serial
    options["answer_bitbang"] = False

    transport = BusPirateTransport("/dev/ttyUSB0")
    with pytest.raises(BusPirateNoContact):
        transport.open()
    assert not created[0].is_open


def test_exchange_not_acknowledged(fake_serial):
    _, options = fake_serial
    options["bulk_ack"] = b"\x00"

    with BusPirateTransport("/dev/ttyUSB0") as transport:
        with pytest.raises(BusPirateError):
            transport.exchange(0x6202)


def test_exchange_when_closed():
    transport = BusPirateTransport("/dev/ttyUSB0")
    with pytest.raises(BusPirateError, match="not open"):
        transport.exchange(0x6202)


def test_open_failure_wrapped(monkeypatch):
    def factory(**kwargs):
        raise serial.SerialException("could not open port")

    monkeypatch.setattr(buspirate_transport.serial, "Serial", factory)
    transport = BusPirateTransport("/dev/nonexistent")
    with pytest.raises(BusPirateError, match="Cannot open port"):
        transport.open()


def test_invalid_bitrate_rejected_up_front():
    with pytest.raises(ValueError):
        BusPirateTransport("/dev/ttyUSB0", bitrate="3M")


def test_buffer_reset_failure_closes_port(fake_serial):
    created, options = fake_serial
    options["fail_reset"] = True

    transport = BusPirateTransport("/dev/ttyUSB0")
    with pytest.raises(BusPirateError, match="Cannot set up"):
        transport.open()
    assert not created[0].is_open
