"""
Tests for the bzpark command line
"""
import pytest

from bzpark import cli
from bzpark.backend_client import BackendClient
from bzpark.config import Settings


@pytest.fixture
def fake_client(monkeypatch, transport):
    monkeypatch.setattr(
        cli, "_client", lambda settings: BackendClient("http://backend.test", transport=transport)
    )


def run(argv):
    with pytest.raises(SystemExit) as exc_info:
        cli.main(argv)
    return exc_info.value.code


def test_no_command_prints_help(capsys):
    assert run([]) == 1
    assert "usage: bzpark" in capsys.readouterr().out


def test_ports(monkeypatch, capsys):
    monkeypatch.setattr(cli, "list_serial_ports", lambda: ["COM3", "COM5"])

    assert run(["ports"]) == 0
    out = capsys.readouterr().out
    assert "COM3" in out and "COM5" in out


def test_availability(fake_client, capsys):
    assert run(["availability"]) == 0
    out = capsys.readouterr().out
    assert "Available for holding:  1" in out


def test_reserve(fake_client, backend, capsys):
    assert run(["reserve", "--plate", "abc123", "--method", "paymaya", "--vehicle-type", "car"]) == 0

    out = capsys.readouterr().out
    assert "Success! Your slot reservation request has been submitted." in out
    assert backend.hold_payments[0]["payment_method"] == "paymaya"


def test_reserve_blank_plate(fake_client, backend, capsys):
    assert run(["reserve", "--plate", "  "]) == 2
    assert "Please enter a valid plate number" in capsys.readouterr().out
    assert backend.requests == []


def test_reserve_full_lot(fake_client, backend, capsys):
    backend.availability.update({"availableSlots": 0, "pendingHolds": 0})

    assert run(["reserve", "--plate", "ABC123"]) == 1
    assert "No parking slots are currently available" in capsys.readouterr().out


def test_serve_requires_routing(capsys):
    assert cli.serve(Settings(auto_detect_sensors=False, sensor_id1=None)) == 1
    assert "SENSOR_ID1" in capsys.readouterr().out
