import socket

import pytest

import utils


@pytest.mark.parametrize("raw,expected", [
    ("AA:BB:CC:DD:EE:FF", "aa:bb:cc:dd:ee:ff"),
    ("aa-bb-cc-dd-ee-ff", "aa:bb:cc:dd:ee:ff"),
    ("0:1b:2:c:d:e", "00:1b:02:0c:0d:0e"),
])
def test_format_mac(raw, expected):
    assert utils.format_mac(raw) == expected


@pytest.mark.parametrize("ip,valid", [
    ("192.168.1.1", True),
    ("0.0.0.0", True),
    ("256.1.1.1", False),
    ("1.2.3", False),
    ("host.lan", False),
])
def test_is_valid_ipv4(ip, valid):
    assert utils.is_valid_ipv4(ip) is valid


class TestPing:
    def test_reply_in_milliseconds(self, monkeypatch):
        calls = []

        def fake_ping(address, timeout, unit):
            calls.append((address, timeout, unit))
            return 12.5

        monkeypatch.setattr(utils, "ping", fake_ping)
        assert utils.ping_host("10.0.0.1", 1500) == 12.5
        assert calls == [("10.0.0.1", 1.5, "ms")]

    @pytest.mark.parametrize("reply", [None, False])
    def test_no_reply(self, monkeypatch, reply):
        monkeypatch.setattr(utils, "ping", lambda address, timeout, unit: reply)
        assert utils.ping_host("10.0.0.1", 100) is None


class TestReverseLookup:
    def test_resolves(self, monkeypatch):
        monkeypatch.setattr(utils.socket, "gethostbyaddr", lambda address: ("nas.lan", [], [address]))
        assert utils.reverse_lookup("10.0.0.2") == "nas.lan"

    def test_unknown_host(self, monkeypatch):
        def missing(address):
            raise socket.herror(1, "Unknown host")

        monkeypatch.setattr(utils.socket, "gethostbyaddr", missing)
        assert utils.reverse_lookup("10.0.0.2") is None


class TestNeighborMac:
    @pytest.fixture
    def arp_table(self, tmp_path, monkeypatch):
        table = tmp_path / "arp"
        table.write_text(
            "IP address       HW type     Flags       HW address            Mask     Device\n"
            "192.168.1.1      0x1         0x2         AA:BB:CC:00:00:01     *        eth0\n"
            "192.168.1.7      0x1         0x0         00:00:00:00:00:00     *        eth0\n",
            encoding="utf-8",
        )
        monkeypatch.setattr(utils, "PROC_ARP_TABLE", table)
        return table

    def test_known_neighbor(self, arp_table):
        assert utils.lookup_neighbor_mac("192.168.1.1") == "aa:bb:cc:00:00:01"

    def test_incomplete_entry(self, arp_table):
        assert utils.lookup_neighbor_mac("192.168.1.7") is None

    def test_unknown_neighbor(self, arp_table):
        assert utils.lookup_neighbor_mac("192.168.1.99") is None


class TestVendorLookup:
    def test_vendor_found(self, monkeypatch):
        class FakeLookup:
            def lookup(self, mac):
                return "Acme Corp"

        monkeypatch.setattr(utils, "_mac_lookup", FakeLookup())
        assert utils.lookup_vendor("aa:bb:cc:00:00:01") == "Acme Corp"

    def test_unknown_vendor(self, monkeypatch):
        class FakeLookup:
            def lookup(self, mac):
                raise KeyError(mac)

        monkeypatch.setattr(utils, "_mac_lookup", FakeLookup())
        assert utils.lookup_vendor("aa:bb:cc:00:00:01") is None
