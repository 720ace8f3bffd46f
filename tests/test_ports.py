"""Tests for deterministic tunnel port allocation and the service tables."""

import pytest

from fleetmux.remote.tunnels import (
    PORT_SUFFIXES,
    REMOTE_PORTS,
    Service,
    calculate_local_port,
    remote_port,
)


def test_markc_powerdns_port_is_stable():
    assert calculate_local_port("markc", "powerdns") == 18371
    assert calculate_local_port("markc", "powerdns") == 18371


@pytest.mark.parametrize(
    "service, expected",
    [
        ("powerdns", 18371),
        ("pdns", 18371),
        ("mysql", 18376),
        ("db", 18376),
        ("redis", 18379),
        ("api", 18370),
        ("something-else", 18370),
    ],
)
def test_service_suffix_digit(service, expected):
    assert calculate_local_port("markc", service) == expected


def test_ports_are_five_digits_starting_with_one():
    for alias in ("a", "web1", "mail.example.com", "n" * 64, "ünïcode"):
        port = calculate_local_port(alias, "mysql")
        assert 10000 <= port <= 19999
        assert str(port).startswith("1")
        assert str(port).endswith("6")


def test_distinct_aliases_get_distinct_ports():
    aliases = ["markc", "markd", "web1", "web2", "mail1", "ns1", "ns2", "db1"]
    ports = {calculate_local_port(alias, "api") for alias in aliases}
    assert len(ports) == len(aliases)


def test_remote_port_table():
    assert remote_port("powerdns") == remote_port("pdns") == 8081
    assert remote_port("mysql") == remote_port("db") == 3306
    assert remote_port("redis") == 6379
    assert remote_port("unknown-service") == 8080


def test_service_names_are_case_insensitive():
    assert Service.from_name(" PDNS ") is Service.POWERDNS
    assert Service.from_name(None) is Service.API


def test_tables_cover_every_service():
    assert set(PORT_SUFFIXES) == set(Service)
    assert set(REMOTE_PORTS) == set(Service)
