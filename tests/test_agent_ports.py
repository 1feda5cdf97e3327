import socket

import pytest

from archnode.agent import ports
from archnode.agent.ports import (
    PortAllocationError,
    PortConflictError,
    find_free_port,
    is_port_free,
    resolve_inbound_conflicts,
)
from archnode.xray import builders
from archnode.xray.config import new_config


def test_is_port_free_detects_bound_socket() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("0.0.0.0", 0))
        sock.listen(1)
        busy = sock.getsockname()[1]

        assert is_port_free(busy) is False

    assert is_port_free(0) is False
    assert is_port_free(70000) is False


def test_find_free_port_skips_excluded_and_busy(monkeypatch: pytest.MonkeyPatch) -> None:
    picks = iter([2000, 3000, 4000])
    monkeypatch.setattr(ports.random, "randint", lambda a, b: next(picks))

    port = find_free_port(exclude={2000}, is_free=lambda p: p != 3000)

    assert port == 4000


def test_find_free_port_gives_up() -> None:
    with pytest.raises(PortAllocationError):
        find_free_port(5, is_free=lambda p: False)


def test_find_free_port_stays_out_of_privileged_range(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[tuple[int, int]] = []

    def _randint(a: int, b: int) -> int:
        seen.append((a, b))
        return a

    monkeypatch.setattr(ports.random, "randint", _randint)

    assert find_free_port(is_free=lambda p: True) == 1025
    assert seen == [(1025, 65535)]


def test_busy_port_is_a_conflict() -> None:
    inbound = builders.make_vless_inbound("vless", 2000, "uuid")

    with pytest.raises(PortConflictError, match=r"The port 'vless\.2000' is already in use"):
        resolve_inbound_conflicts([inbound], new_config("info"), is_free=lambda p: False)


def test_free_ports_pass_through_unchanged() -> None:
    inbound = builders.make_vless_inbound("vless", 2000, "uuid")

    assert resolve_inbound_conflicts([inbound], None, is_free=lambda p: True) == [inbound]


def test_remote_may_keep_its_running_port() -> None:
    base = new_config("info")
    running = base.model_copy(update={"inbounds": [*base.inbounds, builders.make_vless_inbound("remote", 2000, "a")]})
    candidate = builders.make_vless_inbound("remote", 2000, "b")

    resolved = resolve_inbound_conflicts([candidate], running, is_free=lambda p: False)

    assert resolved == [candidate]


def test_remote_on_a_different_busy_port_is_a_conflict() -> None:
    base = new_config("info")
    running = base.model_copy(update={"inbounds": [*base.inbounds, builders.make_vless_inbound("remote", 2000, "a")]})

    with pytest.raises(PortConflictError):
        resolve_inbound_conflicts(
            [builders.make_vless_inbound("remote", 2001, "a")], running, is_free=lambda p: False
        )
    with pytest.raises(PortConflictError):
        resolve_inbound_conflicts([builders.make_vless_inbound("remote", 2000, "a")], base, is_free=lambda p: False)


def test_api_inbound_gets_a_fresh_port() -> None:
    config = new_config("info", api_port=3411)
    requested: list[set[int]] = []

    def _allocate(*, exclude: set[int]) -> int:
        requested.append(set(exclude))
        return 5000

    resolved = resolve_inbound_conflicts(config.inbounds, None, is_free=lambda p: True, allocate=_allocate)

    assert resolved[0].port == 5000
    assert resolved[0].tag == "api"
    assert requested == [{3411}]
    assert config.inbounds[0].port == 3411


def test_api_allocation_failure_is_reported() -> None:
    def _allocate(*, exclude: set[int]) -> int:
        raise PortAllocationError("exhausted")

    with pytest.raises(PortAllocationError, match="API inbound port failed"):
        resolve_inbound_conflicts(new_config("info").inbounds, None, allocate=_allocate)
