import pytest

from archnode.xray import builders
from archnode.xray.compatibility import (
    IncompatibleError,
    check_compatible,
    check_config_compatible,
    protocol_issues,
    sanitize,
    validate_protocol_specific,
)
from archnode.xray.config import ConfigValidationError, Outbound, StreamSettings, new_config

NETWORKS = ["tcp", "ws", "grpc", "kcp", "httpupgrade", "xhttp"]
SECURITY = ["", "tls", "reality"]


def _stream(network: str, security: str) -> StreamSettings:
    factories = {
        "tcp": builders.make_tcp_stream_settings,
        "ws": lambda: builders.make_websocket_stream_settings("/ws", "h.example.com"),
        "grpc": lambda: builders.make_grpc_stream_settings("svc"),
        "kcp": builders.make_kcp_stream_settings,
        "httpupgrade": lambda: builders.make_httpupgrade_stream_settings("/up", "h.example.com"),
        "xhttp": lambda: builders.make_xhttp_stream_settings("h.example.com", "/x"),
    }
    stream = factories[network]()
    if security == "tls":
        stream = builders.add_tls(stream, "h.example.com")
    elif security == "reality":
        stream = builders.add_reality(stream, "example.com:443", ["example.com"], "priv", "pub")
    return stream


@pytest.mark.parametrize("protocol", ["vmess", "shadowsocks"])
def test_vmess_and_shadowsocks_reject_xhttp_and_reality(protocol: str) -> None:
    with pytest.raises(IncompatibleError, match="does not support XHTTP transport"):
        check_compatible(protocol, _stream("xhttp", ""))
    with pytest.raises(IncompatibleError, match="does not support REALITY security"):
        check_compatible(protocol, _stream("ws", "reality"))

    check_compatible(protocol, _stream("ws", "tls"))
    check_compatible(protocol, _stream("grpc", ""))


def test_trojan_only_accepts_tcp() -> None:
    with pytest.raises(IncompatibleError, match="only supports TCP transport, got 'ws'"):
        check_compatible("trojan", _stream("ws", "tls"))
    with pytest.raises(IncompatibleError, match="only supports TLS security"):
        check_compatible("trojan", _stream("tcp", "reality"))

    check_compatible("trojan", _stream("tcp", "tls"))
    check_compatible("trojan", _stream("tcp", ""))
    check_compatible("trojan", StreamSettings(network="tcp", security="none"))


@pytest.mark.parametrize("network", NETWORKS)
@pytest.mark.parametrize("security", SECURITY)
def test_vless_accepts_every_combination(network: str, security: str) -> None:
    stream = _stream(network, security)

    check_compatible("vless", stream)
    assert sanitize("vless", stream) == stream


@pytest.mark.parametrize("protocol", ["vmess", "vless", "trojan", "shadowsocks"])
@pytest.mark.parametrize("network", NETWORKS)
@pytest.mark.parametrize("security", SECURITY)
def test_sanitize_output_is_compatible_and_stable(protocol: str, network: str, security: str) -> None:
    once = sanitize(protocol, _stream(network, security))

    check_compatible(protocol, once)
    assert sanitize(protocol, once) == once


def test_sanitize_drops_blocks_of_replaced_modes() -> None:
    stream = sanitize("trojan", _stream("ws", "reality"))

    assert stream.network == "tcp"
    assert stream.ws_settings is None
    assert stream.security == "tls"
    assert stream.reality_settings is None


def test_unknown_protocol_and_missing_stream_pass() -> None:
    check_compatible("hysteria", _stream("xhttp", "reality"))
    check_compatible("vmess", None)
    assert sanitize("vmess", None) is None


def test_unknown_modes_fail_closed_only_for_restricted_protocols() -> None:
    with pytest.raises(IncompatibleError, match="unknown transport 'quic'"):
        check_compatible("vmess", StreamSettings(network="quic"))
    with pytest.raises(IncompatibleError, match="unknown security 'xtls'"):
        check_compatible("shadowsocks", StreamSettings(network="tcp", security="xtls"))

    check_compatible("vless", StreamSettings(network="quic", security="xtls"))


def test_empty_network_means_tcp() -> None:
    check_compatible("trojan", StreamSettings(network=""))


def test_check_config_compatible_names_the_offender() -> None:
    base = new_config("info")
    bad = Outbound(tag="peer", protocol="vmess", stream_settings=_stream("xhttp", ""))
    config = base.model_copy(update={"outbounds": [*base.outbounds, bad]})

    with pytest.raises(IncompatibleError, match="outbound 'peer'"):
        check_config_compatible(config)
    check_config_compatible(base)


def test_protocol_issues_require_credentials() -> None:
    base = new_config("info")
    config = base.model_copy(
        update={
            "inbounds": [
                *base.inbounds,
                builders.make_vless_inbound("vless", 2000, ""),
                builders.make_shadowsocks_inbound("ss", "", "", "tcp", 2001),
            ],
            "outbounds": [
                *base.outbounds,
                Outbound(tag="vm", protocol="vmess"),
                Outbound(tag="tj", protocol="trojan", settings={"servers": []}),
            ],
        }
    )

    issues = protocol_issues(config)

    assert "inbounds[1].settings.clients[0].id: required for vless" in issues
    assert "inbounds[2].settings.method: required for shadowsocks" in issues
    assert "inbounds[2].settings.password: required for shadowsocks" in issues
    assert "outbounds[1].settings.vnext: at least one server required for vmess" in issues
    assert "outbounds[2].settings.servers: at least one server required for trojan" in issues
    with pytest.raises(ConfigValidationError):
        validate_protocol_specific(config)


def test_infrastructure_protocols_need_no_credentials() -> None:
    base = new_config("info")
    config = base.model_copy(
        update={"outbounds": [*base.outbounds, Outbound(tag="drop", protocol="blackhole")]}
    )

    assert protocol_issues(config) == []
