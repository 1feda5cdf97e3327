from archnode.xray import builders
from archnode.xray.compatibility import check_compatible
from archnode.xray.config import config_to_dict, new_config
from archnode.xray.validation import config_issues


def test_websocket_tls_stream_composes() -> None:
    stream = builders.add_tls(builders.make_websocket_stream_settings("/ws", "cdn.example.com"), "cdn.example.com")

    assert stream.network == "ws"
    assert stream.security == "tls"
    assert stream.ws_settings.path == "/ws"
    assert stream.ws_settings.host == "cdn.example.com"
    assert stream.tls_settings.server_name == "cdn.example.com"
    assert stream.reality_settings is None


def test_security_builders_replace_each_other() -> None:
    tcp = builders.make_tcp_stream_settings()
    reality = builders.add_reality(tcp, "example.com:443", ["example.com"], "priv", "pub")
    back_to_tls = builders.add_tls(reality, "example.com")

    assert reality.security == "reality"
    assert reality.reality_settings.short_ids == [""]
    assert reality.tls_settings is None
    assert back_to_tls.security == "tls"
    assert back_to_tls.reality_settings is None


def test_builders_do_not_mutate_inputs() -> None:
    stream = builders.make_xhttp_stream_settings("h.example.com", "/x")
    before = stream.model_dump()

    builders.add_tls(stream, "h.example.com")
    builders.make_vmess_inbound("vm", 1443, "uuid", stream_settings=stream)

    assert stream.model_dump() == before
    assert stream.network == "xhttp"


def test_default_transport_is_tcp() -> None:
    inbound = builders.make_vless_inbound("vless", 2000, "uuid-1")

    assert inbound.stream_settings.network == "tcp"
    assert inbound.stream_settings.tcp_settings.header.type == "none"
    assert inbound.settings.decryption == "none"
    assert inbound.settings.clients[0].id == "uuid-1"


def test_vmess_inbound_falls_back_from_xhttp_to_websocket() -> None:
    stream = builders.add_reality(
        builders.make_xhttp_stream_settings("h.example.com", "/x"), "example.com:443", ["example.com"], "priv", "pub"
    )

    inbound = builders.make_vmess_inbound("vm", 1443, "uuid", stream_settings=stream)

    assert inbound.stream_settings.network == "ws"
    assert inbound.stream_settings.xhttp_settings is None
    assert inbound.stream_settings.ws_settings.path == "/x"
    assert inbound.stream_settings.ws_settings.host == "h.example.com"
    assert inbound.stream_settings.security == "tls"
    assert inbound.stream_settings.reality_settings is None
    assert inbound.settings.clients[0].security == "auto"
    assert inbound.settings.clients[0].alter_id == 0
    check_compatible("vmess", inbound.stream_settings)


def test_trojan_inbound_is_narrowed_to_tcp() -> None:
    inbound = builders.make_trojan_inbound(
        "tj", 8443, "secret", stream_settings=builders.make_grpc_stream_settings("svc")
    )

    assert inbound.stream_settings.network == "tcp"
    assert inbound.stream_settings.grpc_settings is None
    check_compatible("trojan", inbound.stream_settings)


def test_vless_keeps_reality_and_xhttp() -> None:
    stream = builders.add_reality(
        builders.make_xhttp_stream_settings("h.example.com", "/x"), "example.com:443", ["example.com"], "priv", "pub"
    )

    outbound = builders.make_vless_outbound("vl", "node.example.com", 443, "uuid", stream_settings=stream)

    assert outbound.stream_settings == stream
    assert outbound.settings.servers[0].encryption == "none"


def test_shadowsocks_pair() -> None:
    inbound = builders.make_shadowsocks_inbound("ss", "pw", "aes-128-gcm", "tcp,udp", 9000)
    outbound = builders.make_shadowsocks_outbound("ss-out", "peer.example.com", "pw", "aes-128-gcm", 9000)

    assert inbound.stream_settings is None
    assert inbound.settings.method == "aes-128-gcm"
    assert inbound.settings.network == "tcp,udp"
    assert outbound.settings.servers[0].uot is True
    assert outbound.stream_settings.network == "tcp"


def test_vmess_outbound_uses_vnext() -> None:
    outbound = builders.make_vmess_outbound("vm-out", "peer.example.com", 443, "uuid", encryption="")

    payload = config_to_dict(new_config("info").model_copy(update={"outbounds": [outbound]}))

    server = payload["outbounds"][0]["settings"]["vnext"][0]
    assert server["address"] == "peer.example.com"
    assert server["users"][0] == {"id": "uuid", "alterId": 0, "security": "auto", "level": 0}


def test_built_config_passes_validation() -> None:
    base = new_config("info")
    config = base.model_copy(
        update={
            "inbounds": [
                *base.inbounds,
                builders.make_vless_inbound("vless", 2000, "uuid-1"),
                builders.make_trojan_inbound("trojan", 2001, "pw"),
                builders.make_shadowsocks_inbound("ss", "pw", "aes-128-gcm", "tcp", 2002),
            ],
            "outbounds": [
                *base.outbounds,
                builders.make_vmess_outbound("vm-out", "peer.example.com", 443, "uuid"),
            ],
        }
    )

    assert config_issues(config) == []
