"""
Builders for protocol, transport and security fragments.

Every builder is pure: it returns a new fragment and never mutates its
arguments. Transport fragments compose with `add_tls`/`add_reality`, and the
result can be handed to any protocol builder, which sanitizes it for that
protocol:

    stream = add_tls(make_websocket_stream_settings("/ws", "cdn.example.com"), "cdn.example.com")
    inbound = make_vmess_inbound("vmess-wss", 8443, uuid, stream_settings=stream)
"""

from __future__ import annotations

from archnode.enums import Network, ProxyProtocol, Security
from archnode.xray.compatibility import sanitize
from archnode.xray.config import (
    Client,
    GrpcSettings,
    HeaderSettings,
    HttpUpgradeSettings,
    Inbound,
    InboundSettings,
    KcpSettings,
    Outbound,
    OutboundServer,
    OutboundSettings,
    RealitySettings,
    StreamSettings,
    TcpSettings,
    TlsCertificate,
    TlsSettings,
    VnextServer,
    VnextUser,
    WebSocketSettings,
    XhttpSettings,
)

DEFAULT_LISTEN = "0.0.0.0"


def _stream_for(protocol: ProxyProtocol, stream_settings: StreamSettings | None) -> StreamSettings:
    return sanitize(protocol.value, stream_settings or make_tcp_stream_settings())


# Transports


def make_tcp_stream_settings() -> StreamSettings:
    return StreamSettings(network=Network.TCP.value, tcp_settings=TcpSettings(header=HeaderSettings(type="none")))


def make_websocket_stream_settings(path: str, host: str = "") -> StreamSettings:
    return StreamSettings(
        network=Network.WS.value,
        ws_settings=WebSocketSettings(path=path or "/", host=host or None),
    )


def make_grpc_stream_settings(service_name: str, authority: str = "") -> StreamSettings:
    return StreamSettings(
        network=Network.GRPC.value,
        grpc_settings=GrpcSettings(service_name=service_name, authority=authority or None, multi_mode=False),
    )


def make_kcp_stream_settings(header_type: str = "none", seed: str = "") -> StreamSettings:
    return StreamSettings(
        network=Network.KCP.value,
        kcp_settings=KcpSettings(
            mtu=1350,
            tti=50,
            uplink_capacity=5,
            downlink_capacity=20,
            congestion=False,
            read_buffer_size=2,
            write_buffer_size=2,
            header=HeaderSettings(type=header_type or "none"),
            seed=seed or None,
        ),
    )


def make_httpupgrade_stream_settings(path: str, host: str = "") -> StreamSettings:
    return StreamSettings(
        network=Network.HTTPUPGRADE.value,
        httpupgrade_settings=HttpUpgradeSettings(path=path or "/", host=host or None),
    )


def make_xhttp_stream_settings(host: str, path: str, mode: str = "auto") -> StreamSettings:
    return StreamSettings(
        network=Network.XHTTP.value,
        xhttp_settings=XhttpSettings(host=host or None, path=path or "/", mode=mode or "auto"),
    )


# Security


def add_tls(
    stream_settings: StreamSettings,
    server_name: str,
    allow_insecure: bool = False,
    *,
    alpn: list[str] | None = None,
    certificates: list[TlsCertificate] | None = None,
) -> StreamSettings:
    return stream_settings.model_copy(
        update={
            "security": Security.TLS.value,
            "tls_settings": TlsSettings(
                server_name=server_name or None,
                allow_insecure=allow_insecure,
                alpn=list(alpn) if alpn else None,
                certificates=list(certificates) if certificates else None,
            ),
            "reality_settings": None,
        }
    )


def add_reality(
    stream_settings: StreamSettings,
    dest: str,
    server_names: list[str],
    private_key: str,
    public_key: str,
    *,
    short_ids: list[str] | None = None,
    fingerprint: str = "chrome",
) -> StreamSettings:
    return stream_settings.model_copy(
        update={
            "security": Security.REALITY.value,
            "reality_settings": RealitySettings(
                show=False,
                dest=dest,
                xver=0,
                server_names=list(server_names),
                private_key=private_key,
                public_key=public_key,
                short_ids=list(short_ids) if short_ids is not None else [""],
                fingerprint=fingerprint,
            ),
            "tls_settings": None,
        }
    )


# Shadowsocks


def make_shadowsocks_inbound(
    tag: str,
    password: str,
    method: str,
    network: str,
    port: int,
    clients: list[Client] | None = None,
) -> Inbound:
    return Inbound(
        tag=tag,
        protocol=ProxyProtocol.SHADOWSOCKS.value,
        listen=DEFAULT_LISTEN,
        port=port,
        settings=InboundSettings(
            clients=list(clients or []),
            password=password,
            method=method,
            network=network,
        ),
    )


def make_shadowsocks_outbound(
    tag: str,
    host: str,
    password: str,
    method: str,
    port: int,
    stream_settings: StreamSettings | None = None,
) -> Outbound:
    return Outbound(
        tag=tag,
        protocol=ProxyProtocol.SHADOWSOCKS.value,
        settings=OutboundSettings(
            servers=[OutboundServer(address=host, port=port, method=method, password=password, uot=True)],
        ),
        stream_settings=_stream_for(ProxyProtocol.SHADOWSOCKS, stream_settings),
    )


# VLESS


def make_vless_inbound(
    tag: str,
    port: int,
    uuid: str,
    stream_settings: StreamSettings | None = None,
    *,
    email: str | None = None,
    flow: str | None = None,
) -> Inbound:
    return Inbound(
        tag=tag,
        protocol=ProxyProtocol.VLESS.value,
        listen=DEFAULT_LISTEN,
        port=port,
        settings=InboundSettings(
            clients=[Client(id=uuid, email=email, flow=flow, level=0)],
            decryption="none",
        ),
        stream_settings=_stream_for(ProxyProtocol.VLESS, stream_settings),
    )


def make_vless_outbound(
    tag: str,
    address: str,
    port: int,
    uuid: str,
    stream_settings: StreamSettings | None = None,
    *,
    flow: str | None = None,
) -> Outbound:
    return Outbound(
        tag=tag,
        protocol=ProxyProtocol.VLESS.value,
        settings=OutboundSettings(
            servers=[OutboundServer(address=address, port=port, id=uuid, encryption="none", flow=flow, level=0)],
        ),
        stream_settings=_stream_for(ProxyProtocol.VLESS, stream_settings),
    )


# VMess


def make_vmess_inbound(
    tag: str,
    port: int,
    uuid: str,
    encryption: str = "auto",
    stream_settings: StreamSettings | None = None,
    *,
    email: str | None = None,
) -> Inbound:
    return Inbound(
        tag=tag,
        protocol=ProxyProtocol.VMESS.value,
        listen=DEFAULT_LISTEN,
        port=port,
        settings=InboundSettings(
            clients=[Client(id=uuid, security=encryption or "auto", alter_id=0, email=email, level=0)],
        ),
        stream_settings=_stream_for(ProxyProtocol.VMESS, stream_settings),
    )


def make_vmess_outbound(
    tag: str,
    address: str,
    port: int,
    uuid: str,
    encryption: str = "auto",
    stream_settings: StreamSettings | None = None,
) -> Outbound:
    return Outbound(
        tag=tag,
        protocol=ProxyProtocol.VMESS.value,
        settings=OutboundSettings(
            vnext=[
                VnextServer(
                    address=address,
                    port=port,
                    users=[VnextUser(id=uuid, alter_id=0, security=encryption or "auto", level=0)],
                )
            ],
        ),
        stream_settings=_stream_for(ProxyProtocol.VMESS, stream_settings),
    )


# Trojan


def make_trojan_inbound(
    tag: str,
    port: int,
    password: str,
    stream_settings: StreamSettings | None = None,
    *,
    email: str | None = None,
) -> Inbound:
    return Inbound(
        tag=tag,
        protocol=ProxyProtocol.TROJAN.value,
        listen=DEFAULT_LISTEN,
        port=port,
        settings=InboundSettings(clients=[Client(password=password, email=email, level=0)]),
        stream_settings=_stream_for(ProxyProtocol.TROJAN, stream_settings),
    )


def make_trojan_outbound(
    tag: str,
    address: str,
    port: int,
    password: str,
    stream_settings: StreamSettings | None = None,
) -> Outbound:
    return Outbound(
        tag=tag,
        protocol=ProxyProtocol.TROJAN.value,
        settings=OutboundSettings(servers=[OutboundServer(address=address, port=port, password=password, level=0)]),
        stream_settings=_stream_for(ProxyProtocol.TROJAN, stream_settings),
    )
