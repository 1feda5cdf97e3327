from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from archnode.enums import API_TAG


class ConfigValidationError(ValueError):
    """Raised with every field-level problem found in a config document."""

    def __init__(self, issues: list[str]) -> None:
        self.issues = list(issues)
        super().__init__("; ".join(self.issues) or "invalid config")


class XrayModel(BaseModel):
    # Frozen: a running config is only ever replaced, never edited in place.
    # Unknown keys (sniffing, fallbacks, ...) are kept so manager documents round-trip.
    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)


class Log(XrayModel):
    log_level: str = Field(default="", alias="loglevel")
    access: str | None = None
    error: str | None = None


class Client(XrayModel):
    id: str | None = None
    password: str | None = None
    method: str | None = None
    security: str | None = None
    email: str | None = None
    flow: str | None = None
    alter_id: int | None = Field(default=None, alias="alterId")
    level: int | None = None


class InboundSettings(XrayModel):
    address: str | None = None
    clients: list[Client] | None = None
    network: str | None = None
    method: str | None = None
    password: str | None = None
    decryption: str | None = None


class HeaderSettings(XrayModel):
    type: str = "none"


class TcpSettings(XrayModel):
    header: HeaderSettings | None = None
    accept_proxy_protocol: bool | None = Field(default=None, alias="acceptProxyProtocol")


class WebSocketSettings(XrayModel):
    path: str = "/"
    host: str | None = None
    headers: dict[str, str] | None = None


class GrpcSettings(XrayModel):
    service_name: str = Field(default="", alias="serviceName")
    authority: str | None = None
    multi_mode: bool | None = Field(default=None, alias="multiMode")


class KcpSettings(XrayModel):
    mtu: int | None = None
    tti: int | None = None
    uplink_capacity: int | None = Field(default=None, alias="uplinkCapacity")
    downlink_capacity: int | None = Field(default=None, alias="downlinkCapacity")
    congestion: bool | None = None
    read_buffer_size: int | None = Field(default=None, alias="readBufferSize")
    write_buffer_size: int | None = Field(default=None, alias="writeBufferSize")
    header: HeaderSettings | None = None
    seed: str | None = None


class HttpUpgradeSettings(XrayModel):
    path: str = "/"
    host: str | None = None


class XhttpSettings(XrayModel):
    host: str | None = None
    path: str = "/"
    mode: str | None = None


class TlsCertificate(XrayModel):
    certificate_file: str = Field(default="", alias="certificateFile")
    key_file: str = Field(default="", alias="keyFile")


class TlsSettings(XrayModel):
    server_name: str | None = Field(default=None, alias="serverName")
    allow_insecure: bool | None = Field(default=None, alias="allowInsecure")
    alpn: list[str] | None = None
    certificates: list[TlsCertificate] | None = None


class RealitySettings(XrayModel):
    show: bool | None = None
    dest: str | None = None
    xver: int | None = None
    server_names: list[str] | None = Field(default=None, alias="serverNames")
    private_key: str | None = Field(default=None, alias="privateKey")
    public_key: str | None = Field(default=None, alias="publicKey")
    short_ids: list[str] | None = Field(default=None, alias="shortIds")
    fingerprint: str | None = None


# Attribute holding each transport's settings block on StreamSettings.
TRANSPORT_FIELDS: dict[str, str] = {
    "tcp": "tcp_settings",
    "ws": "ws_settings",
    "grpc": "grpc_settings",
    "kcp": "kcp_settings",
    "httpupgrade": "httpupgrade_settings",
    "xhttp": "xhttp_settings",
}

SECURITY_FIELDS: dict[str, str] = {
    "tls": "tls_settings",
    "reality": "reality_settings",
}


class StreamSettings(XrayModel):
    network: str = ""
    security: str | None = None
    tcp_settings: TcpSettings | None = Field(default=None, alias="tcpSettings")
    ws_settings: WebSocketSettings | None = Field(default=None, alias="wsSettings")
    grpc_settings: GrpcSettings | None = Field(default=None, alias="grpcSettings")
    kcp_settings: KcpSettings | None = Field(default=None, alias="kcpSettings")
    httpupgrade_settings: HttpUpgradeSettings | None = Field(default=None, alias="httpupgradeSettings")
    xhttp_settings: XhttpSettings | None = Field(default=None, alias="xhttpSettings")
    tls_settings: TlsSettings | None = Field(default=None, alias="tlsSettings")
    reality_settings: RealitySettings | None = Field(default=None, alias="realitySettings")

    @property
    def security_mode(self) -> str:
        """Security with "none" folded into the empty string."""
        value = (self.security or "").strip().lower()
        return "" if value == "none" else value

    def transport_blocks(self) -> dict[str, Any]:
        return {network: getattr(self, attr) for network, attr in TRANSPORT_FIELDS.items() if getattr(self, attr)}

    def security_blocks(self) -> dict[str, Any]:
        return {mode: getattr(self, attr) for mode, attr in SECURITY_FIELDS.items() if getattr(self, attr)}


class Inbound(XrayModel):
    listen: str = ""
    port: int = 0
    protocol: str = ""
    tag: str = ""
    settings: InboundSettings | None = None
    stream_settings: StreamSettings | None = Field(default=None, alias="streamSettings")


class OutboundServer(XrayModel):
    address: str = ""
    port: int = 0
    method: str | None = None
    password: str | None = None
    id: str | None = None
    encryption: str | None = None
    flow: str | None = None
    uot: bool | None = None
    alter_id: int | None = Field(default=None, alias="alterId")
    level: int | None = None


class VnextUser(XrayModel):
    id: str = ""
    alter_id: int | None = Field(default=None, alias="alterId")
    security: str | None = None
    level: int | None = None
    email: str | None = None


class VnextServer(XrayModel):
    address: str = ""
    port: int = 0
    users: list[VnextUser] = Field(default_factory=list)


class OutboundSettings(XrayModel):
    servers: list[OutboundServer] | None = None
    vnext: list[VnextServer] | None = None


class Outbound(XrayModel):
    protocol: str = ""
    tag: str = ""
    settings: OutboundSettings | None = None
    stream_settings: StreamSettings | None = Field(default=None, alias="streamSettings")


class DNS(XrayModel):
    servers: list[str] = Field(default_factory=list)


class API(XrayModel):
    tag: str = ""
    services: list[str] = Field(default_factory=list)


class Policy(XrayModel):
    levels: dict[str, dict[str, Any]] = Field(default_factory=dict)
    system: dict[str, Any] = Field(default_factory=dict)


class Rule(XrayModel):
    inbound_tag: list[str] = Field(default_factory=list, alias="inboundTag")
    outbound_tag: str | None = Field(default=None, alias="outboundTag")
    balancer_tag: str | None = Field(default=None, alias="balancerTag")
    domain: list[str] | None = None


class Balancer(XrayModel):
    tag: str = ""
    selector: list[str] = Field(default_factory=list)


class Routing(XrayModel):
    domain_strategy: str = Field(default="", alias="domainStrategy")
    domain_matcher: str = Field(default="", alias="domainMatcher")
    rules: list[Rule] = Field(default_factory=list)
    balancers: list[Balancer] = Field(default_factory=list)


class ReverseItem(XrayModel):
    tag: str = ""
    domain: str = ""


class Reverse(XrayModel):
    bridges: list[ReverseItem] = Field(default_factory=list)
    portals: list[ReverseItem] = Field(default_factory=list)


class Metadata(XrayModel):
    updated_at: str = Field(default="", alias="updatedAt")
    updated_by: str = Field(default="", alias="UpdatedBy")


class Config(XrayModel):
    log: Log | None = None
    inbounds: list[Inbound] = Field(default_factory=list)
    outbounds: list[Outbound] = Field(default_factory=list)
    dns: DNS | None = None
    stats: dict[str, Any] | None = None
    api: API | None = None
    policy: Policy | None = None
    routing: Routing | None = None
    reverse: Reverse | None = None
    metadata: Metadata | None = Field(default=None, alias="_metadata")

    def find_inbound(self, tag: str) -> Inbound | None:
        for inbound in self.inbounds:
            if inbound.tag == tag:
                return inbound
        return None

    def find_outbound(self, tag: str) -> Outbound | None:
        for outbound in self.outbounds:
            if outbound.tag == tag:
                return outbound
        return None

    def find_balancer(self, tag: str) -> Balancer | None:
        if self.routing is None:
            return None
        for balancer in self.routing.balancers:
            if balancer.tag == tag:
                return balancer
        return None


def parse_config(payload: Any) -> Config:
    """Build a Config from decoded JSON; raises pydantic.ValidationError on type errors."""
    return Config.model_validate(payload)


def config_to_dict(config: Config) -> dict[str, Any]:
    return config.model_dump(mode="json", by_alias=True, exclude_none=True)


def canonical_json(config: Config) -> str:
    return json.dumps(config_to_dict(config), sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def equals(a: Config | None, b: Config | None) -> bool:
    if a is None or b is None:
        return a is b
    return canonical_json(a) == canonical_json(b)


def new_config(
    log_level: str,
    *,
    access_log: str = "./storage/logs/xray-access.log",
    error_log: str = "./storage/logs/xray-error.log",
    api_port: int = 3411,
) -> Config:
    """The config a node runs before any manager or API caller has supplied one."""
    return Config(
        log=Log(log_level=log_level, access=access_log or None, error=error_log or None),
        inbounds=[
            Inbound(
                tag=API_TAG,
                protocol="dokodemo-door",
                listen="127.0.0.1",
                port=api_port,
                settings=InboundSettings(address="127.0.0.1", network="tcp"),
            )
        ],
        outbounds=[Outbound(tag="out", protocol="freedom")],
        dns=DNS(servers=["8.8.8.8", "8.8.4.4", "localhost"]),
        stats={},
        api=API(tag=API_TAG, services=["StatsService"]),
        policy=Policy(
            levels={"0": {"statsUserUplink": True, "statsUserDownlink": True}},
            system={
                "statsInboundUplink": True,
                "statsInboundDownlink": True,
                "statsOutboundUplink": True,
                "statsOutboundDownlink": True,
            },
        ),
        routing=Routing(
            domain_strategy="AsIs",
            domain_matcher="hybrid",
            rules=[Rule(inbound_tag=[API_TAG], outbound_tag=API_TAG)],
            balancers=[],
        ),
        reverse=Reverse(bridges=[], portals=[]),
    )
