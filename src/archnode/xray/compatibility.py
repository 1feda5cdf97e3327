from __future__ import annotations

from dataclasses import dataclass

from archnode.enums import INFRASTRUCTURE_PROTOCOLS, Network, ProxyProtocol, Security
from archnode.xray.config import (
    SECURITY_FIELDS,
    TRANSPORT_FIELDS,
    Config,
    ConfigValidationError,
    InboundSettings,
    Outbound,
    StreamSettings,
    WebSocketSettings,
)


class IncompatibleError(ValueError):
    pass


ALL_NETWORKS = frozenset(n.value for n in Network)
ALL_SECURITY = frozenset(s.value for s in Security)


@dataclass(frozen=True)
class ProtocolRule:
    label: str
    networks: frozenset[str]
    security: frozenset[str]
    network_fallback: str
    security_fallback: str
    # Narrow protocols accept exactly one transport and reject everything else by name.
    narrow: bool = False

    @property
    def restricted(self) -> bool:
        return self.networks != ALL_NETWORKS or self.security != ALL_SECURITY


_RULES: dict[str, ProtocolRule] = {
    ProxyProtocol.VMESS.value: ProtocolRule(
        label="VMess",
        networks=ALL_NETWORKS - {Network.XHTTP.value},
        security=frozenset({Security.NONE.value, Security.TLS.value}),
        network_fallback=Network.WS.value,
        security_fallback=Security.TLS.value,
    ),
    ProxyProtocol.VLESS.value: ProtocolRule(
        label="VLESS",
        networks=ALL_NETWORKS,
        security=ALL_SECURITY,
        network_fallback=Network.TCP.value,
        security_fallback=Security.NONE.value,
    ),
    ProxyProtocol.TROJAN.value: ProtocolRule(
        label="Trojan",
        networks=frozenset({Network.TCP.value}),
        security=frozenset({Security.NONE.value, Security.TLS.value}),
        network_fallback=Network.TCP.value,
        security_fallback=Security.TLS.value,
        narrow=True,
    ),
    ProxyProtocol.SHADOWSOCKS.value: ProtocolRule(
        label="Shadowsocks",
        networks=ALL_NETWORKS - {Network.XHTTP.value},
        security=frozenset({Security.NONE.value, Security.TLS.value}),
        network_fallback=Network.WS.value,
        security_fallback=Security.TLS.value,
    ),
}


def rule_for(protocol: str) -> ProtocolRule | None:
    return _RULES.get(str(protocol or "").strip().lower())


def _network_of(stream: StreamSettings) -> str:
    # Xray treats a missing network as tcp.
    return (stream.network or "").strip().lower() or Network.TCP.value


def check_compatible(protocol: str, stream: StreamSettings | None) -> None:
    """Strict check used before accepting a caller-supplied config; raises IncompatibleError."""
    rule = rule_for(protocol)
    if rule is None or stream is None or not rule.restricted:
        return

    network = _network_of(stream)
    if network not in ALL_NETWORKS:
        raise IncompatibleError(f"{rule.label} protocol: unknown transport '{network}'")
    if network not in rule.networks:
        if rule.narrow:
            raise IncompatibleError(f"{rule.label} protocol only supports TCP transport, got '{network}'")
        raise IncompatibleError(f"{rule.label} protocol does not support {network.upper()} transport")

    security = stream.security_mode
    if security not in ALL_SECURITY:
        raise IncompatibleError(f"{rule.label} protocol: unknown security '{security}'")
    if security not in rule.security:
        if rule.narrow:
            raise IncompatibleError(f"{rule.label} protocol only supports TLS security, got '{security}'")
        raise IncompatibleError(f"{rule.label} protocol does not support {security.upper()} security")


def sanitize(protocol: str, stream: StreamSettings | None) -> StreamSettings | None:
    """
    Rewrite a stream fragment into the nearest combination legal for `protocol`.

    Disallowed transports and security modes are replaced by the protocol's
    fallback and their settings blocks are dropped. Applying it twice gives
    the same result as applying it once.
    """
    rule = rule_for(protocol)
    if rule is None or stream is None or not rule.restricted:
        return stream

    updates: dict[str, object] = {}

    network = _network_of(stream)
    if network not in rule.networks:
        if network in TRANSPORT_FIELDS:
            updates[TRANSPORT_FIELDS[network]] = None
        updates["network"] = rule.network_fallback
        if rule.network_fallback == Network.WS.value and stream.ws_settings is None and stream.xhttp_settings:
            updates["ws_settings"] = WebSocketSettings(
                path=stream.xhttp_settings.path,
                host=stream.xhttp_settings.host,
            )

    security = stream.security_mode
    if security not in rule.security:
        if security in SECURITY_FIELDS:
            updates[SECURITY_FIELDS[security]] = None
        updates["security"] = rule.security_fallback or None

    if not updates:
        return stream
    return stream.model_copy(update=updates)


def check_config_compatible(config: Config) -> None:
    for inbound in config.inbounds:
        try:
            check_compatible(inbound.protocol, inbound.stream_settings)
        except IncompatibleError as exc:
            raise IncompatibleError(f"inbound '{inbound.tag}': {exc}") from exc
    for outbound in config.outbounds:
        try:
            check_compatible(outbound.protocol, outbound.stream_settings)
        except IncompatibleError as exc:
            raise IncompatibleError(f"outbound '{outbound.tag}': {exc}") from exc


def _needs_credentials(protocol: str) -> bool:
    if protocol in INFRASTRUCTURE_PROTOCOLS:
        return False
    # Unknown protocols pass through unvalidated.
    return protocol in _RULES


def _inbound_issues(path: str, protocol: str, settings: InboundSettings) -> list[str]:
    issues: list[str] = []
    clients = settings.clients or []

    if protocol == ProxyProtocol.SHADOWSOCKS.value:
        if not clients:
            if not settings.method:
                issues.append(f"{path}.settings.method: required for shadowsocks")
            if not settings.password:
                issues.append(f"{path}.settings.password: required for shadowsocks")
        for j, client in enumerate(clients):
            if not client.method:
                issues.append(f"{path}.settings.clients[{j}].method: required for shadowsocks")
            if not client.password:
                issues.append(f"{path}.settings.clients[{j}].password: required for shadowsocks")
    elif protocol in {ProxyProtocol.VMESS.value, ProxyProtocol.VLESS.value}:
        for j, client in enumerate(clients):
            if not client.id:
                issues.append(f"{path}.settings.clients[{j}].id: required for {protocol}")
    elif protocol == ProxyProtocol.TROJAN.value:
        for j, client in enumerate(clients):
            if not client.password:
                issues.append(f"{path}.settings.clients[{j}].password: required for trojan")
    return issues


def _outbound_issues(path: str, outbound: Outbound) -> list[str]:
    protocol = outbound.protocol.strip().lower()
    settings = outbound.settings
    issues: list[str] = []

    if protocol == ProxyProtocol.VMESS.value:
        vnext = (settings.vnext if settings else None) or []
        if not vnext:
            return [f"{path}.settings.vnext: at least one server required for vmess"]
        for j, server in enumerate(vnext):
            if not server.users:
                issues.append(f"{path}.settings.vnext[{j}].users: at least one user required for vmess")
            for k, user in enumerate(server.users):
                if not user.id:
                    issues.append(f"{path}.settings.vnext[{j}].users[{k}].id: required for vmess")
        return issues

    servers = (settings.servers if settings else None) or []
    if not servers:
        return [f"{path}.settings.servers: at least one server required for {protocol}"]
    for j, server in enumerate(servers):
        prefix = f"{path}.settings.servers[{j}]"
        if protocol == ProxyProtocol.SHADOWSOCKS.value:
            if not server.method:
                issues.append(f"{prefix}.method: required for shadowsocks")
            if not server.password:
                issues.append(f"{prefix}.password: required for shadowsocks")
        elif protocol == ProxyProtocol.VLESS.value:
            if not server.id:
                issues.append(f"{prefix}.id: required for vless")
        elif protocol == ProxyProtocol.TROJAN.value:
            if not server.password:
                issues.append(f"{prefix}.password: required for trojan")
    return issues


def protocol_issues(config: Config) -> list[str]:
    issues: list[str] = []
    for i, inbound in enumerate(config.inbounds):
        protocol = inbound.protocol.strip().lower()
        if _needs_credentials(protocol):
            issues.extend(_inbound_issues(f"inbounds[{i}]", protocol, inbound.settings or InboundSettings()))
    for i, outbound in enumerate(config.outbounds):
        if _needs_credentials(outbound.protocol.strip().lower()):
            issues.extend(_outbound_issues(f"outbounds[{i}]", outbound))
    return issues


def validate_protocol_specific(config: Config) -> None:
    issues = protocol_issues(config)
    if issues:
        raise ConfigValidationError(issues)
