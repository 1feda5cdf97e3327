from __future__ import annotations

from archnode.enums import API_TAG
from archnode.xray.compatibility import protocol_issues
from archnode.xray.config import (
    SECURITY_FIELDS,
    TRANSPORT_FIELDS,
    Config,
    ConfigValidationError,
    Inbound,
    Outbound,
    StreamSettings,
)

MIN_PORT = 1
MAX_PORT = 65536
MAX_CLIENT_PASSWORD = 64


def _alias(attr: str) -> str:
    return StreamSettings.model_fields[attr].alias or attr


def _port_issue(path: str, port: int) -> str | None:
    if port < MIN_PORT or port > MAX_PORT:
        return f"{path}: must be between {MIN_PORT} and {MAX_PORT}"
    return None


def _stream_issues(path: str, stream: StreamSettings | None) -> list[str]:
    if stream is None:
        return []
    issues: list[str] = []
    network = (stream.network or "").strip().lower()
    if not network:
        issues.append(f"{path}.network: required")

    for block_network in stream.transport_blocks():
        if network and block_network != network:
            attr = TRANSPORT_FIELDS[block_network]
            issues.append(f"{path}.{_alias(attr)}: does not match network '{network}'")

    security_blocks = stream.security_blocks()
    if len(security_blocks) > 1:
        issues.append(f"{path}: tlsSettings and realitySettings are mutually exclusive")
    for mode in security_blocks:
        if mode != stream.security_mode:
            attr = SECURITY_FIELDS[mode]
            issues.append(f"{path}.{_alias(attr)}: does not match security '{stream.security or ''}'")
    return issues


def _inbound_issues(path: str, inbound: Inbound) -> list[str]:
    issues: list[str] = []
    for name in ("listen", "protocol", "tag"):
        if not str(getattr(inbound, name) or "").strip():
            issues.append(f"{path}.{name}: required")
    port_issue = _port_issue(f"{path}.port", inbound.port)
    if port_issue:
        issues.append(port_issue)
    if inbound.settings is None:
        issues.append(f"{path}.settings: required")
    else:
        for j, client in enumerate(inbound.settings.clients or []):
            if client.password is not None and len(client.password) > MAX_CLIENT_PASSWORD:
                issues.append(f"{path}.settings.clients[{j}].password: at most {MAX_CLIENT_PASSWORD} characters")
    issues.extend(_stream_issues(f"{path}.streamSettings", inbound.stream_settings))
    return issues


def _outbound_issues(path: str, outbound: Outbound) -> list[str]:
    issues: list[str] = []
    for name in ("protocol", "tag"):
        if not str(getattr(outbound, name) or "").strip():
            issues.append(f"{path}.{name}: required")
    if outbound.settings is not None:
        for j, server in enumerate(outbound.settings.servers or []):
            if not server.address.strip():
                issues.append(f"{path}.settings.servers[{j}].address: required")
            port_issue = _port_issue(f"{path}.settings.servers[{j}].port", server.port)
            if port_issue:
                issues.append(port_issue)
        for j, server in enumerate(outbound.settings.vnext or []):
            if not server.address.strip():
                issues.append(f"{path}.settings.vnext[{j}].address: required")
            port_issue = _port_issue(f"{path}.settings.vnext[{j}].port", server.port)
            if port_issue:
                issues.append(port_issue)
    issues.extend(_stream_issues(f"{path}.streamSettings", outbound.stream_settings))
    return issues


def _routing_issues(config: Config) -> list[str]:
    routing = config.routing
    if routing is None:
        return ["routing: required"]

    issues: list[str] = []
    if not routing.domain_strategy:
        issues.append("routing.domainStrategy: required")
    if not routing.domain_matcher:
        issues.append("routing.domainMatcher: required")

    reverse = config.reverse
    inbound_tags = {i.tag for i in config.inbounds}
    outbound_tags = {o.tag for o in config.outbounds}
    if config.api is not None and config.api.tag:
        outbound_tags.add(config.api.tag)
    if reverse is not None:
        # Reverse bridges act as inbounds and portals as outbounds in routing.
        inbound_tags.update(item.tag for item in reverse.bridges)
        outbound_tags.update(item.tag for item in reverse.portals)
    balancer_tags = set()
    for j, balancer in enumerate(routing.balancers):
        if not balancer.tag:
            issues.append(f"routing.balancers[{j}].tag: required")
        balancer_tags.add(balancer.tag)

    for j, rule in enumerate(routing.rules):
        path = f"routing.rules[{j}]"
        if not rule.inbound_tag:
            issues.append(f"{path}.inboundTag: required")
        for tag in rule.inbound_tag:
            if tag not in inbound_tags:
                issues.append(f"{path}.inboundTag: unknown inbound '{tag}'")
        if rule.outbound_tag and rule.outbound_tag not in outbound_tags:
            issues.append(f"{path}.outboundTag: unknown outbound '{rule.outbound_tag}'")
        if rule.balancer_tag and rule.balancer_tag not in balancer_tags:
            issues.append(f"{path}.balancerTag: unknown balancer '{rule.balancer_tag}'")
    return issues


def config_issues(config: Config) -> list[str]:
    issues: list[str] = []

    if config.log is None:
        issues.append("log: required")
    elif not config.log.log_level:
        issues.append("log.loglevel: required")

    if config.find_inbound(API_TAG) is None:
        issues.append(f"inbounds: '{API_TAG}' inbound not found")
    seen_tags: set[str] = set()
    for i, inbound in enumerate(config.inbounds):
        issues.extend(_inbound_issues(f"inbounds[{i}]", inbound))
        if inbound.tag and inbound.tag in seen_tags:
            issues.append(f"inbounds[{i}].tag: duplicate tag '{inbound.tag}'")
        seen_tags.add(inbound.tag)

    if not config.outbounds:
        issues.append("outbounds: required")
    for i, outbound in enumerate(config.outbounds):
        issues.extend(_outbound_issues(f"outbounds[{i}]", outbound))

    if config.dns is None:
        issues.append("dns: required")
    elif not config.dns.servers:
        issues.append("dns.servers: required")

    if config.stats is None:
        issues.append("stats: required")

    if config.api is None:
        issues.append("api: required")
    else:
        if not config.api.tag:
            issues.append("api.tag: required")
        if not config.api.services:
            issues.append("api.services: required")

    if config.policy is None:
        issues.append("policy: required")

    issues.extend(_routing_issues(config))

    if config.reverse is not None:
        for kind in ("bridges", "portals"):
            for j, item in enumerate(getattr(config.reverse, kind)):
                if not item.tag:
                    issues.append(f"reverse.{kind}[{j}].tag: required")
                if not item.domain:
                    issues.append(f"reverse.{kind}[{j}].domain: required")

    issues.extend(protocol_issues(config))
    return issues


def validate_config(config: Config) -> None:
    issues = config_issues(config)
    if issues:
        raise ConfigValidationError(issues)
