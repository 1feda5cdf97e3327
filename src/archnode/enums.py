from enum import Enum


class ProxyProtocol(str, Enum):
    SHADOWSOCKS = "shadowsocks"
    VLESS = "vless"
    VMESS = "vmess"
    TROJAN = "trojan"


class Network(str, Enum):
    TCP = "tcp"
    WS = "ws"
    GRPC = "grpc"
    KCP = "kcp"
    HTTPUPGRADE = "httpupgrade"
    XHTTP = "xhttp"


class Security(str, Enum):
    NONE = ""
    TLS = "tls"
    REALITY = "reality"


# Protocols that carry no user credentials; credential rules never apply to them.
INFRASTRUCTURE_PROTOCOLS = frozenset(
    {
        "freedom",
        "blackhole",
        "dokodemo-door",
        "loopback",
        "dns",
        "socks",
        "http",
        "wireguard",
    }
)

API_TAG = "api"
REMOTE_TAG = "remote"
