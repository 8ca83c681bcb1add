# payload_models.py
"""
Centraliza a criação e a leitura de todas as linhas (contratos)
trocadas entre Servidor e Cliente.

Servidor -> Cliente:  "CLIENTES:ip1:porta1,ip2:porta2"  ou texto puro
Cliente -> Servidor:  "ALL:<mensagem>"  ou  "<ip>:<porta>:<mensagem>"
"""
import ipaddress
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

from logs.logger import logger

ROSTER_PREFIX = "CLIENTES:"
BROADCAST_PREFIX = "ALL:"

# "[::1]:5000:msg" (IPv6 entre colchetes) ou "10.0.0.1:5000:msg"
_ADDRESSED_RE = re.compile(
    r"^(?:\[(?P<ip6>[^\]]+)\]|(?P<ip>[^:\[\]\s]+)):(?P<port>\d{1,5}):(?P<body>.*)$",
    re.DOTALL
)


def ensure_single_line(text: str) -> str:
    """O protocolo é uma mensagem por linha: quebras internas quebrariam o enquadramento."""
    if "\n" in text or "\r" in text:
        raise ValueError("A mensagem não pode conter quebras de linha")
    return text


def normalize_ip(ip: str) -> str:
    """Converte IPv4 mapeado em IPv6 (::ffff:a.b.c.d) para IPv4. Hostnames passam direto."""
    try:
        parsed = ipaddress.ip_address(ip)
    except ValueError:
        return ip
    if parsed.version == 6 and parsed.ipv4_mapped is not None:
        return str(parsed.ipv4_mapped)
    return str(parsed)


@dataclass(frozen=True)
class PeerAddress:
    """Endpoint de um peer. Chave do roster; igualdade por ip + porta."""

    ip: str
    port: int

    def __post_init__(self):
        if not self.ip:
            raise ValueError("ip vazio")
        if not isinstance(self.port, int) or not (0 <= self.port <= 65535):
            raise ValueError(f"porta inválida: {self.port!r}")

    def __str__(self) -> str:
        if ":" in self.ip:
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"

    @classmethod
    def from_sockaddr(cls, sockaddr) -> "PeerAddress":
        """Monta a partir do retorno de accept()/getpeername() (IPv4 ou IPv6)."""
        host, port = sockaddr[0], sockaddr[1]
        return cls(normalize_ip(host), int(port))

    @classmethod
    def parse(cls, text: str) -> "PeerAddress":
        """Lê "ip:porta" ou "[ipv6]:porta". Levanta ValueError se mal formado."""
        text = text.strip()
        if text.startswith("["):
            host, sep, port = text[1:].partition("]:")
            if not sep:
                raise ValueError(f"endereço mal formado: {text!r}")
        else:
            host, sep, port = text.rpartition(":")
            if not sep:
                raise ValueError(f"endereço sem porta: {text!r}")
        if not port.isdigit():
            raise ValueError(f"porta inválida em {text!r}")
        return cls(normalize_ip(host), int(port))


@dataclass(frozen=True)
class Envelope:
    """Mensagem do cliente já separada do seu prefixo de destino."""

    kind: str  # "ALL", "TO" ou "RAW"
    body: str
    target: Optional[PeerAddress] = None


# --- Linhas enviadas pelo SERVIDOR ---

def roster_snapshot(addresses: Iterable[PeerAddress]) -> str:
    """Linha com o roster completo, ordenada por ip/porta."""
    ordered = sorted(set(addresses), key=lambda a: (a.ip, a.port))
    return ROSTER_PREFIX + ",".join(str(a) for a in ordered)


def is_roster_line(line: str) -> bool:
    return line.startswith(ROSTER_PREFIX)


def parse_roster(line: str) -> List[PeerAddress]:
    """
    Lê uma linha "CLIENTES:...". Tokens ilegíveis são descartados
    (com aviso) em vez de invalidar a lista inteira.
    """
    if not is_roster_line(line):
        raise ValueError(f"Linha não é um roster: {line!r}")

    peers: List[PeerAddress] = []
    for token in line[len(ROSTER_PREFIX):].split(","):
        token = token.strip()
        if not token:
            continue
        try:
            address = PeerAddress.parse(token)
        except ValueError:
            logger.warning(f"Entrada de roster ignorada: {token!r}")
            continue
        if address not in peers:
            peers.append(address)
    return peers


# --- Linhas enviadas pelo CLIENTE ---

def broadcast_envelope(message: str) -> str:
    return f"{BROADCAST_PREFIX}{message}"


def addressed_envelope(address, message: str) -> str:
    if not isinstance(address, PeerAddress):
        address = PeerAddress.parse(str(address))
    return f"{address}:{message}"


def parse_envelope(line: str) -> Envelope:
    """Separa o destino ("ALL" ou ip:porta) do corpo da mensagem."""
    if line.startswith(BROADCAST_PREFIX):
        return Envelope("ALL", line[len(BROADCAST_PREFIX):])

    match = _ADDRESSED_RE.match(line)
    if match:
        host = match.group("ip6") or match.group("ip")
        try:
            target = PeerAddress(normalize_ip(host), int(match.group("port")))
        except ValueError:
            return Envelope("RAW", line)
        return Envelope("TO", match.group("body"), target)

    return Envelope("RAW", line)
