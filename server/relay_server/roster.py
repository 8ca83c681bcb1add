# relay_server/roster.py
import threading
from typing import Dict, List, Optional

from common.peer_connection import PeerConnection
from payload_models import PeerAddress


class Roster:
    """
    Registro thread-safe dos peers conectados: PeerAddress -> PeerConnection.

    Toda operação segura o lock só pelo tempo de mexer no dicionário;
    nenhuma E/S acontece com o lock em mãos.
    """

    def __init__(self):
        self._connections: Dict[PeerAddress, PeerConnection] = {}
        self._lock = threading.Lock()

    def add(self, address: PeerAddress, connection: PeerConnection) -> Optional[PeerConnection]:
        """Registra a conexão. Retorna a conexão anterior com o mesmo endereço, se havia."""
        with self._lock:
            previous = self._connections.get(address)
            self._connections[address] = connection
            return previous

    def remove(self, address: PeerAddress, connection: Optional[PeerConnection] = None) -> Optional[PeerConnection]:
        """
        Remove o endereço. Remover algo que já saiu não é erro (retorna None).
        Se `connection` for informado, só remove se ainda for a mesma conexão.
        """
        with self._lock:
            current = self._connections.get(address)
            if current is None:
                return None
            if connection is not None and current is not connection:
                return None
            return self._connections.pop(address)

    def get(self, address: PeerAddress) -> Optional[PeerConnection]:
        with self._lock:
            return self._connections.get(address)

    def snapshot(self) -> List[PeerAddress]:
        """Endereços atuais, ordenados por ip/porta."""
        with self._lock:
            addresses = list(self._connections.keys())
        return sorted(addresses, key=lambda a: (a.ip, a.port))

    def items(self) -> List[tuple]:
        """Cópia dos pares (endereço, conexão) para enviar fora do lock."""
        with self._lock:
            return list(self._connections.items())

    def clear(self) -> List[PeerConnection]:
        with self._lock:
            connections = list(self._connections.values())
            self._connections.clear()
        return connections

    def __contains__(self, address) -> bool:
        with self._lock:
            return address in self._connections

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)
