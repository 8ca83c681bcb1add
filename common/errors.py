# common/errors.py
"""
Erros expostos pelo núcleo de transporte.

Falhas de E/S numa conexão já estabelecida usam o OSError nativo
(o antigo IOError) e viram evento de conexão encerrada.
"""


class BindError(OSError):
    """A porta não pôde ser usada para escutar (ocupada, sem permissão...)."""


class ConnectError(OSError):
    """Falha ao conectar no servidor: recusado, timeout ou host inválido."""


class UnknownPeer(LookupError):
    """Envio endereçado para um peer que não está no roster."""

    def __init__(self, address):
        super().__init__(f"Peer desconhecido: {address}")
        self.address = address


class NotConnected(RuntimeError):
    """Envio tentado sem uma conexão ativa."""
