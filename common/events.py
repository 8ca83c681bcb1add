# common/events.py
import threading
from typing import Callable, Dict, List

from logs.logger import logger


class EventEmitterMixin:
    """
    Eventos de domínio para os colaboradores (UI, relay, testes).

    Os callbacks rodam na thread que disparou o evento (thread de conexão
    ou de accept). Quem precisar de outra thread (ex: loop de uma UI)
    faz a troca do lado de lá.
    """

    EVENTS: tuple = ()

    def _init_events(self):
        self._listeners: Dict[str, List[Callable]] = {name: [] for name in self.EVENTS}
        self._listeners_lock = threading.Lock()

    def on(self, event: str, callback: Callable) -> Callable:
        """Inscreve `callback` no evento. Retorna o próprio callback."""
        if event not in self._listeners:
            raise ValueError(f"Evento desconhecido: {event}")
        with self._listeners_lock:
            self._listeners[event].append(callback)
        return callback

    def off(self, event: str, callback: Callable) -> None:
        with self._listeners_lock:
            if callback in self._listeners.get(event, []):
                self._listeners[event].remove(callback)

    def _emit(self, event: str, *args) -> None:
        with self._listeners_lock:
            callbacks = list(self._listeners[event])

        for callback in callbacks:
            try:
                callback(*args)
            except Exception:
                # Um colaborador com defeito não derruba a thread de rede
                logger.exception(f"Erro no callback do evento '{event}'")
