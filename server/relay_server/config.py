"""
relay_server/config.py
Valores padrão do servidor. Qualquer chave pode ser sobrescrita pelo config.json.
"""

DEFAULT_PORT = 8050

DEFAULT_CONFIG = {
    "server": {
        "ip": "0.0.0.0",
        "port": DEFAULT_PORT,
        "backlog": 16,
        "accept_timeout": 0.5,  # segundos; limite para o accept perceber o stop()
        "send_timeout": 5.0,  # segundos; um cliente que não lê é desconectado depois disso
    },
    "relay": {
        "enabled": True,
        # "ALL:" vindo de um cliente volta para ele mesmo?
        "broadcast_includes_sender": False,
        # Reenvia o roster para todos quando alguém sai
        "rebroadcast_roster_on_disconnect": True,
    },
    "logging": {
        "process_id": "SERVER",
        "file_logging": False,
    },
}
