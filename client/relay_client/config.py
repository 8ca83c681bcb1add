"""
relay_client/config.py
Valores padrão do cliente. Qualquer chave pode ser sobrescrita pelo config.json.
"""

DEFAULT_CONFIG = {
    "server": {
        "ip": "127.0.0.1",
        "port": 8050,
    },
    "timing": {
        "connect_timeout": 5.0,  # segundos para o handshake TCP
        "send_timeout": 5.0,  # segundos; servidor que não lê derruba a conexão
    },
    "logging": {
        "process_id": "CLIENT",
        "file_logging": False,
    },
}
