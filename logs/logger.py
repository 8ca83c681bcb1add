"""
logs/logger.py
Logger global (loguru) compartilhado por servidor e cliente.

Importar este módulo já deixa o console configurado; arquivos de log
são opcionais e ligados por processo via setup_file_logging().
"""
import sys
from typing import List

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}:{function}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:DD/MM/YYYY HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"

# Sinks de arquivo: (sufixo, nível mínimo, rotação, retenção)
FILE_SINKS = (
    ("activity", "INFO", "10 MB", "7 days"),
    ("error", "WARNING", "5 MB", "30 days"),
)

# O sink padrão do loguru (stderr, DEBUG) é trocado pelo console abaixo.
# Cada conexão loga da sua própria thread, daí o enqueue.
logger.remove()
logger.add(sys.stdout, colorize=True, format=CONSOLE_FORMAT, level="INFO", enqueue=True)


def _safe_name(process_id: str) -> str:
    name = "".join(c for c in process_id if c.isalnum() or c in ("_", "-")).strip()
    return name or "unknown_process"


def setup_file_logging(process_id: str, log_dir: str = "logs") -> List[int]:
    """
    Liga os arquivos <log_dir>/<ID>_activity.log e <log_dir>/<ID>_error.log.
    Retorna os ids dos sinks, para quem quiser removê-los depois.
    """
    base = f"{log_dir}/{_safe_name(process_id)}"
    logger.info(f"Ativando logs em arquivo: {base}_*.log")

    sink_ids = []
    for suffix, level, rotation, retention in FILE_SINKS:
        sink_ids.append(logger.add(
            f"{base}_{suffix}.log",
            rotation=rotation,
            retention=retention,
            format=FILE_FORMAT,
            level=level,
            encoding="utf-8",
            enqueue=True
        ))
    return sink_ids
