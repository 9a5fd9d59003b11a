from .kv import KeyValueEntry

__all__ = [
    'KeyValueEntry',
]
