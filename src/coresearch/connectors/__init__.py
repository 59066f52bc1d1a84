from .base import Connector, Link, Page, RawRecord
from .core import COREConnector

__all__ = [
    "Connector",
    "Link",
    "Page",
    "RawRecord",
    "COREConnector",
]
