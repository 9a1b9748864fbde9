# fetchers/__init__.py
from .booth import BoothClient, parse_price, to_item

__all__ = ["BoothClient", "parse_price", "to_item"]
