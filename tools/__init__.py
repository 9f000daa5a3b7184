# tools package
from .clean_price import clean_price, normalize_price_value, parse_bare_price

__all__ = ["clean_price", "normalize_price_value", "parse_bare_price"]
