"""Order lifecycle, delivery-exception (NDR) and returns engine for seller storefronts."""

__version__ = "1.0.0"
