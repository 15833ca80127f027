from __future__ import annotations

import logging

from web3 import Web3

logger = logging.getLogger(__name__)


def apply_poa_middleware(w3: Web3) -> bool:
    """
    Inject PoA middleware for chains like BNB Chain / Polygon / geth --dev.

    web3.py v6: geth_poa_middleware
    web3.py v7+: ExtraDataToPOAMiddleware

    Returns True when a middleware was injected.
    """
    try:
        from web3.middleware import geth_poa_middleware  # type: ignore[attr-defined]

        w3.middleware_onion.inject(geth_poa_middleware, layer=0)
        return True
    except ImportError:
        pass

    try:
        from web3.middleware import ExtraDataToPOAMiddleware  # type: ignore[attr-defined]

        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        return True
    except ImportError:
        pass

    logger.warning("No PoA middleware available in this web3 version; extraData left unchecked")
    return False
