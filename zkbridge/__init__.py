"""
zkbridge — shielded source chain ↔ privacy rollup bridge relayers

Core imports are lazily loaded so that importing a submodule does not pull in
the whole relayer stack. For direct module access, import from submodules:

    from zkbridge.bridge.codec import CommitmentCodec
    from zkbridge.bridge.ledger import ClaimLedger
    from zkbridge.config import load_config
"""

__version__ = "0.1.0"


def __getattr__(name):
    """Lazy module loading."""
    if name == 'BridgeService':
        from .bridge.service import BridgeService
        return BridgeService
    elif name == 'ClaimLedger':
        from .bridge.ledger import ClaimLedger
        return ClaimLedger
    elif name == 'load_config':
        from .config import load_config
        return load_config
    raise AttributeError(f"module 'zkbridge' has no attribute {name!r}")


__all__ = ['BridgeService', 'ClaimLedger', 'load_config', '__version__']
