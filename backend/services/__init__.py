from importlib import import_module

__all__ = [
    "sol_price_feed",
    "SolPriceFeed",
    "wallet_flow_pipeline",
    "WalletFlowPipeline",
]

_LAZY_EXPORTS = {
    "sol_price_feed": ("services.price_feed", "sol_price_feed"),
    "SolPriceFeed": ("services.price_feed", "SolPriceFeed"),
    "wallet_flow_pipeline": ("services.wallet_flow", "wallet_flow_pipeline"),
    "WalletFlowPipeline": ("services.wallet_flow", "WalletFlowPipeline"),
}


def __getattr__(name):
    if name not in _LAZY_EXPORTS:
        raise AttributeError(f"module 'services' has no attribute {name!r}")

    module_name, attr_name = _LAZY_EXPORTS[name]
    module = import_module(module_name)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value
