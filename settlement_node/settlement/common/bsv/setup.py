import contextvars
from typing import Literal

import bitcointx
import bitcointx.util

BsvNetwork = Literal["mainnet", "testnet"]
BSV_NETWORKS = ["mainnet", "testnet"]

# BSV shares the legacy base58 address versions and the transaction wire format with bitcoin,
# so the bitcoin chain params of python-bitcointx are used for address parsing and serialization
_CHAIN_PARAMS_BY_NETWORK = {
    "mainnet": "bitcoin",
    "testnet": "bitcoin/testnet",
}


def setup_bitcointx_network(network: BsvNetwork):
    """
    Select the python-bitcointx chain params for a BSV network, for all threads.

    python-bitcointx keeps the current chain params in contextvars that new threads reset to their
    defaults, so the selected values are made the defaults of fresh contextvars.
    """
    if network not in BSV_NETWORKS:
        raise ValueError(f"Invalid network: {network}")

    bitcointx.select_chain_params(_CHAIN_PARAMS_BY_NETWORK[network])

    for contextvar_compat_instance in [
        bitcointx.util.class_mapping_dispatch_data,
        bitcointx._chain_params_context,
    ]:
        contextvar_dict = contextvar_compat_instance._context_vars_storage__
        values = {k: v.get() for (k, v) in contextvar_dict.items()}
        for var_name, current_value in values.items():
            contextvar_dict[var_name] = contextvars.ContextVar(var_name, default=current_value)
