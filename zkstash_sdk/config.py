"""
Network configuration for settlement.

Settlement networks are described in the packaged ``networks.json``. Payment
challenges name networks either by a bare alias (``base-sepolia``) or by a
CAIP-2 identifier (``eip155:84532``); both resolve to the same entry here.
"""
import importlib.resources
import json
import logging
import os
import threading
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class NetworkConfig:
    """Registry of settlement networks, loaded once per process."""

    _networks_cache: Optional[Dict[str, Dict[str, Any]]] = None
    _lock = threading.RLock()

    @classmethod
    def load_networks(cls) -> Dict[str, Dict[str, Any]]:
        """
        Load network definitions from the package resource.

        Returns:
            Mapping of canonical network name to its definition
        """
        if cls._networks_cache is not None:
            return cls._networks_cache

        with cls._lock:
            if cls._networks_cache is None:
                resource = importlib.resources.files("zkstash_sdk").joinpath("networks.json")
                with resource.open("r", encoding="utf-8") as f:
                    cls._networks_cache = json.load(f)
                logger.debug("Loaded %d network definitions", len(cls._networks_cache))
        return cls._networks_cache

    @classmethod
    def reset(cls) -> None:
        """Drop cached definitions; the next lookup reloads them."""
        with cls._lock:
            cls._networks_cache = None

    @classmethod
    def _index(cls) -> Dict[str, str]:
        index: Dict[str, str] = {}
        for name, info in cls.load_networks().items():
            names = [name, *info.get("aliases", [])]
            if info.get("caip2"):
                names.append(info["caip2"])
            for alias in names:
                index[alias] = name
                index[alias.lower()] = name
        return index

    @classmethod
    def normalize(cls, network: str) -> Optional[str]:
        """
        Resolve an alias or CAIP-2 id to the canonical network name.

        Returns:
            Canonical name, or None when the network is unknown
        """
        if not network:
            return None
        index = cls._index()
        key = network.strip()
        return index.get(key) or index.get(key.lower())

    @classmethod
    def get_network(cls, network: str) -> Dict[str, Any]:
        """
        Get a network definition by name, alias or CAIP-2 id.

        Raises:
            ValueError: If the network is unknown; the message lists known networks
        """
        networks = cls.load_networks()
        name = cls.normalize(network)
        if name is None:
            available = ", ".join(sorted(networks))
            raise ValueError(f"Unknown network '{network}'. Available networks: {available}")
        return networks[name]

    @classmethod
    def get_rpc_url(cls, network: str, override: Optional[str] = None) -> str:
        """
        Resolve the RPC endpoint for a network.

        Precedence: explicit override, then ``<NAME>_RPC_URL`` environment
        variable (e.g. ``BASE_SEPOLIA_RPC_URL``), then the packaged default.
        """
        if override:
            return override
        name = cls.normalize(network) or network
        env_var = f"{name.upper().replace('-', '_')}_RPC_URL"
        env_value = os.environ.get(env_var)
        if env_value:
            return env_value
        return cls.get_network(network)["rpc"]

    @classmethod
    def get_chain_id(cls, network: str) -> int:
        """
        EIP-155 chain id of an EVM network.

        Raises:
            ValueError: If the network has no chain id (non-EVM)
        """
        info = cls.get_network(network)
        if "chainId" not in info:
            raise ValueError(f"Network '{network}' has no EVM chain id")
        return int(info["chainId"])

    @classmethod
    def get_family(cls, network: str) -> str:
        """Chain family ("evm" or "solana")."""
        return cls.get_network(network)["family"]

    @classmethod
    def get_caip2(cls, network: str) -> str:
        return cls.get_network(network)["caip2"]

    @classmethod
    def get_token_address(cls, network: str) -> str:
        """Settlement token contract (EVM) or mint (Solana)."""
        return cls.get_network(network)["tokenAddress"]

    @classmethod
    def get_token_decimals(cls, network: str) -> int:
        return int(cls.get_network(network).get("tokenDecimals", 6))
