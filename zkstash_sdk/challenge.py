"""
Payment challenge parsing and settlement option selection.
"""
import json
import logging
from typing import Iterable, List, Optional, Sequence, Union

from pydantic import ValidationError

from ._rate_limited_log import rate_limited_log
from .config import NetworkConfig
from .exceptions import ChallengeParseError, UnsupportedNetworkError
from .models import PaymentChallenge, PaymentOption

logger = logging.getLogger(__name__)

PAYMENT_REQUIRED = 402

# Base Sepolia first, then Solana devnet
DEFAULT_NETWORK_PREFERENCE = ("base-sepolia", "solana-devnet")


def parse_challenge(payload: Union[bytes, str, dict, None]) -> PaymentChallenge:
    """
    Decode the body of a 402 response.

    Accepts ``x402Version`` or the older ``version`` tag. Options that cannot
    be validated (no amount, no recipient) are dropped with a warning so that a
    single malformed entry does not hide usable ones.

    Args:
        payload: Raw body bytes/text, or an already-decoded dict

    Returns:
        Challenge with the valid options, in server order

    Raises:
        ChallengeParseError: If the body is not a JSON object with an accepts list
    """
    if isinstance(payload, (bytes, str)):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            raise ChallengeParseError(f"402 body is not valid JSON: {e}")
    if not isinstance(payload, dict):
        raise ChallengeParseError(f"402 body must be a JSON object, got {type(payload).__name__}")

    accepts = payload.get("accepts")
    if not isinstance(accepts, list):
        raise ChallengeParseError("402 body has no 'accepts' list", context={"keys": sorted(payload)})

    version = payload.get("x402Version", payload.get("version", 1))
    try:
        version = int(version)
    except (TypeError, ValueError):
        raise ChallengeParseError(f"Invalid challenge version: {version!r}")

    options: List[PaymentOption] = []
    for i, raw in enumerate(accepts):
        try:
            option = PaymentOption.model_validate(raw)
        except ValidationError as e:
            logger.warning("Dropping payment option #%d: %s", i, e.errors(include_url=False))
            continue
        _flag_unrecognized(option)
        options.append(option)

    challenge = PaymentChallenge(x402Version=version, error=str(payload.get("error") or ""), accepts=options)
    logger.debug(
        "Parsed x402 v%d challenge with %d option(s): %s",
        challenge.x402_version, len(options), [o.network for o in options]
    )
    return challenge


def _flag_unrecognized(option: PaymentOption) -> None:
    if option.unknown_fields:
        rate_limited_log(
            f"Payment option for '{option.network}' has unrecognized fields: {option.unknown_fields}",
            level="warning",
            logger_instance=logger,
        )
    if NetworkConfig.normalize(option.network) is None:
        rate_limited_log(
            f"Payment option uses unknown network '{option.network}'",
            level="warning",
            logger_instance=logger,
        )


def select_option(
    options: Iterable[PaymentOption],
    preferences: Sequence[str] = DEFAULT_NETWORK_PREFERENCE,
    supported_families: Optional[Iterable[str]] = None,
) -> PaymentOption:
    """
    Pick the option to settle.

    Preferences are walked in order and each is matched against every option,
    comparing normalized network names so that ``base-sepolia`` and
    ``eip155:84532`` are the same network.

    Args:
        options: Parsed options in server order
        preferences: Network names/aliases, most preferred first
        supported_families: Chain families the client can pay from; options
            on other families are skipped

    Raises:
        UnsupportedNetworkError: If nothing offered is acceptable
    """
    options = list(options)
    families = (
        {getattr(f, "value", f) for f in supported_families} if supported_families is not None else None
    )

    for preference in preferences:
        wanted = NetworkConfig.normalize(preference) or preference.strip().lower()
        for option in options:
            offered = NetworkConfig.normalize(option.network) or option.network.strip().lower()
            if offered != wanted:
                continue
            if families is not None and _family_of(offered) not in families:
                logger.debug("Skipping %s: no signer for its chain family", option.network)
                continue
            logger.info("Selected payment option on %s (%s %s)", offered, option.amount, option.token or option.asset or "")
            return option

    offered_networks = [o.network for o in options]
    raise UnsupportedNetworkError(
        f"No offered network is accepted. Offered: {offered_networks}, accepted: {list(preferences)}",
        context={"offered": offered_networks, "accepted": list(preferences)},
    )


def _family_of(network: str) -> Optional[str]:
    try:
        return NetworkConfig.get_family(network)
    except ValueError:
        return None
