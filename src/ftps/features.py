"""Server capability discovery (FEAT, RFC 2389)."""

import logging
from typing import Dict, List, Optional, Union

from src.ftps.commands import FTPCmd, command_token
from src.ftps.connection import ControlChannel

logger = logging.getLogger("ftps_client.features")

FeatureToken = Union[str, FTPCmd]


def parse_feature_reply(lines) -> Dict[str, List[str]]:
    """
    Parse the lines of a 211 FEAT reply.

    Feature lines are indented by one space between the opening and the
    closing line; everything after the first space is a parameter string,
    e.g. " AUTH TLS" -> {"AUTH": ["TLS"]}. A feature listed twice with
    different parameters keeps both.

    Args:
        lines: Reply lines including the first and last line

    Returns:
        Mapping of upper-case feature keyword to its parameter strings
    """
    features: Dict[str, List[str]] = {}
    for line in lines[1:-1]:
        if not line.startswith(" "):
            continue
        entry = line.strip()
        if not entry:
            continue
        keyword, _, params = entry.partition(" ")
        values = features.setdefault(keyword.upper(), [])
        if params:
            values.append(params.strip())
    return features


class FeatureRegistry:
    """Caches the FEAT reply for the lifetime of one control connection."""

    def __init__(self, control: ControlChannel):
        """
        Initialize the registry.

        Args:
            control: Control channel FEAT is sent on
        """
        self._control = control
        self._features: Optional[Dict[str, List[str]]] = None
        self._connection_id: Optional[int] = None

    def _load(self) -> Dict[str, List[str]]:
        if self._features is not None and self._connection_id == self._control.connection_id:
            return self._features

        reply = self._control.execute_command(FTPCmd.FEAT)
        if reply.is_completion:
            features = parse_feature_reply(reply.lines)
        else:
            # Server without FEAT support advertises nothing
            logger.debug(f"FEAT not supported: {reply.code}")
            features = {}

        self._features = features
        self._connection_id = self._control.connection_id
        logger.debug(f"Server features: {sorted(features)}")
        return features

    @property
    def features(self) -> Dict[str, List[str]]:
        """Copy of the full feature mapping."""
        return {key: list(values) for key, values in self._load().items()}

    def has_feature(self, token: FeatureToken) -> bool:
        """
        Check whether the server advertises a feature.

        Args:
            token: Feature keyword, as a string or FTPCmd

        Returns:
            True if the feature is listed in the FEAT reply
        """
        return command_token(token) in self._load()

    def has_feature_value(self, token: FeatureToken, value: str) -> bool:
        """Check for a feature with a specific parameter (e.g. AUTH TLS)."""
        values = self._load().get(command_token(token), [])
        return any(v.upper() == value.upper() for v in values)

    def feature_values(self, token: FeatureToken) -> Optional[List[str]]:
        """
        Parameters advertised for a feature.

        Returns:
            List of parameter strings (possibly empty), or None if the
            feature is not advertised
        """
        values = self._load().get(command_token(token))
        return list(values) if values is not None else None

    def feature_value(self, token: FeatureToken) -> Optional[str]:
        """First parameter advertised for a feature, or None."""
        values = self.feature_values(token)
        return values[0] if values else None

    def reset(self) -> None:
        """Forget the cached features."""
        self._features = None
        self._connection_id = None
