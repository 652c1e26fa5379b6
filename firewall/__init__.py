"""
Gateway Firewall Controls Module.

Reads and toggles the two pre-provisioned security controls that a
renewal window relaxes: the port-80 DNAT forward rule and the
location block filter.
"""

from firewall.controls import (
    ControlState, GeoBlockFilter, InboundForwardRule, SecurityControl,
)
from firewall.store import ConfigStore

__all__ = [
    "ControlState", "GeoBlockFilter", "InboundForwardRule",
    "SecurityControl", "ConfigStore",
]
