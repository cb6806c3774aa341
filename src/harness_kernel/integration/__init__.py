from .topology import ProvisionReport, TopicSpec, TopologyProvisioner
from .webapp import WebAppController, WebAppSettings

__all__ = [
    "ProvisionReport",
    "TopicSpec",
    "TopologyProvisioner",
    "WebAppController",
    "WebAppSettings",
]
