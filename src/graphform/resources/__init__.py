"""Resource declarations."""

from graphform.resources.base import Resource
from graphform.resources.binding import Binding, Capability

__all__ = ["Binding", "Capability", "Resource"]
