from types import MappingProxyType

from .base import Operation
from .file import FileOperation
from .hostname import HostnameOperation
from .package import PackageOperation, UpgradeOperation
from .timezone import TimezoneOperation
from .user import UserOperation

# Closed set of step variants; plans naming any other type are rejected at load time.
OPERATION_REGISTRY = MappingProxyType(
    {
        "user": UserOperation,
        "upgrade": UpgradeOperation,
        "package": PackageOperation,
        "file": FileOperation,
        "hostname": HostnameOperation,
        "timezone": TimezoneOperation,
    }
)

__all__ = [
    "Operation",
    "UserOperation",
    "UpgradeOperation",
    "PackageOperation",
    "FileOperation",
    "HostnameOperation",
    "TimezoneOperation",
    "OPERATION_REGISTRY",
]
