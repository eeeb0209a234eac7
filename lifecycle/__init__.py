"""会员生命周期模块

提供：
- MembershipEngine: 统一入口
- StatusSynchronizer / RenewalService / FingerprintAllocator /
  CoupleLinkManager / AttendanceRecorder / MemberService: 各组件
"""
from .clock import Clock, SystemClock, FixedClock
from .errors import (
    MembershipError, ValidationError, UnauthorizedDeviceError,
    NotFoundError, ConflictError, ConsistencyFailure, ResourceExhaustedError
)
from .status import StatusSynchronizer, compute_status
from .renewal import RenewalService, RenewalPlan, RenewalResult, compute_renewal
from .fingerprints import FingerprintAllocator, FingerprintPool, Allocation
from .couples import CoupleLinkManager
from .attendance import AttendanceRecorder, CheckInResult
from .members import MemberService
from .engine import MembershipEngine

__all__ = [
    "Clock", "SystemClock", "FixedClock",
    "MembershipError", "ValidationError", "UnauthorizedDeviceError",
    "NotFoundError", "ConflictError", "ConsistencyFailure",
    "ResourceExhaustedError",
    "StatusSynchronizer", "compute_status",
    "RenewalService", "RenewalPlan", "RenewalResult", "compute_renewal",
    "FingerprintAllocator", "FingerprintPool", "Allocation",
    "CoupleLinkManager",
    "AttendanceRecorder", "CheckInResult",
    "MemberService",
    "MembershipEngine",
]
