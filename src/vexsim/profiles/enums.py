"""
profiles.enums: Enumerations shared by profiles and the simulation engine.

Every enum is a ``str`` enum so profiles serialize to readable JSON.
``MemoryAddress`` pairs a content data type with a coarse memory region
type and is the parameter of most address-specific assumptions.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from ..core.errors import UnsupportedOperation


# ── Memory access ─────────────────────────────────────────────────────


class MemoryAccessMethod(str, Enum):
    """How memory is accessed by a violation."""

    READ = "read"
    WRITE = "write"
    EXECUTE = "execute"

    @property
    def abbreviation(self) -> str:
        return _METHOD_ABBREVIATIONS[self]

    @classmethod
    def from_str(cls, s: str) -> "MemoryAccessMethod":
        """Accept the full name or the ``r`` / ``w`` / ``x`` abbreviation."""
        normalized = s.strip().lower()
        for member in cls:
            if normalized in (member.value, _METHOD_ABBREVIATIONS[member]):
                return member
        raise ValueError(f"Unknown access method '{s}'. Valid: {', '.join(m.value for m in cls)}")


_METHOD_ABBREVIATIONS = {
    MemoryAccessMethod.READ: "r",
    MemoryAccessMethod.WRITE: "w",
    MemoryAccessMethod.EXECUTE: "x",
}


class MemoryAccessParameterState(str, Enum):
    """Degree of attacker control over one access parameter."""

    CONTROLLED = "controlled"
    FIXED = "fixed"
    UNINITIALIZED = "uninitialized"
    UNKNOWN = "unknown"
    NONEXISTENT = "nonexistent"

    @property
    def abbreviation(self) -> str:
        return _STATE_ABBREVIATIONS[self]


_STATE_ABBREVIATIONS = {
    MemoryAccessParameterState.CONTROLLED: "c",
    MemoryAccessParameterState.FIXED: "f",
    MemoryAccessParameterState.UNINITIALIZED: "u",
    MemoryAccessParameterState.UNKNOWN: "?",
    MemoryAccessParameterState.NONEXISTENT: "?",
}


class MemoryAccessParameter(str, Enum):
    """The parameters of a memory access."""

    BASE = "base"
    CONTENT = "content"
    DISPLACEMENT = "displacement"
    EXTENT = "extent"

    @property
    def abbreviation(self) -> str:
        return self.value[0]

    def memory_address(
        self,
        method: MemoryAccessMethod,
        region: "MemoryRegionType" = None,  # type: ignore[assignment]
    ) -> "MemoryAddress":
        """Address of the data that supplies this parameter for ``method``."""
        try:
            data_type = _PARAMETER_DATA_TYPES[(method, self)]
        except KeyError:
            raise UnsupportedOperation(
                f"No memory address for parameter {self.value} of {method.value}"
            ) from None
        return MemoryAddress(data_type=data_type, region=region or MemoryRegionType.ANY)


class MemoryAccessDirection(str, Enum):
    FORWARD = "forward"
    REVERSE = "reverse"


class MemoryAddressingMode(str, Enum):
    ABSOLUTE = "absolute"
    RELATIVE = "relative"


class MemoryAccessOffset(str, Enum):
    """Where a relative access starts with respect to its object."""

    INSIDE_OBJECT = "inside_object"
    POST_ADJACENT = "post_adjacent"
    POST_NON_ADJACENT = "post_non_adjacent"
    PRE_ADJACENT = "pre_adjacent"
    PRE_NON_ADJACENT = "pre_non_adjacent"


class MemoryRegionType(str, Enum):
    """Coarse region classification used by memory addresses."""

    ANY = "any"
    NULL = "null"
    STACK = "stack"
    HEAP = "heap"
    OTHER = "other"
    IMAGE_DATA_SEGMENT = "image_data_segment"
    IMAGE_CODE_SEGMENT = "image_code_segment"
    IMAGE_CODE_SEGMENT_NTDLL = "image_code_segment_ntdll"
    JIT_CODE = "jit_code"


class MemoryContentDataType(str, Enum):
    """What the accessed memory holds."""

    OTHER = "other"
    DATA = "data"
    CODE = "code"
    WRITABLE_CODE = "writable_code"
    ATTACKER_CONTROLLED_DATA = "attacker_controlled_data"
    ATTACKER_CONTROLLED_CODE = "attacker_controlled_code"
    WRITE_BASE_POINTER = "write_base_pointer"
    WRITE_DISPLACEMENT = "write_displacement"
    WRITE_CONTENT = "write_content"
    WRITE_EXTENT = "write_extent"
    READ_BASE_POINTER = "read_base_pointer"
    READ_CONTENT = "read_content"
    READ_DISPLACEMENT = "read_displacement"
    READ_EXTENT = "read_extent"
    CPP_OBJECT = "cpp_object"
    CPP_VIRTUAL_TABLE_POINTER = "cpp_virtual_table_pointer"
    CPP_VIRTUAL_TABLE = "cpp_virtual_table"
    FUNCTION_POINTER = "function_pointer"
    STACK_SEH_FUNCTION_POINTER = "stack_seh_function_pointer"
    STACK_RETURN_ADDRESS = "stack_return_address"
    STACK_FRAME_POINTER = "stack_frame_pointer"
    STACK_PROTECTION_COOKIE = "stack_protection_cookie"


_PARAMETER_DATA_TYPES = {
    (MemoryAccessMethod.READ, MemoryAccessParameter.BASE): MemoryContentDataType.READ_BASE_POINTER,
    (MemoryAccessMethod.READ, MemoryAccessParameter.CONTENT): MemoryContentDataType.READ_CONTENT,
    (MemoryAccessMethod.READ, MemoryAccessParameter.DISPLACEMENT): MemoryContentDataType.READ_DISPLACEMENT,
    (MemoryAccessMethod.READ, MemoryAccessParameter.EXTENT): MemoryContentDataType.READ_EXTENT,
    (MemoryAccessMethod.WRITE, MemoryAccessParameter.BASE): MemoryContentDataType.WRITE_BASE_POINTER,
    (MemoryAccessMethod.WRITE, MemoryAccessParameter.CONTENT): MemoryContentDataType.WRITE_CONTENT,
    (MemoryAccessMethod.WRITE, MemoryAccessParameter.DISPLACEMENT): MemoryContentDataType.WRITE_DISPLACEMENT,
    (MemoryAccessMethod.WRITE, MemoryAccessParameter.EXTENT): MemoryContentDataType.WRITE_EXTENT,
}


class ControlTransferMethod(str, Enum):
    INDIRECT_JUMP = "indirect_jump"
    INDIRECT_FUNCTION_CALL = "indirect_function_call"
    VIRTUAL_METHOD_CALL = "virtual_method_call"
    FUNCTION_RETURN = "function_return"


# ── Vector ────────────────────────────────────────────────────────────


class ExecutionDomain(str, Enum):
    UNSPECIFIED = "unspecified"
    USER = "user"
    KERNEL = "kernel"
    HYPERVISOR = "hypervisor"


class AccessRequirement(str, Enum):
    UNSPECIFIED = "unspecified"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    AUTHORIZED = "authorized"


class Locality(str, Enum):
    UNSPECIFIED = "unspecified"
    REMOTE = "remote"
    LOCAL = "local"
    BOTH = "both"


# ── Platform ──────────────────────────────────────────────────────────


class StackProtectionVersion(str, Enum):
    GS_VC7 = "gs_vc7"
    GS_VC81 = "gs_vc81"
    GS_VC10 = "gs_vc10"
    GS_VC11 = "gs_vc11"
    NOT_SUPPORTED = "not_supported"


class ArchitectureFamily(str, Enum):
    I386 = "i386"
    AMD64 = "amd64"
    IA64 = "ia64"
    ARM = "arm"


class OperatingSystemFamily(str, Enum):
    WINDOWS = "windows"
    OTHER = "other"


class FeatureSet(str, Enum):
    """Cumulative operating system feature levels."""

    WINDOWS_XP_SP2 = "windows_xp_sp2"
    WINDOWS_VISTA_RTM = "windows_vista_rtm"
    WINDOWS_VISTA_SP1 = "windows_vista_sp1"
    WINDOWS7 = "windows7"
    WINDOWS8 = "windows8"


class MitigationPolicy(str, Enum):
    """Deployment policy of an exploit mitigation."""

    ON = "on"
    OPT_IN = "opt_in"
    OPT_OUT = "opt_out"
    OFF = "off"
    NOT_SUPPORTED = "not_supported"

    @property
    def is_enabled(self) -> bool:
        return self in (MitigationPolicy.ON, MitigationPolicy.OPT_IN, MitigationPolicy.OPT_OUT)

    @property
    def is_on(self) -> bool:
        """On for applications that do not explicitly say otherwise."""
        return self in (MitigationPolicy.ON, MitigationPolicy.OPT_OUT)

    @property
    def is_off(self) -> bool:
        return self in (MitigationPolicy.OFF, MitigationPolicy.NOT_SUPPORTED, MitigationPolicy.OPT_IN)

    @property
    def is_supported(self) -> bool:
        return self != MitigationPolicy.NOT_SUPPORTED

    def effective_policy(self, base: Optional["MitigationPolicy"]) -> "MitigationPolicy":
        """Combine this (application) policy with the ``base`` (system) policy."""
        return effective_policy(self, base)


def effective_policy(
    policy: Optional[MitigationPolicy],
    base: Optional[MitigationPolicy],
) -> Optional[MitigationPolicy]:
    """
    Resolve an application-level ``policy`` against a system-level ``base``.

    OptIn systems only enable the mitigation for applications that turn it
    on; OptOut systems enable it unless the application turns it off.
    """
    if base is None:
        return policy
    if policy is None:
        return base
    if base == MitigationPolicy.OPT_IN:
        return MitigationPolicy.ON if policy == MitigationPolicy.ON else MitigationPolicy.OFF
    if base == MitigationPolicy.OPT_OUT:
        return MitigationPolicy.OFF if policy == MitigationPolicy.OFF else MitigationPolicy.ON
    return base


def policy_is_on(policy: Optional[MitigationPolicy]) -> Optional[bool]:
    """``policy.is_on`` or ``None`` when the policy is unknown."""
    if policy is None:
        return None
    return policy.is_on


class HeapFeature(str, Enum):
    HEAP_FREE_SAFE_UNLINKING = "heap_free_safe_unlinking"
    HEAP_TERMINATE_ON_CORRUPTION = "heap_terminate_on_corruption"
    HEAP_ALLOCATION_ORDER_RANDOMIZATION = "heap_allocation_order_randomization"
    HEAP_BLOCK_HEADER_COOKIES = "heap_block_header_cookies"
    HEAP_BLOCK_HEADER_ENCRYPTION = "heap_block_header_encryption"
    HEAP_PREVENT_FREE_HEAP_BASE = "heap_prevent_free_heap_base"
    HEAP_BUSY_BLOCK_INTEGRITY_CHECK = "heap_busy_block_integrity_check"
    HEAP_SEGMENT_RESERVE_GUARD_PAGE = "heap_segment_reserve_guard_page"
    HEAP_LARGE_ALLOCATION_ALIGNMENT = "heap_large_allocation_alignment"
    HEAP_ENCODE_COMMIT_ROUTINE_WITH_POINTER_KEY = "heap_encode_commit_routine_with_pointer_key"
    HEAP_ENCODE_COMMIT_ROUTINE_WITH_GLOBAL_KEY = "heap_encode_commit_routine_with_global_key"
    KERNEL_POOL_QUOTA_POINTER_ENCODING = "kernel_pool_quota_pointer_encoding"
    KERNEL_POOL_LOOKASIDE_LIST_COOKIE = "kernel_pool_lookaside_list_cookie"


class MemoryRegion(str, Enum):
    """Concrete regions of an address space."""

    KERNEL_INITIAL_THREAD_STACK = "kernel_initial_thread_stack"
    KERNEL_THREAD_STACK = "kernel_thread_stack"
    KERNEL_PAGED_POOL = "kernel_paged_pool"
    KERNEL_NON_PAGED_POOL = "kernel_non_paged_pool"
    KERNEL_SESSION_POOL = "kernel_session_pool"
    KERNEL_PAGE_TABLE_PAGES = "kernel_page_table_pages"
    KERNEL_DRIVER_IMAGE = "kernel_driver_image"
    KERNEL_EXE_IMAGE = "kernel_exe_image"
    KERNEL_HYPERSPACE = "kernel_hyperspace"
    KERNEL_PCR = "kernel_pcr"
    KERNEL_SHARED_USER_DATA = "kernel_shared_user_data"
    KERNEL_SYSTEM_PTE = "kernel_system_pte"
    KERNEL_SYSTEM_CACHE = "kernel_system_cache"
    KERNEL_PFN_DATABASE = "kernel_pfn_database"
    KERNEL_HAL_RESERVED = "kernel_hal_reserved"

    USER_PROCESS_HEAP = "user_process_heap"
    USER_THREAD_STACK = "user_thread_stack"
    USER_PEB = "user_peb"
    USER_TEB = "user_teb"
    USER_VIRTUAL_ALLOC_BU = "user_virtual_alloc_bu"
    USER_VIRTUAL_ALLOC_BUHE = "user_virtual_alloc_buhe"
    USER_VIRTUAL_ALLOC_TD = "user_virtual_alloc_td"
    USER_JIT_CODE = "user_jit_code"
    USER_EXE_IMAGE_BASE = "user_exe_image_base"
    USER_EXE_IMAGE_CODE = "user_exe_image_code"
    USER_EXE_IMAGE_DATA = "user_exe_image_data"
    USER_DLL_IMAGE_BASE = "user_dll_image_base"
    USER_DLL_IMAGE_CODE = "user_dll_image_code"
    USER_DLL_IMAGE_DATA = "user_dll_image_data"
    USER_FORCE_RELOCATED_IMAGE_BASE = "user_force_relocated_image_base"
    USER_FORCE_RELOCATED_IMAGE_CODE = "user_force_relocated_image_code"
    USER_FORCE_RELOCATED_IMAGE_DATA = "user_force_relocated_image_data"
    USER_SHARED_USER_DATA = "user_shared_user_data"

    @property
    def is_kernel(self) -> bool:
        return self.value.startswith("kernel_")


KERNEL_REGIONS = tuple(r for r in MemoryRegion if r.is_kernel)
USER_REGIONS = tuple(r for r in MemoryRegion if not r.is_kernel)

USER_MODE_REGIONS = (
    MemoryRegion.USER_SHARED_USER_DATA,
    MemoryRegion.USER_PROCESS_HEAP,
    MemoryRegion.USER_THREAD_STACK,
    MemoryRegion.USER_PEB,
    MemoryRegion.USER_TEB,
    MemoryRegion.USER_VIRTUAL_ALLOC_BU,
    MemoryRegion.USER_VIRTUAL_ALLOC_TD,
    MemoryRegion.USER_EXE_IMAGE_BASE,
    MemoryRegion.USER_EXE_IMAGE_CODE,
    MemoryRegion.USER_EXE_IMAGE_DATA,
    MemoryRegion.USER_DLL_IMAGE_BASE,
    MemoryRegion.USER_DLL_IMAGE_CODE,
    MemoryRegion.USER_DLL_IMAGE_DATA,
    MemoryRegion.USER_FORCE_RELOCATED_IMAGE_BASE,
    MemoryRegion.USER_FORCE_RELOCATED_IMAGE_CODE,
    MemoryRegion.USER_FORCE_RELOCATED_IMAGE_DATA,
)

USER_IMAGE_BASE_REGIONS = (
    MemoryRegion.USER_EXE_IMAGE_BASE,
    MemoryRegion.USER_DLL_IMAGE_BASE,
)


# ── Memory address ────────────────────────────────────────────────────


class MemoryAddress(BaseModel):
    """A content data type located in a region type, e.g. ``&stack.stack_return_address``."""

    model_config = ConfigDict(frozen=True)

    data_type: MemoryContentDataType
    region: MemoryRegionType = MemoryRegionType.ANY

    def __str__(self) -> str:
        return f"&{self.region.value}.{self.data_type.value}"

    @property
    def is_kernel_address(self) -> bool:
        return self.region == MemoryRegionType.NULL

    @property
    def is_implicitly_initialized(self) -> bool:
        """Content the program itself always initializes before use."""
        if self.region == MemoryRegionType.STACK:
            return self.data_type in (
                MemoryContentDataType.STACK_FRAME_POINTER,
                MemoryContentDataType.STACK_RETURN_ADDRESS,
                MemoryContentDataType.STACK_SEH_FUNCTION_POINTER,
                MemoryContentDataType.STACK_PROTECTION_COOKIE,
            )
        return self.region == MemoryRegionType.IMAGE_CODE_SEGMENT


def address(
    data_type: MemoryContentDataType,
    region: Optional[MemoryRegionType] = None,
) -> MemoryAddress:
    """Shorthand constructor; a missing region means ``any``."""
    return MemoryAddress(data_type=data_type, region=region or MemoryRegionType.ANY)


ADDRESS_OF_STACK_FRAME_POINTER = address(MemoryContentDataType.STACK_FRAME_POINTER, MemoryRegionType.STACK)
ADDRESS_OF_STACK_RETURN_ADDRESS = address(MemoryContentDataType.STACK_RETURN_ADDRESS, MemoryRegionType.STACK)
ADDRESS_OF_STACK_SEH_HANDLER = address(MemoryContentDataType.STACK_SEH_FUNCTION_POINTER, MemoryRegionType.STACK)
ADDRESS_OF_STACK_PROTECTION_COOKIE = address(MemoryContentDataType.STACK_PROTECTION_COOKIE, MemoryRegionType.STACK)

ADDRESS_OF_WRITABLE_CODE = address(MemoryContentDataType.WRITABLE_CODE)
ADDRESS_OF_ATTACKER_CONTROLLED_CODE = address(MemoryContentDataType.ATTACKER_CONTROLLED_CODE)
ADDRESS_OF_ATTACKER_CONTROLLED_DATA = address(MemoryContentDataType.ATTACKER_CONTROLLED_DATA)

ADDRESS_OF_NTDLL_IMAGE_BASE = address(MemoryContentDataType.CODE, MemoryRegionType.IMAGE_CODE_SEGMENT_NTDLL)

ROP_GADGET_CODE_ADDRESSES = (
    address(MemoryContentDataType.CODE, MemoryRegionType.IMAGE_CODE_SEGMENT),
    address(MemoryContentDataType.CODE, MemoryRegionType.JIT_CODE),
)

# Enum order, so technique registration is deterministic.
WRITABLE_REGION_TYPES = tuple(
    r for r in MemoryRegionType
    if r in (MemoryRegionType.ANY, MemoryRegionType.HEAP, MemoryRegionType.STACK)
)
