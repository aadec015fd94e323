"""
profiles.builtin: Built-in hardware, operating system, application and
violation profiles.

Each registry maps a symbol to a builder; ``get_*`` always returns a fresh
instance because recalibration mutates profiles in place.

Windows releases are built cumulatively: every release applies the
settings of the release it inherits from and then its own.
"""

from __future__ import annotations

from typing import Callable, Dict, List, TypeVar

from .enums import (
    USER_MODE_REGIONS,
    ArchitectureFamily,
    FeatureSet,
    HeapFeature,
    Locality,
    MemoryAccessDirection,
    MemoryAccessMethod,
    MemoryAccessOffset,
    MemoryAccessParameterState,
    MemoryAddressingMode,
    MemoryContentDataType,
    MemoryRegion,
    MemoryRegionType,
    MitigationPolicy,
    OperatingSystemFamily,
    StackProtectionVersion,
)
from .target import Application, ApplicationProduct, Hardware, OperatingSystem
from .violation import Violation

_P = MitigationPolicy
_R = MemoryRegion
_S = MemoryAccessParameterState

T = TypeVar("T")


# ── Hardware ──────────────────────────────────────────────────────────


def _x86_pae() -> Hardware:
    return Hardware(
        symbol="x86_pae",
        name="x86 (PAE)",
        address_bits=32,
        architecture_family=ArchitectureFamily.I386,
        nx_policy=_P.ON,
        smep_policy=_P.NOT_SUPPORTED,
    )


def _x64() -> Hardware:
    return Hardware(
        symbol="x64",
        name="x64",
        address_bits=64,
        architecture_family=ArchitectureFamily.AMD64,
        nx_policy=_P.ON,
        smep_policy=_P.ON,
    )


HARDWARE: Dict[str, Callable[[], Hardware]] = {
    "x86_pae": _x86_pae,
    "x64": _x64,
}


# ── Windows releases ──────────────────────────────────────────────────


def _windows_defaults(os: OperatingSystem) -> None:
    os.family = OperatingSystemFamily.WINDOWS
    os.kernel_pool_policy = {feature: _P.NOT_SUPPORTED for feature in HeapFeature}
    os.user_sehop_policy = _P.NOT_SUPPORTED
    os.user_safeseh_policy = _P.NOT_SUPPORTED
    os.user_aslr_bottom_up_high_entropy_policy = _P.NOT_SUPPORTED
    os.user_pointer_encoding_uef = False
    os.user_pointer_encoding_peb_fast_lock_routine = False
    os.user_pointer_encoding_heap_commit_routine = False


def _inherit_xp_sp2(os: OperatingSystem) -> None:
    os.features.append(FeatureSet.WINDOWS_XP_SP2)
    for region in USER_MODE_REGIONS:
        os.memory_region_nx_policy[region] = _P.OPT_IN
    os.user_safeseh_policy = _P.ON
    os.user_heap_policy[HeapFeature.HEAP_FREE_SAFE_UNLINKING] = _P.ON
    os.user_pointer_encoding_uef = True
    os.user_pointer_encoding_peb_fast_lock_routine = True
    os.default_stack_protection_enabled = True
    os.default_stack_protection_version = StackProtectionVersion.GS_VC7


def _inherit_vista_rtm(os: OperatingSystem) -> None:
    _inherit_xp_sp2(os)
    os.features.append(FeatureSet.WINDOWS_VISTA_RTM)

    for region in (_R.USER_EXE_IMAGE_BASE, _R.USER_DLL_IMAGE_BASE, _R.USER_THREAD_STACK):
        os.memory_region_aslr_policy[region] = _P.OPT_IN
    os.memory_region_aslr_policy[_R.USER_PROCESS_HEAP] = _P.ON

    bits = os.memory_region_aslr_entropy_bits
    for region in (
        _R.USER_EXE_IMAGE_BASE,
        _R.USER_EXE_IMAGE_CODE,
        _R.USER_EXE_IMAGE_DATA,
        _R.USER_DLL_IMAGE_BASE,
        _R.USER_DLL_IMAGE_CODE,
        _R.USER_DLL_IMAGE_DATA,
    ):
        bits[region] = 8
    bits[_R.USER_THREAD_STACK] = 14
    bits[_R.USER_PROCESS_HEAP] = 5

    os.user_heap_policy[HeapFeature.HEAP_BLOCK_HEADER_COOKIES] = _P.ON
    os.user_heap_policy[HeapFeature.HEAP_BLOCK_HEADER_ENCRYPTION] = _P.ON
    os.user_heap_policy[HeapFeature.HEAP_ENCODE_COMMIT_ROUTINE_WITH_POINTER_KEY] = _P.ON
    os.user_heap_policy[HeapFeature.HEAP_TERMINATE_ON_CORRUPTION] = _P.OPT_IN
    os.user_pointer_encoding_heap_commit_routine = True

    os.default_stack_protection_enabled = True
    os.default_stack_protection_version = StackProtectionVersion.GS_VC81


def _inherit_vista_sp1(os: OperatingSystem) -> None:
    _inherit_vista_rtm(os)
    os.features.append(FeatureSet.WINDOWS_VISTA_SP1)
    os.memory_region_aslr_policy[_R.KERNEL_EXE_IMAGE] = _P.ON
    os.memory_region_aslr_policy[_R.KERNEL_DRIVER_IMAGE] = _P.ON
    os.memory_region_aslr_entropy_bits[_R.KERNEL_EXE_IMAGE] = 5
    os.memory_region_aslr_entropy_bits[_R.KERNEL_DRIVER_IMAGE] = 4
    os.user_sehop_policy = _P.OPT_IN


def _inherit_windows7(os: OperatingSystem) -> None:
    _inherit_vista_sp1(os)
    os.features.append(FeatureSet.WINDOWS7)
    os.kernel_pool_policy[HeapFeature.HEAP_FREE_SAFE_UNLINKING] = _P.ON


def _inherit_windows8(os: OperatingSystem) -> None:
    _inherit_windows7(os)
    os.features.append(FeatureSet.WINDOWS8)

    for region in (
        _R.KERNEL_PAGE_TABLE_PAGES,
        _R.KERNEL_PAGED_POOL,
        _R.KERNEL_NON_PAGED_POOL,
        _R.KERNEL_INITIAL_THREAD_STACK,
        _R.KERNEL_PCR,
        _R.KERNEL_SHARED_USER_DATA,
        _R.KERNEL_SYSTEM_PTE,
        _R.KERNEL_SYSTEM_CACHE,
        _R.KERNEL_PFN_DATABASE,
        _R.KERNEL_HAL_RESERVED,
    ):
        os.memory_region_nx_policy[region] = _P.ON

    aslr = os.memory_region_aslr_policy
    aslr[_R.USER_VIRTUAL_ALLOC_BU] = _P.OPT_IN
    aslr[_R.USER_VIRTUAL_ALLOC_TD] = _P.ON
    aslr[_R.USER_PEB] = _P.ON
    aslr[_R.USER_TEB] = _P.ON
    aslr[_R.USER_FORCE_RELOCATED_IMAGE_BASE] = _P.OPT_IN
    aslr[_R.USER_FORCE_RELOCATED_IMAGE_CODE] = _P.OPT_IN
    aslr[_R.USER_FORCE_RELOCATED_IMAGE_DATA] = _P.OPT_IN
    os.user_aslr_bottom_up_high_entropy_policy = _P.OPT_IN

    os.kernel_smep_policy = _P.ON
    # Resolved per architecture during recalibration.
    os.kernel_null_dereference_prevention_policy = None
    os.kernel_pool_policy[HeapFeature.KERNEL_POOL_QUOTA_POINTER_ENCODING] = _P.ON
    os.kernel_pool_policy[HeapFeature.KERNEL_POOL_LOOKASIDE_LIST_COOKIE] = _P.ON

    heap = os.user_heap_policy
    heap[HeapFeature.HEAP_ALLOCATION_ORDER_RANDOMIZATION] = _P.ON
    heap[HeapFeature.HEAP_PREVENT_FREE_HEAP_BASE] = _P.ON
    heap[HeapFeature.HEAP_BUSY_BLOCK_INTEGRITY_CHECK] = _P.ON
    heap[HeapFeature.HEAP_SEGMENT_RESERVE_GUARD_PAGE] = _P.ON
    heap[HeapFeature.HEAP_ENCODE_COMMIT_ROUTINE_WITH_POINTER_KEY] = _P.NOT_SUPPORTED
    heap[HeapFeature.HEAP_ENCODE_COMMIT_ROUTINE_WITH_GLOBAL_KEY] = _P.ON

    os.default_stack_protection_enabled = True
    os.default_stack_protection_version = StackProtectionVersion.GS_VC10


def _windows(symbol: str, name: str, inherit: Callable[[OperatingSystem], None], architectures: List[ArchitectureFamily]) -> OperatingSystem:
    os = OperatingSystem(symbol=symbol, name=name, architectures=architectures)
    _windows_defaults(os)
    inherit(os)
    return os


_X86 = [ArchitectureFamily.I386, ArchitectureFamily.AMD64]


def _windows_xp_sp3() -> OperatingSystem:
    return _windows("windows_xp_sp3", "Windows XP SP3", _inherit_xp_sp2, list(_X86))


def _windows_vista_sp1() -> OperatingSystem:
    return _windows("windows_vista_sp1", "Windows Vista SP1", _inherit_vista_sp1, list(_X86))


def _windows7() -> OperatingSystem:
    return _windows("windows7", "Windows 7", _inherit_windows7, list(_X86))


def _windows8() -> OperatingSystem:
    return _windows("windows8", "Windows 8", _inherit_windows8, _X86 + [ArchitectureFamily.ARM])


OPERATING_SYSTEMS: Dict[str, Callable[[], OperatingSystem]] = {
    "windows_xp_sp3": _windows_xp_sp3,
    "windows_vista_sp1": _windows_vista_sp1,
    "windows7": _windows7,
    "windows8": _windows8,
}


# ── Applications ──────────────────────────────────────────────────────


def _internet_explorer(symbol: str, name: str, product: ApplicationProduct) -> Application:
    return Application(
        symbol=symbol,
        name=name,
        product=product,
        family=OperatingSystemFamily.WINDOWS,
        can_initialize_code_via_jit=False,
        can_initialize_content_via_heap_spray=True,
    )


APPLICATIONS: Dict[str, Callable[[], Application]] = {
    "ie8": lambda: _internet_explorer("ie8", "Internet Explorer 8", ApplicationProduct.IE8),
    "ie9": lambda: _internet_explorer("ie9", "Internet Explorer 9", ApplicationProduct.IE9),
    "ie10": lambda: _internet_explorer("ie10", "Internet Explorer 10", ApplicationProduct.IE10),
}


# ── Violations ────────────────────────────────────────────────────────


def _stack_buffer_overrun() -> Violation:
    return Violation(
        method=MemoryAccessMethod.WRITE,
        name="stack buffer overrun",
        base_state=_S.FIXED,
        content_src_state=_S.CONTROLLED,
        displacement_state=_S.FIXED,
        extent_state=_S.CONTROLLED,
        base_region_type=MemoryRegionType.STACK,
        addressing_mode=MemoryAddressingMode.RELATIVE,
        direction=MemoryAccessDirection.FORWARD,
        displacement_initial_offset=MemoryAccessOffset.INSIDE_OBJECT,
        locality=Locality.REMOTE,
    )


def _use_after_free_cpp_vtable() -> Violation:
    return Violation(
        method=MemoryAccessMethod.READ,
        name="use after free of C++ object",
        base_state=_S.FIXED,
        content_src_state=_S.CONTROLLED,
        displacement_state=_S.FIXED,
        extent_state=_S.FIXED,
        base_region_type=MemoryRegionType.HEAP,
        content_data_type=MemoryContentDataType.CPP_VIRTUAL_TABLE_POINTER,
        content_container_data_type=MemoryContentDataType.CPP_OBJECT,
        addressing_mode=MemoryAddressingMode.ABSOLUTE,
        locality=Locality.REMOTE,
    )


VIOLATIONS: Dict[str, Callable[[], Violation]] = {
    "stack_buffer_overrun": _stack_buffer_overrun,
    "use_after_free_cpp_vtable": _use_after_free_cpp_vtable,
}


# ── Lookup ────────────────────────────────────────────────────────────


def _lookup(registry: Dict[str, Callable[[], T]], kind: str, symbol: str) -> T:
    try:
        builder = registry[symbol]
    except KeyError:
        raise KeyError(
            f"Unknown {kind} '{symbol}'. Valid: {', '.join(sorted(registry))}"
        ) from None
    return builder()


def get_hardware(symbol: str) -> Hardware:
    return _lookup(HARDWARE, "hardware", symbol)


def get_operating_system(symbol: str) -> OperatingSystem:
    return _lookup(OPERATING_SYSTEMS, "operating system", symbol)


def get_application(symbol: str) -> Application:
    return _lookup(APPLICATIONS, "application", symbol)


def get_violation(symbol: str) -> Violation:
    return _lookup(VIOLATIONS, "violation", symbol)
