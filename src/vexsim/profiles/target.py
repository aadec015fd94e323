"""
profiles.target: Hardware, operating system and application profiles.

A ``Target`` bundles one profile of each kind with an initial violation
and the initial assumptions.  ``Target.recalibrate()`` lets every profile
inherit what it leaves unspecified from the layer below it, in the order
hardware, operating system, application, violation.

Operating system behaviour that depends on the release is expressed as
rules keyed by ``FeatureSet``; application behaviour that depends on the
product is keyed by ``ApplicationProduct``.
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import (
    ArchitectureFamily,
    FeatureSet,
    HeapFeature,
    MemoryRegion,
    MitigationPolicy,
    OperatingSystemFamily,
    StackProtectionVersion,
    effective_policy,
)
from .violation import Violation

_P = MitigationPolicy
_R = MemoryRegion


def _profile_description(kind: str, profile: BaseModel) -> str:
    """One line per set scalar field, used by the text reports."""
    lines = [f"{kind}: {getattr(profile, 'name', None) or getattr(profile, 'symbol', None) or '-'}"]
    for key, value in profile.model_dump(mode="json", exclude_none=True).items():
        if isinstance(value, (dict, list)) or key in ("name", "symbol"):
            continue
        lines.append(f"  {key} = {value}")
    return "\n".join(lines)


# ── Hardware ──────────────────────────────────────────────────────────


class Hardware(BaseModel):
    symbol: Optional[str] = None
    name: Optional[str] = None
    address_bits: Optional[int] = None
    architecture_family: Optional[ArchitectureFamily] = None
    nx_policy: Optional[MitigationPolicy] = None
    smep_policy: Optional[MitigationPolicy] = None

    def recalibrate(self, target: "Target") -> None:
        pass

    @property
    def description(self) -> str:
        return _profile_description("Hardware", self)


# ── Operating system ──────────────────────────────────────────────────


def _all_regions(policy: Any) -> Dict[MemoryRegion, Any]:
    return {region: policy for region in MemoryRegion}


def _all_heap_features(policy: MitigationPolicy) -> Dict[HeapFeature, MitigationPolicy]:
    return {feature: policy for feature in HeapFeature}


class OperatingSystem(BaseModel):
    """
    An operating system release.

    Every memory region starts with NX and ASLR unsupported and no
    entropy; builders in ``profiles.builtin`` layer release features on
    top and register them in ``features``.
    """

    symbol: Optional[str] = None
    name: Optional[str] = None
    family: OperatingSystemFamily = OperatingSystemFamily.OTHER
    features: List[FeatureSet] = Field(default_factory=list)
    architectures: Optional[List[ArchitectureFamily]] = Field(
        default=None,
        description="Supported architectures; None means any.",
    )
    address_bits: Optional[int] = None

    memory_region_nx_policy: Dict[MemoryRegion, MitigationPolicy] = Field(
        default_factory=lambda: _all_regions(_P.NOT_SUPPORTED)
    )
    memory_region_aslr_policy: Dict[MemoryRegion, MitigationPolicy] = Field(
        default_factory=lambda: _all_regions(_P.NOT_SUPPORTED)
    )
    memory_region_aslr_entropy_bits: Dict[MemoryRegion, int] = Field(
        default_factory=lambda: _all_regions(0)
    )

    default_stack_protection_enabled: Optional[bool] = False
    default_stack_protection_version: Optional[StackProtectionVersion] = StackProtectionVersion.NOT_SUPPORTED
    default_stack_protection_entropy_bits: Optional[int] = None

    # ── Kernel ───────────────────────────────────────────────────────
    kernel_smep_policy: Optional[MitigationPolicy] = _P.NOT_SUPPORTED
    kernel_null_dereference_prevention_policy: Optional[MitigationPolicy] = _P.NOT_SUPPORTED
    kernel_pool_policy: Dict[HeapFeature, MitigationPolicy] = Field(default_factory=dict)

    # ── User ─────────────────────────────────────────────────────────
    user_heap_policy: Dict[HeapFeature, MitigationPolicy] = Field(
        default_factory=lambda: _all_heap_features(_P.NOT_SUPPORTED)
    )
    user_sehop_policy: Optional[MitigationPolicy] = None
    user_safeseh_policy: Optional[MitigationPolicy] = None
    user_aslr_bottom_up_high_entropy_policy: Optional[MitigationPolicy] = None
    user_pointer_encoding_uef: Optional[bool] = None
    user_pointer_encoding_peb_fast_lock_routine: Optional[bool] = None
    user_pointer_encoding_heap_commit_routine: Optional[bool] = None

    def is_windows(self) -> bool:
        return self.family == OperatingSystemFamily.WINDOWS

    def has_feature(self, feature: FeatureSet) -> bool:
        return feature in self.features

    def is_compatible_with(self, hardware: Hardware) -> bool:
        if self.architectures is None or hardware.architecture_family is None:
            return True
        return hardware.architecture_family in self.architectures

    def refresh_bottom_up_entropy_bits(self) -> None:
        """Derive the bottom-up dependent regions from the bottom-up entropy."""
        bits = self.memory_region_aslr_entropy_bits
        bu = bits.get(_R.USER_VIRTUAL_ALLOC_BU, 0)
        bits[_R.USER_FORCE_RELOCATED_IMAGE_BASE] = bu
        bits[_R.USER_FORCE_RELOCATED_IMAGE_CODE] = bu
        bits[_R.USER_FORCE_RELOCATED_IMAGE_DATA] = bu
        bits[_R.USER_THREAD_STACK] = bu + 9
        bits[_R.USER_PROCESS_HEAP] = bu
        bits[_R.USER_JIT_CODE] = bu

    def recalibrate(self, target: "Target") -> None:
        hw = target.hardware
        if self.address_bits is None:
            self.address_bits = hw.address_bits

        if self.default_stack_protection_enabled and self.default_stack_protection_entropy_bits is None:
            if self.address_bits == 32:
                self.default_stack_protection_entropy_bits = 32
            elif self.address_bits == 64:
                self.default_stack_protection_entropy_bits = 64

        if (
            self.kernel_smep_policy is not None
            and self.kernel_smep_policy.is_supported
            and hw.smep_policy is not None
            and hw.smep_policy.is_off
        ):
            self.kernel_smep_policy = _P.OFF

        if hw.nx_policy is not None and hw.nx_policy.is_off:
            for region, policy in self.memory_region_nx_policy.items():
                if policy.is_supported:
                    self.memory_region_nx_policy[region] = _P.OFF

        for feature in FeatureSet:
            if feature in self.features:
                for rule in _OS_FEATURE_RULES.get(feature, ()):
                    rule(target)

    @property
    def description(self) -> str:
        return _profile_description("OperatingSystem", self)


# ── Windows release rules ─────────────────────────────────────────────


def _xp_sp2_rule(target: "Target") -> None:
    wos = target.operating_system
    wos.default_stack_protection_entropy_bits = 16
    # PEB / TEB randomization is not in place for Wow64 processes.
    if wos.address_bits == 32 or target.application.address_bits == 32:
        for region in (_R.USER_PEB, _R.USER_TEB):
            wos.memory_region_aslr_policy[region] = _P.ON
            wos.memory_region_aslr_entropy_bits[region] = 4
    for region in (_R.KERNEL_THREAD_STACK, _R.KERNEL_INITIAL_THREAD_STACK, _R.KERNEL_HYPERSPACE):
        wos.memory_region_nx_policy[region] = _P.ON
    if wos.address_bits == 64:
        for region in (_R.KERNEL_PCR, _R.KERNEL_PAGED_POOL, _R.KERNEL_SESSION_POOL, _R.KERNEL_DRIVER_IMAGE):
            wos.memory_region_nx_policy[region] = _P.ON


def _vista_rtm_rule(target: "Target") -> None:
    wos = target.operating_system
    wos.default_stack_protection_entropy_bits = 48 if wos.address_bits == 64 else 32
    if wos.address_bits == 64 and target.application.address_bits == 64:
        wos.user_heap_policy[HeapFeature.HEAP_TERMINATE_ON_CORRUPTION] = _P.OPT_OUT


def _windows7_rule(target: "Target") -> None:
    wos = target.operating_system
    if wos.address_bits == 64:
        wos.memory_region_aslr_entropy_bits[_R.KERNEL_DRIVER_IMAGE] = 8
    elif wos.address_bits == 32:
        wos.memory_region_aslr_entropy_bits[_R.KERNEL_DRIVER_IMAGE] = 6


def _windows8_null_dereference_rule(target: "Target") -> None:
    wos = target.operating_system
    if wos.kernel_null_dereference_prevention_policy is None:
        if target.hardware.architecture_family == ArchitectureFamily.I386:
            wos.kernel_null_dereference_prevention_policy = _P.OPT_OUT
        else:
            wos.kernel_null_dereference_prevention_policy = _P.ON


def _windows8_entropy_rule(target: "Target") -> None:
    # Imported lazily: simulation depends on profiles, not the reverse.
    from ..simulation.assumption import AssumptionName

    wos = target.operating_system
    bits = wos.memory_region_aslr_entropy_bits
    if wos.address_bits == 64 and target.application.address_bits == 64:
        bits[_R.USER_DLL_IMAGE_BASE] = 14 if target.is_assumed_true(AssumptionName.APPLICATION_LOADS_DLL_BELOW_4GB) else 19
        bits[_R.USER_EXE_IMAGE_BASE] = 8 if target.is_assumed_true(AssumptionName.APPLICATION_LOADS_EXE_BELOW_4GB) else 17
        bits[_R.USER_VIRTUAL_ALLOC_TD] = 17
    else:
        bits[_R.USER_DLL_IMAGE_BASE] = 8
        bits[_R.USER_EXE_IMAGE_BASE] = 8
        bits[_R.USER_VIRTUAL_ALLOC_TD] = 8

    bits[_R.USER_VIRTUAL_ALLOC_BU] = 8
    bits[_R.USER_VIRTUAL_ALLOC_BUHE] = 24
    buhe = wos.user_aslr_bottom_up_high_entropy_policy
    if wos.address_bits == 64 and buhe is not None and buhe.is_on:
        bits[_R.USER_VIRTUAL_ALLOC_BU] = bits[_R.USER_VIRTUAL_ALLOC_BUHE]

    wos.refresh_bottom_up_entropy_bits()
    bits[_R.USER_THREAD_STACK] = bits[_R.USER_VIRTUAL_ALLOC_BU]
    bits[_R.USER_TEB] = bits[_R.USER_VIRTUAL_ALLOC_TD]
    bits[_R.USER_PEB] = bits[_R.USER_VIRTUAL_ALLOC_TD]


def _windows8_arm_rule(target: "Target") -> None:
    if target.hardware.architecture_family != ArchitectureFamily.ARM:
        return
    wos = target.operating_system
    for region in MemoryRegion:
        wos.memory_region_nx_policy[region] = _P.ON
    for region in (_R.USER_EXE_IMAGE_BASE, _R.USER_DLL_IMAGE_BASE, _R.USER_VIRTUAL_ALLOC_BU, _R.USER_THREAD_STACK):
        wos.memory_region_aslr_policy[region] = _P.ON
    wos.memory_region_aslr_policy[_R.USER_FORCE_RELOCATED_IMAGE_BASE] = _P.OFF
    wos.user_aslr_bottom_up_high_entropy_policy = _P.OFF
    wos.user_sehop_policy = _P.NOT_SUPPORTED
    wos.user_heap_policy[HeapFeature.HEAP_TERMINATE_ON_CORRUPTION] = _P.OPT_OUT


_OS_FEATURE_RULES: Dict[FeatureSet, List[Callable[["Target"], None]]] = {
    FeatureSet.WINDOWS_XP_SP2: [_xp_sp2_rule],
    FeatureSet.WINDOWS_VISTA_RTM: [_vista_rtm_rule],
    FeatureSet.WINDOWS7: [_windows7_rule],
    FeatureSet.WINDOWS8: [_windows8_null_dereference_rule, _windows8_entropy_rule, _windows8_arm_rule],
}


# ── Application ───────────────────────────────────────────────────────


class ApplicationProduct(str, Enum):
    """Closed set of application variants with product-specific rules."""

    GENERIC = "generic"
    WINDOWS_KERNEL = "windows_kernel"
    IE8 = "ie8"
    IE9 = "ie9"
    IE10 = "ie10"


class Application(BaseModel):
    symbol: Optional[str] = None
    name: Optional[str] = None
    product: ApplicationProduct = ApplicationProduct.GENERIC
    family: OperatingSystemFamily = OperatingSystemFamily.OTHER
    address_bits: Optional[int] = None
    kernel_application: bool = False

    memory_region_aslr_policy: Dict[MemoryRegion, MitigationPolicy] = Field(default_factory=dict)
    memory_region_nx_policy: Dict[MemoryRegion, MitigationPolicy] = Field(default_factory=dict)
    user_heap_policy: Dict[HeapFeature, MitigationPolicy] = Field(default_factory=dict)
    nx_permanent: Optional[bool] = None

    default_stack_protection_enabled: Optional[bool] = None
    default_stack_protection_version: Optional[StackProtectionVersion] = None
    default_stack_protection_entropy_bits: Optional[int] = None

    restrict_automatic_restarts: Optional[bool] = None
    can_initialize_content_via_heap_spray: Optional[bool] = None
    can_initialize_code_via_jit: Optional[bool] = None

    user_sehop_policy: Optional[MitigationPolicy] = None
    user_aslr_bottom_up_high_entropy_policy: Optional[MitigationPolicy] = None

    def is_windows(self) -> bool:
        return self.family == OperatingSystemFamily.WINDOWS

    def is_compatible_with(self, hardware: Hardware, os: OperatingSystem) -> bool:
        if self.is_windows():
            return os.is_windows()
        return True

    def recalibrate(self, target: "Target") -> None:
        os = target.operating_system
        if self.address_bits is None or self.product == ApplicationProduct.WINDOWS_KERNEL:
            self.address_bits = os.address_bits

        for mine, theirs in (
            (self.memory_region_aslr_policy, os.memory_region_aslr_policy),
            (self.memory_region_nx_policy, os.memory_region_nx_policy),
            (self.user_heap_policy, os.user_heap_policy),
        ):
            for key in list(dict.fromkeys(list(theirs) + list(mine))):
                policy = effective_policy(mine.get(key), theirs.get(key))
                if policy is not None:
                    mine[key] = policy

        if self.default_stack_protection_enabled is None:
            self.default_stack_protection_enabled = os.default_stack_protection_enabled
            self.default_stack_protection_version = os.default_stack_protection_version
            self.default_stack_protection_entropy_bits = os.default_stack_protection_entropy_bits

        if self.is_windows():
            self.user_sehop_policy = effective_policy(self.user_sehop_policy, os.user_sehop_policy)

        for rule in _APPLICATION_PRODUCT_RULES.get(self.product, ()):
            rule(target)

    @property
    def description(self) -> str:
        return _profile_description("Application", self)


def _ie_sehop_rule(target: "Target") -> None:
    app = target.application
    if target.operating_system.has_feature(FeatureSet.WINDOWS7):
        if app.address_bits == 32 and not app.kernel_application:
            app.user_sehop_policy = _P.ON


def _ie10_windows8_rule(target: "Target") -> None:
    wos = target.operating_system
    app = target.application
    if not wos.has_feature(FeatureSet.WINDOWS8):
        return
    # Spraying is assumed impossible for 64-bit IE on Windows 8.
    if app.address_bits == 64:
        app.can_initialize_content_via_heap_spray = False
        app.user_aslr_bottom_up_high_entropy_policy = _P.ON
        bits = wos.memory_region_aslr_entropy_bits
        bits[_R.USER_VIRTUAL_ALLOC_BU] = bits.get(_R.USER_VIRTUAL_ALLOC_BUHE, 0)
        wos.refresh_bottom_up_entropy_bits()
    for region in (
        _R.USER_FORCE_RELOCATED_IMAGE_BASE,
        _R.USER_FORCE_RELOCATED_IMAGE_CODE,
        _R.USER_FORCE_RELOCATED_IMAGE_DATA,
    ):
        app.memory_region_aslr_policy[region] = _P.ON


_APPLICATION_PRODUCT_RULES: Dict[ApplicationProduct, List[Callable[["Target"], None]]] = {
    ApplicationProduct.IE9: [_ie_sehop_rule],
    ApplicationProduct.IE10: [_ie10_windows8_rule, _ie_sehop_rule],
}


# ── Target ────────────────────────────────────────────────────────────


class Target(BaseModel):
    """Everything the simulator treats as invariant for one run."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    hardware: Hardware = Field(default_factory=Hardware)
    operating_system: OperatingSystem = Field(default_factory=OperatingSystem)
    application: Application = Field(default_factory=Application)
    violation: Violation = Field(default_factory=Violation)
    initial_assumptions: List[Any] = Field(default_factory=list)

    def recalibrate(self) -> None:
        self.hardware.recalibrate(self)
        self.operating_system.recalibrate(self)
        self.application.recalibrate(self)
        self.violation.recalibrate(self)

    def is_x86_application(self) -> bool:
        return self.application.address_bits == 32 and self.hardware.architecture_family in (
            ArchitectureFamily.I386,
            ArchitectureFamily.AMD64,
        )

    # ── Initial assumptions ──────────────────────────────────────────

    def assume(self, assumption: Any) -> None:
        """
        Add an initial assumption.

        An assumption the user supplied explicitly is never replaced; an
        implicit one is superseded by the new value.
        """
        for existing in self.initial_assumptions:
            if existing == assumption:
                if existing.explicit:
                    return
                self.initial_assumptions.remove(existing)
                break
        self.initial_assumptions.append(assumption)

    def assume_true(self, name: Any) -> None:
        from ..simulation.assumption import Assumption

        self.assume(Assumption.coerce(name, probability=1.0))

    def assume_false(self, name: Any) -> None:
        from ..simulation.assumption import Assumption

        self.assume(Assumption.coerce(name, probability=0.0))

    def is_assumed_true(self, name: Any) -> bool:
        from ..simulation.assumption import Assumption

        wanted = Assumption.coerce(name)
        for existing in self.initial_assumptions:
            if existing == wanted:
                return existing.probability > 0
        return False

    @property
    def description(self) -> str:
        parts = [
            self.hardware.description,
            self.operating_system.description,
            self.application.description,
            f"Violation: {self.violation}",
        ]
        return "\n".join(parts) + "\n"


def create_targets(
    hardware_list: Iterable[Hardware],
    operating_system_list: Iterable[OperatingSystem],
    application_list: Iterable[Application],
    violation_list: Iterable[Violation],
    assumptions: Optional[Iterable[Any]] = None,
) -> List[Target]:
    """
    Cross product of compatible hardware, OS, application and violation.

    Every target receives its own copy of each profile, since
    recalibration mutates them.  Supplied assumptions are marked explicit.
    """
    initial = list(assumptions or [])
    for assumption in initial:
        assumption.explicit = True

    hardware_list = list(hardware_list)
    operating_system_list = list(operating_system_list)
    application_list = list(application_list)
    violation_list = list(violation_list)

    targets: List[Target] = []
    for hw in hardware_list:
        for os in operating_system_list:
            if not os.is_compatible_with(hw):
                continue
            for app in application_list:
                if not app.is_compatible_with(hw, os):
                    continue
                for violation in violation_list:
                    targets.append(
                        Target(
                            hardware=hw.model_copy(deep=True),
                            operating_system=os.model_copy(deep=True),
                            application=app.model_copy(deep=True),
                            violation=violation.clone_violation(),
                            initial_assumptions=[a.model_copy() for a in initial],
                        )
                    )
    return targets


def load_target(path: Path) -> Target:
    """
    Load a target from a JSON document.

    Each of ``hardware``, ``operating_system``, ``application`` and
    ``violation`` is either a built-in symbol or an inline profile object.
    ``assumptions`` is a list of ``{"name": ..., "probability": ...}``
    objects, all treated as explicit.
    """
    from ..simulation.assumption import Assumption
    from . import builtin

    data = json.loads(Path(path).read_text())

    def _resolve(key: str, lookup: Callable[[str], Any], model: Any) -> Any:
        value = data.get(key)
        if value is None:
            return model()
        if isinstance(value, str):
            return lookup(value)
        return model.model_validate(value)

    target = Target(
        hardware=_resolve("hardware", builtin.get_hardware, Hardware),
        operating_system=_resolve("operating_system", builtin.get_operating_system, OperatingSystem),
        application=_resolve("application", builtin.get_application, Application),
        violation=_resolve("violation", builtin.get_violation, Violation),
    )
    for raw in data.get("assumptions", []):
        assumption = Assumption.model_validate(raw)
        assumption.explicit = True
        target.assume(assumption)
    return target
