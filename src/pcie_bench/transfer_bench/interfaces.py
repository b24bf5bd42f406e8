from __future__ import annotations

import attrs

from .config import BYTES_PER_GIB

BYTES_PER_GB: int = 1_000_000_000

# Measured throughput is usually 60-95% of the theoretical link rate once
# protocol overhead is paid.
REALISTIC_MIN_PCT: float = 60.0
REALISTIC_MAX_PCT: float = 95.0


@attrs.define(frozen=True, slots=True)
class InterfaceSpeed:
    name: str
    gb_per_s: float
    description: str


@attrs.define(frozen=True, slots=True)
class InterfaceMatch:
    interface: InterfaceSpeed
    measured_gb_per_s: float
    percent_of_theoretical: float
    realistic: bool

    @property
    def verdict(self) -> str:
        if self.realistic:
            return f"typical for {self.interface.name}"
        if self.percent_of_theoretical > REALISTIC_MAX_PCT:
            return "unusually high (exceeds typical overhead)"
        return "lower than expected, possible bottleneck"


# Theoretical one-direction rates in GB/s (10^9 bytes).
INTERFACE_SPEEDS: tuple[InterfaceSpeed, ...] = (
    InterfaceSpeed("PCIe 3.0 x1", 0.985, "Single lane PCIe Gen 3"),
    InterfaceSpeed("PCIe 3.0 x4", 3.94, "Common for M.2 SSDs, some GPUs"),
    InterfaceSpeed("PCIe 3.0 x8", 7.88, "Older GPUs, some workstation cards"),
    InterfaceSpeed("PCIe 3.0 x16", 15.75, "Standard GPU slot (older platforms)"),
    InterfaceSpeed("PCIe 4.0 x1", 1.97, "Single lane PCIe Gen 4"),
    InterfaceSpeed("PCIe 4.0 x4", 7.88, "Modern M.2 SSDs, OCuLink Gen 4"),
    InterfaceSpeed("PCIe 4.0 x8", 15.75, "Some modern GPUs in x8 mode"),
    InterfaceSpeed("PCIe 4.0 x16", 31.5, "Modern GPU slot"),
    InterfaceSpeed("PCIe 5.0 x1", 3.94, "Single lane PCIe Gen 5"),
    InterfaceSpeed("PCIe 5.0 x4", 15.75, "Next-gen M.2 SSDs, OCuLink Gen 5"),
    InterfaceSpeed("PCIe 5.0 x8", 31.5, "High-end GPUs in x8 mode"),
    InterfaceSpeed("PCIe 5.0 x16", 63.0, "Current-generation GPU slot"),
    InterfaceSpeed("Thunderbolt 3", 2.75, "40 Gbps, common eGPU connection"),
    InterfaceSpeed("Thunderbolt 4", 2.75, "40 Gbps, same link rate as TB3"),
    InterfaceSpeed("Thunderbolt 5", 6.0, "80 Gbps bidirectional"),
    InterfaceSpeed("TB5 Asymmetric", 12.0, "120 Gbps download / 40 Gbps upload"),
    InterfaceSpeed("USB 3.2 Gen 2", 1.25, "10 Gbps USB-C"),
    InterfaceSpeed("USB4 Gen 3x2", 4.8, "40 Gbps USB4"),
    InterfaceSpeed("OCuLink PCIe 3.0", 3.94, "External PCIe cable (Gen 3 x4)"),
    InterfaceSpeed("OCuLink PCIe 4.0", 7.88, "External PCIe cable (Gen 4 x4)"),
)

LOW_BANDWIDTH_HINTS: tuple[str, ...] = (
    "GPU may be running in a reduced link width (x8 instead of x16)",
    "slot may be wired for fewer lanes (check the motherboard manual)",
    "driver or system configuration issue",
    "thermal or power throttling",
)


def gib_to_gb(gib_per_s: float) -> float:
    return gib_per_s * BYTES_PER_GIB / BYTES_PER_GB


def analyze_bandwidth(gib_per_s: float, speeds: tuple[InterfaceSpeed, ...] = INTERFACE_SPEEDS) -> InterfaceMatch:
    """Return the interface whose theoretical rate best explains a measured GiB/s value.

    Prefers the closest interface for which the measurement lands in the
    realistic efficiency band; otherwise falls back to the closest rate overall.
    """
    if not speeds:
        raise ValueError("speeds must be non-empty")
    measured = gib_to_gb(gib_per_s)

    def pct(s: InterfaceSpeed) -> float:
        return measured / s.gb_per_s * 100.0

    candidates = [s for s in speeds if REALISTIC_MIN_PCT <= pct(s) <= REALISTIC_MAX_PCT]
    realistic = bool(candidates)
    pool = candidates if realistic else list(speeds)
    best = min(pool, key=lambda s: abs(s.gb_per_s - measured))
    return InterfaceMatch(interface=best, measured_gb_per_s=measured, percent_of_theoretical=pct(best), realistic=realistic)


def reference_chart() -> str:
    rule = "=" * 70
    lines: list[str] = [rule, "PCIe & Thunderbolt Bandwidth Reference Chart", rule]
    groups: list[tuple[str, tuple[str, ...]]] = [
        ("PCIe 3.0", ("PCIe 3.0 ",)),
        ("PCIe 4.0", ("PCIe 4.0 ",)),
        ("PCIe 5.0", ("PCIe 5.0 ",)),
        ("Thunderbolt (eGPU connections)", ("Thunderbolt", "TB5")),
        ("Other connections", ("USB", "OCuLink")),
    ]
    for title, prefixes in groups:
        lines.append("")
        lines.append(f"{title}:")
        lines.append("-" * 70)
        for s in INTERFACE_SPEEDS:
            if s.name.startswith(prefixes):
                lines.append(f"  {s.name:<18} ~{s.gb_per_s:6.2f} GB/s   {s.description}")
    lines.append("")
    lines.append("Values are theoretical maximums; real transfers typically reach 70-90% of them.")
    lines.append(rule)
    return "\n".join(lines)
