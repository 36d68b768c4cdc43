"""
Static flag catalog.

Flags are defined once and registered at process start. The built-in
catalog describes the current pilot; a JSON file with the same shape as
``FeatureFlag.to_dict()`` (a list, or ``{"flags": [...]}``) can replace it.
"""

import json
from pathlib import Path

from .interfaces import FeatureFlag, FlagStatus, RolloutStrategy

PILOT_PROJECT = "snang_pilot"
PILOT_DEVELOPER = "snang_developer"

DEFAULT_CATALOG: tuple[FeatureFlag, ...] = (
    FeatureFlag(
        id="cr008_doc_first_flow",
        name="CR-008: Doc-First Buyer Flow",
        description="New 4-step buyer journey (PDPA, upload, confirm, appointment)",
        description_bm="Perjalanan pembeli 4 langkah baharu (PDPA, Muat Naik, Sahkan, Temujanji)",
        owner="product",
        status=FlagStatus.PILOT,
        strategy=RolloutStrategy.WHITELIST,
        whitelisted_projects=(PILOT_PROJECT,),
    ),
    FeatureFlag(
        id="cr007a_unit_inventory",
        name="CR-007A: Unit Inventory",
        description="Property unit selection and status tracking",
        description_bm="Pemilihan unit hartanah dan penjejakan status",
        owner="product",
        status=FlagStatus.PILOT,
        strategy=RolloutStrategy.WHITELIST,
        whitelisted_projects=(PILOT_PROJECT,),
        depends_on=("cr008_doc_first_flow",),
    ),
    FeatureFlag(
        id="s5_partner_incentives",
        name="S5: Partner Incentive Engine",
        description="Campaign rewards for buyers, referrers, and lawyers",
        description_bm="Ganjaran kempen untuk pembeli, perujuk, dan peguam",
        owner="product",
        status=FlagStatus.PILOT,
        strategy=RolloutStrategy.WHITELIST,
        whitelisted_developers=(PILOT_DEVELOPER,),
    ),
    FeatureFlag(
        id="s5_agent_visibility",
        name="S5.4: Agent Campaign Visibility",
        description="Read-only campaign view for agents",
        description_bm="Paparan kempen baca-sahaja untuk ejen",
        owner="product",
        status=FlagStatus.PILOT,
        strategy=RolloutStrategy.WHITELIST,
        whitelisted_projects=(PILOT_PROJECT,),
        depends_on=("s5_partner_incentives",),
    ),
    FeatureFlag(
        id="milestone_resequence",
        name="Milestone Resequence",
        description="KJ moved to #3, handover to #4",
        description_bm="KJ dialih ke #3, Serahan ke #4",
        owner="product",
        status=FlagStatus.ENABLED,
        strategy=RolloutStrategy.INSTANT,
    ),
    FeatureFlag(
        id="safe_language_guard",
        name="Safe Language Guard",
        description="Blocks forbidden commission terminology",
        description_bm="Menyekat istilah komisen terlarang",
        owner="compliance",
        status=FlagStatus.ENABLED,
        strategy=RolloutStrategy.INSTANT,
    ),
)


def load_catalog(path: str | Path | None = None) -> list[FeatureFlag]:
    """Flags from a JSON catalog file, or the built-in catalog."""
    if path is None:
        return list(DEFAULT_CATALOG)

    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("flags", [])
    return [FeatureFlag.from_dict(item) for item in data]
