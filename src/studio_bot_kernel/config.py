from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from .actions.stages import StageCatalog
from .errors import ConfigError

DEFAULT_STAGE_TOOL = "CRM_UPDATE_DEAL_STAGE"
DEFAULT_ISSUE_TOOL = "LINEAR_CREATE_LINEAR_ISSUE"

# Keys in <schema>.settings that overlay environment values.
SETTING_CRM_ACCOUNT = "crm.connected_account_id"
SETTING_TRACKER_ACCOUNT = "linear.connected_account_id"
SETTING_TRACKER_TEAM = "linear.team_id"
SETTING_STAGES = "crm.stages"
SETTING_STAGE_ALIASES = "crm.stage_aliases"


@dataclass(frozen=True)
class EngineConfig:
    """Everything the orchestrator and executors read at run time.

    Built once at process start and passed down explicitly.
    """

    crm_account_id: str | None = None
    tracker_account_id: str | None = None
    tracker_team_id: str | None = None
    stage_tool: str = DEFAULT_STAGE_TOOL
    issue_tool: str = DEFAULT_ISSUE_TOOL
    stage_catalog: StageCatalog = field(default_factory=StageCatalog)
    won_stage_label: str = "won"
    draft_ttl_sec: int = 24 * 3600
    tool_timeout_sec: float = 30.0
    enforce_draft_expiry: bool = True
    reclaim_failed_tokens: bool = False
    # A pending kickoff-task claim older than this is treated as abandoned.
    template_claim_lease_sec: float = 600.0

    def require_crm_account(self) -> str:
        if not self.crm_account_id:
            raise ConfigError(
                "CRM account is not connected",
                code="crm_account_missing",
                hint=f"Set BOT_CRM_CONNECTED_ACCOUNT_ID or the '{SETTING_CRM_ACCOUNT}' setting",
            )
        return self.crm_account_id

    def require_tracker(self) -> tuple[str, str]:
        if not self.tracker_account_id:
            raise ConfigError(
                "Issue tracker account is not connected",
                code="tracker_account_missing",
                hint=f"Set BOT_LINEAR_CONNECTED_ACCOUNT_ID or the '{SETTING_TRACKER_ACCOUNT}' setting",
            )
        if not self.tracker_team_id:
            raise ConfigError(
                "Issue tracker team is not configured",
                code="tracker_team_missing",
                hint=f"Set BOT_LINEAR_TEAM_ID or the '{SETTING_TRACKER_TEAM}' setting",
            )
        return self.tracker_account_id, self.tracker_team_id

    def with_overrides(self, overrides: dict[str, Any]) -> EngineConfig:
        """Overlay values read from the settings table; blank values are ignored."""
        changes: dict[str, Any] = {}
        crm = _text(overrides.get(SETTING_CRM_ACCOUNT))
        if crm:
            changes["crm_account_id"] = crm
        tracker = _text(overrides.get(SETTING_TRACKER_ACCOUNT))
        if tracker:
            changes["tracker_account_id"] = tracker
        team = _text(overrides.get(SETTING_TRACKER_TEAM))
        if team:
            changes["tracker_team_id"] = team

        stages = overrides.get(SETTING_STAGES)
        aliases = overrides.get(SETTING_STAGE_ALIASES)
        if stages or aliases:
            changes["stage_catalog"] = StageCatalog.from_raw(
                stages if stages else self.stage_catalog.to_dict()["stages"],
                aliases if aliases else dict(self.stage_catalog.aliases),
            )
        return replace(self, **changes) if changes else self

    def to_dict(self) -> dict[str, Any]:
        return {
            "crm_account_id": self.crm_account_id,
            "tracker_account_id": self.tracker_account_id,
            "tracker_team_id": self.tracker_team_id,
            "stage_tool": self.stage_tool,
            "issue_tool": self.issue_tool,
            "stage_catalog": self.stage_catalog.to_dict(),
            "won_stage_label": self.won_stage_label,
            "draft_ttl_sec": self.draft_ttl_sec,
            "tool_timeout_sec": self.tool_timeout_sec,
            "enforce_draft_expiry": self.enforce_draft_expiry,
            "reclaim_failed_tokens": self.reclaim_failed_tokens,
            "template_claim_lease_sec": self.template_claim_lease_sec,
        }


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
