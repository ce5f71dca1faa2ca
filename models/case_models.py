"""
Row models for the case, milestone and flag-rule records handed to the flag engine.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MilestoneTypeRef(BaseModel):
    """
    Model for the joined milestone type of a case milestone.
    """
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = Field(default=None, description="Milestone name, e.g. patient_in")


class CaseMilestoneRecord(BaseModel):
    """
    Model for a single recorded case milestone.
    """
    model_config = ConfigDict(extra="ignore")

    milestone_type_id: Optional[str] = Field(default=None, description="Global milestone type id")
    facility_milestone_id: Optional[str] = Field(default=None, description="Facility milestone id")
    recorded_at: Optional[str] = Field(default=None, description="ISO-8601 timestamp the milestone was recorded")
    milestone_types: Optional[MilestoneTypeRef] = Field(default=None, description="Joined global milestone type")
    facility_milestones: Optional[MilestoneTypeRef] = Field(default=None, description="Joined facility milestone")

    @property
    def name(self) -> Optional[str]:
        for ref in (self.milestone_types, self.facility_milestones):
            if ref is not None and ref.name:
                return ref.name
        return None


class ProcedureTypeRef(BaseModel):
    """
    Model for the joined procedure type of a case.
    """
    model_config = ConfigDict(extra="ignore")

    id: str = Field(description="Procedure type id")
    name: Optional[str] = Field(default=None, description="Procedure type name")


class CaseCompletionStatsRecord(BaseModel):
    """
    Model for the financial roll-up of a completed case.
    """
    model_config = ConfigDict(extra="ignore")

    profit: Optional[float] = Field(default=None, description="Case profit")
    reimbursement: Optional[float] = Field(default=None, description="Actual reimbursement")
    total_debits: Optional[float] = Field(default=None, description="Supply and implant debits")
    or_time_cost: Optional[float] = Field(default=None, description="OR time cost")
    total_duration_minutes: Optional[float] = Field(default=None, description="Total case duration in minutes")
    or_hourly_rate: Optional[float] = Field(default=None, description="OR hourly rate")


class CaseRecord(BaseModel):
    """
    Model for a case row joined with its milestones.
    """
    model_config = ConfigDict(extra="ignore")

    id: str = Field(description="Case id")
    case_number: Optional[str] = Field(default=None, description="Human-readable case number")
    facility_id: str = Field(description="Facility id")
    scheduled_date: str = Field(description="Scheduled date, YYYY-MM-DD")
    start_time: Optional[str] = Field(default=None, description="Scheduled start time, HH:MM[:SS]")
    surgeon_id: Optional[str] = Field(default=None, description="Surgeon id")
    or_room_id: Optional[str] = Field(default=None, description="Operating room id")
    status_id: Optional[str] = Field(default=None, description="Case status id")
    surgeon_left_at: Optional[str] = Field(default=None, description="When the surgeon left the room")
    local_timezone: Optional[str] = Field(default=None, description="IANA timezone of the facility")
    procedure_types: Optional[ProcedureTypeRef] = Field(default=None, description="Joined procedure type")
    case_milestones: List[CaseMilestoneRecord] = Field(default_factory=list, description="Recorded milestones")
    completion_stats: Optional[CaseCompletionStatsRecord] = Field(default=None, description="Financial roll-up")
    expected_reimbursement: Optional[float] = Field(default=None, description="Contracted reimbursement")
    category_costs: Dict[str, float] = Field(default_factory=dict, description="Cost per cost category id")


class FlagRuleRecord(BaseModel):
    """
    Model for a flag rule configuration row.
    """
    model_config = ConfigDict(extra="ignore")

    id: str = Field(description="Rule id")
    facility_id: Optional[str] = Field(default=None, description="Facility id")
    name: Optional[str] = Field(default=None, description="Display name")
    description: Optional[str] = Field(default=None, description="Rule description")
    category: Optional[str] = Field(default=None, description="Rule category, e.g. timing or financial")
    cost_category_id: Optional[str] = Field(default=None, description="Cost category evaluated by the rule")
    metric: str = Field(description="Metric id the rule evaluates")
    start_milestone: Optional[str] = Field(default=None, description="Explicit start milestone")
    end_milestone: Optional[str] = Field(default=None, description="Explicit end milestone")
    operator: str = Field(default="gt", description="gt, gte, lt or lte")
    threshold_type: str = Field(default="absolute", description="Threshold strategy")
    threshold_value: float = Field(description="Threshold value or sigma multiplier")
    threshold_value_max: Optional[float] = Field(default=None, description="Upper bound for between rules")
    comparison_scope: str = Field(default="facility", description="facility or personal")
    severity: str = Field(default="warning", description="Flag severity")
    display_order: Optional[int] = Field(default=None, description="Ordering in settings screens")
    is_built_in: bool = Field(default=False, description="Whether the rule ships with the product")
    is_enabled: bool = Field(default=True, description="Whether the rule is switched on")
    is_active: bool = Field(default=True, description="Whether the rule row is active")
    deleted_at: Optional[str] = Field(default=None, description="Soft-delete timestamp")
