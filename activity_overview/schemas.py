from typing import Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    field_validator,
)


class OverviewRequest(BaseModel):
    # JSON numbers: 7 and 7.0 are the same integer, 7.5 is not
    timeframe_days: Union[StrictInt, StrictFloat] = Field(alias="timeframeDays")
    force_refresh: StrictBool = Field(default=False, alias="forceRefresh")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("timeframe_days")
    @classmethod
    def whole_number(cls, value: int | float) -> int:
        if isinstance(value, float):
            if not value.is_integer():
                raise ValueError("timeframeDays must be an integer")
            return int(value)
        return value


class ActivityMetricsSchema(BaseModel):
    tasksDone: int = Field(ge=0)
    newLeads: int = Field(ge=0)
    activeProjects: int = Field(ge=0)
    blockedTasks: int = Field(ge=0)


class ActivityOverviewSchema(BaseModel):
    metrics: ActivityMetricsSchema
    highlight: str


class ErrorSchema(BaseModel):
    error: str
