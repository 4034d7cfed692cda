from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Operator = Literal[
    ":", "=", "!=", "!:", "<>", ">", ">=", "<", "<=", "contains", "starts_with", "ends_with"
]
AggregationFunction = Literal["count", "sum", "avg", "min", "max", "median"]
TimeGroup = Literal["second", "minute", "hour", "day", "month", "year"]


# ---- RadQL ----
class FilterCondition(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    operator: Operator
    value: str | int | float | bool
    negate: bool = False


class AggregationSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    function: AggregationFunction
    field: str | None = None
    group_by: list[str] = Field(default_factory=list)
    time_group: TimeGroup | None = None


class QueryBuilderRequest(BaseModel):
    data_type: str | None = None
    conditions: list[FilterCondition] = Field(default_factory=list)
    logic: Literal["AND", "OR"] = "AND"
    aggregation: AggregationFunction | None = None
    aggregate_field: str | None = None
    group_by: list[str] = Field(default_factory=list)
    time_group: TimeGroup | None = None

    def aggregation_spec(self) -> AggregationSpec | None:
        if self.aggregation is None:
            return None
        return AggregationSpec(
            function=self.aggregation,
            field=self.aggregate_field,
            group_by=self.group_by,
            time_group=self.time_group,
        )


class RadQLQuery(BaseModel):
    data_type: str
    operation: Literal["list", "get_by_id", "stats"]
    filters_query: str | None = None
    stats_query: str | None = None
    id: str | None = None
    limit: int = Field(default=20, ge=1)
    offset: int = Field(default=0, ge=0)
    include_relations: list[str] | None = None


# ---- Container runtime insights ----
class ContainerMeta(BaseModel):
    container_id: str | None = None
    model_config = ConfigDict(extra="allow")


class InsightSummary(BaseModel):
    container_meta: ContainerMeta | None = None
    model_config = ConfigDict(extra="allow")


class Insight(BaseModel):
    id: str | None = None
    summary: InsightSummary | None = None
    analysis: Any = None
    model_config = ConfigDict(extra="allow")

    @property
    def container_id(self) -> str | None:
        if self.summary and self.summary.container_meta:
            return self.summary.container_meta.container_id
        return None


class InsightList(BaseModel):
    entries: list[Insight] = Field(default_factory=list)
    model_config = ConfigDict(extra="allow")

    @model_validator(mode="before")
    @classmethod
    def _null_entries(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("entries") is None:
            data = {**data, "entries": []}
        return data


class OngoingData(BaseModel):
    containers: list[dict[str, Any]] = Field(default_factory=list)
    model_config = ConfigDict(extra="allow")

    @field_validator("containers", mode="before")
    @classmethod
    def _null_list(cls, v: Any) -> Any:
        return [] if v is None else v


class InsightDetail(BaseModel):
    baseline: Any = None
    ongoing: OngoingData | None = None
    model_config = ConfigDict(extra="allow")

    def first_container(self) -> dict[str, Any] | None:
        if self.ongoing and self.ongoing.containers:
            return self.ongoing.containers[0]
        return None


# ---- Process trees ----
class Connection(BaseModel):
    protocol: str | None = None
    remote_addr: str | None = None
    remote_port: int | str | None = None
    direction: str | None = None
    model_config = ConfigDict(extra="allow")


class Program(BaseModel):
    comm: str = ""
    args: list[str] = Field(default_factory=list)
    drift: bool | None = False
    connections: list[Connection] = Field(default_factory=list)
    model_config = ConfigDict(extra="allow")

    @field_validator("comm", mode="before")
    @classmethod
    def _null_comm(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("args", "connections", mode="before")
    @classmethod
    def _null_list(cls, v: Any) -> Any:
        return [] if v is None else v


class ProcessNode(BaseModel):
    pid: int | str | None = None
    programs: list[Program] = Field(default_factory=list)
    children: list[ProcessNode] = Field(default_factory=list)
    model_config = ConfigDict(extra="allow")

    @field_validator("programs", "children", mode="before")
    @classmethod
    def _null_list(cls, v: Any) -> Any:
        return [] if v is None else v


# ---- Workflows ----
class WorkflowRun(BaseModel):
    id: str | int | None = None
    status: str | None = None
    model_config = ConfigDict(extra="allow")


class RunResult(BaseModel):
    run_id: str
    status: str
    message: str
