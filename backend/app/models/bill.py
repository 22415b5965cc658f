# /backend/app/models/bill.py

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, List, Literal, Optional


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True)


class PriceRange(CamelModel):
    min: Optional[float] = None
    max: float


class DuplicateCharge(CamelModel):
    item: str
    occurrences: int
    total_charged: float
    facility: Optional[str] = None


class BenchmarkIssue(CamelModel):
    item: str
    charged: float
    benchmark: float
    variance: str
    facility: Optional[str] = None
    reference_code: Optional[str] = None
    confidence: Optional[float] = None
    price_range: Optional[PriceRange] = None


class HmoItem(CamelModel):
    item: str
    type: Literal["charge", "deduction"]
    covered: Literal["Yes", "No"]
    amount: float
    benchmark_price: Optional[float] = None
    hmo_amount: Optional[float] = None
    patient_amount: Optional[float] = None


class AnalysisSummary(CamelModel):
    total_charges: float = 0.0
    flagged_amount: float = 0.0
    percentage_flagged: str = "0%"
    patient_responsibility: float = 0.0
    hmo_covered: float = 0.0


class AnalysisReport(CamelModel):
    duplicates: List[DuplicateCharge] = Field(default_factory=list)
    benchmark_issues: List[BenchmarkIssue] = Field(default_factory=list)
    hmo_items: List[HmoItem] = Field(default_factory=list)
    summary: AnalysisSummary = Field(default_factory=AnalysisSummary)


class AnalyzeResponse(AnalysisReport):
    file_id: Optional[str] = None
    file_name: Optional[str] = None
    debug_text: Optional[str] = None


class EmailRequest(BaseModel):
    analysis_data: Optional[Any] = None
    system_prompt: Optional[str] = None


class EmailResponse(BaseModel):
    email: str


class BatchSearchRequest(CamelModel):
    search_terms: Any = None
