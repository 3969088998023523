from pathlib import Path
from typing import Literal, Optional
from pydantic import BaseModel, Field, model_validator
import yaml

class OptimizerConfig(BaseModel):
    max_iterations: int = Field(default=3, gt=0)
    target_score_threshold: float = Field(default=90, gt=0, le=100)
    default_target_gain: float = Field(default=30, gt=0)
    min_score_improvement: float = Field(default=2, ge=0)
    regression_threshold: float = Field(default=5, ge=0)
    later_iteration_edit_cap: int = Field(default=5, gt=0)

class BudgetConfig(BaseModel):
    max_safe_tokens: int = Field(default=100000, gt=0)
    target_tokens: int = Field(default=50000, gt=0)
    minimal_tokens: int = Field(default=20000, gt=0)
    instruction_overhead: int = Field(default=2000, ge=0)
    chars_per_token: int = Field(default=4, gt=0)
    recent_full_sections: int = Field(default=5, gt=0)
    reduced_recent_sections: int = Field(default=3, gt=0)
    minimal_recent_sections: int = Field(default=2, gt=0)
    essential_world_categories: list[str] = Field(default_factory=lambda: ["PowerLevels", "Systems", "Laws"])
    reduced_world_cap: int = Field(default=20, gt=0)
    fallback_world_cap: int = Field(default=10, gt=0)
    minimal_world_cap: int = Field(default=10, gt=0)
    fallback_entity_cap: int = Field(default=10, gt=0)
    minimal_entity_cap: int = Field(default=5, gt=0)
    edit_previous_tail_chars: int = Field(default=600, ge=0)
    edit_next_head_chars: int = Field(default=400, ge=0)
    edit_fallback_entities: int = Field(default=5, ge=0)

    @model_validator(mode="after")
    def _windows_shrink(self):
        if not (self.recent_full_sections >= self.reduced_recent_sections >= self.minimal_recent_sections):
            raise ValueError("Recent-section windows must shrink from full to reduced to minimal")
        return self

class PlanningConfig(BaseModel):
    min_severity: Literal["critical", "high", "medium", "low"] = "medium"
    max_actions_per_weakness: int = Field(default=10, gt=0)
    regenerate_below: float = Field(default=20, ge=0, le=100)

class ValidationConfig(BaseModel):
    content_bonus_cap: float = Field(default=15, ge=0)
    high_confidence_weight: float = Field(default=0.6, ge=0, le=1)
    medium_confidence_weight: float = Field(default=0.4, ge=0, le=1)

class CoordinatorConfig(BaseModel):
    early_stop_threshold: float = Field(default=5, ge=0)
    max_parallel_workers: int = Field(default=4, gt=0)

class LLMConfig(BaseModel):
    provider: Literal["gemini", "qwen"] = "gemini"
    api_key: str = ""
    model: str = "gemini-2.5-pro"
    base_url: Optional[str] = None
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=4096, gt=0)
    max_retries: int = Field(default=2, ge=0)
    retry_delay: float = Field(default=2.0, ge=0)

class Config(BaseModel):
    optimizer: OptimizerConfig = Field(default_factory=OptimizerConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    planning: PlanningConfig = Field(default_factory=PlanningConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    coordinator: CoordinatorConfig = Field(default_factory=CoordinatorConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    log_level: str = Field(default="INFO")

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        with open(path, "r") as f:
            data = yaml.safe_load(f)
        return cls(**(data or {}))

    def to_yaml(self, path: Path):
        with open(path, "w") as f:
            yaml.dump(self.model_dump(), f, default_flow_style=False)
