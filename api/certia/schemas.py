
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Any, Dict, List, Literal, Optional

FieldType = Literal["text", "email", "number", "textarea", "select", "date", "checkbox"]

class FieldSpec(BaseModel):
    id: str = Field(min_length=1)
    type: FieldType = "text"
    label_es: str
    label_en: str = ""
    label_ar: str = ""
    placeholder: Optional[str] = None
    required: bool = False
    options: List[str] = Field(default_factory=list)
    order: int = 0

    @model_validator(mode="after")
    def _check_options(self):
        if self.type == "select" and not self.options:
            raise ValueError(f"field {self.id!r}: select fields need at least one option")
        return self

class DesignSpec(BaseModel):
    logo_left: Optional[str] = None
    logo_right: Optional[str] = None
    border_style: Literal["solid", "double", "ridge", "none"] = "solid"
    border_color: str = "#1f2937"
    border_width: int = Field(default=2, ge=0, le=20)
    background_color: str = "#ffffff"
    background_image: Optional[str] = None
    background_opacity: float = Field(default=0.3, ge=0, le=1)
    columns: Literal[1, 2, 3] = 2

def _check_unique_ids(fields: List[FieldSpec]) -> List[FieldSpec]:
    seen = set()
    for f in fields:
        if f.id in seen:
            raise ValueError(f"duplicate field id {f.id!r}")
        seen.add(f.id)
    return fields

class TemplateCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    title_es: str = ""
    title_en: str = ""
    title_ar: str = ""
    subtitle_es: str = ""
    subtitle_en: str = ""
    subtitle_ar: str = ""
    design: DesignSpec = Field(default_factory=DesignSpec)
    fields: List[FieldSpec] = Field(default_factory=list)
    is_active: bool = True

    @field_validator("fields")
    @classmethod
    def _unique_ids(cls, fields: List[FieldSpec]):
        return _check_unique_ids(fields)

class TemplateUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    title_es: Optional[str] = None
    title_en: Optional[str] = None
    title_ar: Optional[str] = None
    subtitle_es: Optional[str] = None
    subtitle_en: Optional[str] = None
    subtitle_ar: Optional[str] = None
    design: Optional[DesignSpec] = None
    fields: Optional[List[FieldSpec]] = None
    is_active: Optional[bool] = None

    @field_validator("fields")
    @classmethod
    def _unique_ids(cls, fields: Optional[List[FieldSpec]]):
        return _check_unique_ids(fields) if fields else fields

class TemplateToggle(BaseModel):
    is_active: bool

class SubmissionCreate(BaseModel):
    template_id: str
    form_data: Dict[str, Any]

class TransitionRequest(BaseModel):
    status: str
    notes: Optional[str] = None
    expected_version: Optional[int] = None

class ReviewAction(BaseModel):
    notes: Optional[str] = None
    expected_version: Optional[int] = None

class SigningResolution(BaseModel):
    transaction_id: str
    outcome: Literal["success", "failure", "cancelled", "pending"]
    artifact_url: Optional[str] = None
    reason: Optional[str] = None

class ProfileCreate(BaseModel):
    username: str = Field(min_length=1)
    email: str
    full_name: Optional[str] = None
    role: Literal["admin", "company", "client"] = "client"

class ProfileUpdate(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: Optional[Literal["admin", "company", "client"]] = None
