from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from proofpack.context import PackFilters
from proofpack.runs import SIGNATURE_ROLES


class PackExportRequest(BaseModel):
    time_range: str = "30d"
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    filters: PackFilters = Field(default_factory=PackFilters)


class ManifestVerifyRequest(BaseModel):
    manifest: Dict[str, Any]
    manifest_hash: Optional[str] = None


class CreateRunRequest(BaseModel):
    job_id: str = Field(min_length=1, max_length=64)


class AttachArtifactRequest(BaseModel):
    filename: str = Field(min_length=1, max_length=255)
    type: str = Field(pattern=r'^(pdf|csv|json)$')
    sha256: str = Field(pattern=r'^[0-9a-f]{64}$')
    byte_length: int = Field(ge=0)


class SignatureRequest(BaseModel):
    signature_role: str = Field(pattern="^(" + "|".join(SIGNATURE_ROLES) + ")$")
    signer_name: str = Field(min_length=1, max_length=200)
    signer_title: str = Field(min_length=1, max_length=200)
    signature_svg: str = Field(min_length=1, max_length=200_000)
