"""Pydantic models matching the frontend TypeScript types."""
from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Optional, Generic, TypeVar

T = TypeVar("T")

class PaginatedResponse(BaseModel, Generic[T]):
    items: list[T]
    total: int
    offset: int
    limit: int

# ── Font result models ─────────────────────────────────────────────

class DownloadedFont(BaseModel):
    name: str
    format: str = "unknown"
    size: int = 0  # bytes, 0 when the server did not report a length
    url: str
    source: str = ""  # provider label, e.g. "Google Fonts" or "Self-hosted"


class FontFaceDeclaration(BaseModel):
    family: str
    source: str = ""  # raw `src` value of the @font-face rule
    weight: Optional[str] = None
    style: Optional[str] = None


class ActiveFont(BaseModel):
    family: str
    count: int = 0
    elementCount: int = 0
    preview: Optional[str] = None


class InspectionResult(BaseModel):
    downloadedFonts: list[DownloadedFont] = Field(default_factory=list)
    fontFaceDeclarations: list[FontFaceDeclaration] = Field(default_factory=list)
    activeFonts: list[ActiveFont] = Field(default_factory=list)


# ── Inspection / project records ───────────────────────────────────

class Inspection(BaseModel):
    id: str
    url: str
    projectId: Optional[str] = None
    status: str = "pending"  # pending | processing | completed | failed
    progress: int = 0  # 0-100
    error: Optional[str] = None
    downloadedFonts: list[DownloadedFont] = Field(default_factory=list)
    fontFaceDeclarations: list[FontFaceDeclaration] = Field(default_factory=list)
    activeFonts: list[ActiveFont] = Field(default_factory=list)
    timestamp: str = ""
    createdAt: str = ""
    updatedAt: str = ""


class Project(BaseModel):
    id: str
    name: str
    description: str = ""
    inspectionIds: list[str] = Field(default_factory=list)
    createdAt: str = ""
    updatedAt: str = ""


class ProjectDetail(Project):
    inspections: list[Inspection] = Field(default_factory=list)
    statusCounts: dict[str, int] = Field(default_factory=dict)


class QueueItem(BaseModel):
    id: str
    url: str
    status: str
    label: str
    progress: int = 0
    showProgress: bool = True
    error: Optional[str] = None
    errorTruncated: Optional[str] = None
    projectId: Optional[str] = None


class QueueState(BaseModel):
    visible: bool
    items: list[QueueItem] = Field(default_factory=list)


class DiscoveredPage(BaseModel):
    url: str
    title: Optional[str] = None
    priority: float = 0.0
    source: str = "original"  # original | sitemap | internal-link | common-path


# ── Request bodies ─────────────────────────────────────────────────

class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    inspectionIds: list[str] = Field(default_factory=list)


class ProjectUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class InspectRequest(BaseModel):
    urls: list[str] = Field(..., min_length=1)
    projectId: Optional[str] = None
    projectName: Optional[str] = None
    background: bool = True
    trigger: str = "api"


class DiscoverRequest(BaseModel):
    url: str = Field(..., min_length=1)
    maxPages: int = Field(10, ge=1, le=100)


class RebuildLinksRequest(BaseModel):
    background: bool = False
    dryRun: bool = False
    trigger: str = "api"
