"""Evidence and verification schemas."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class BoundingBox(BaseModel):
    """Region on a page, in page-coordinate units."""

    left: float
    top: float
    width: float
    height: float


class EvidenceMatch(BaseModel):
    """A retrieved chunk hydrated with its owning file's display name."""

    model_config = ConfigDict(populate_by_name=True)

    source_id: str = Field(alias="sourceId")
    file_id: str = Field(alias="fileId")
    filename: str
    content: str
    chunk_id: Optional[str] = Field(default=None, alias="chunkId")
    segment_id: Optional[str] = Field(default=None, alias="segmentId")
    page_number: Optional[int] = Field(default=None, alias="pageNumber")
    page_width: Optional[float] = Field(default=None, alias="pageWidth")
    page_height: Optional[float] = Field(default=None, alias="pageHeight")
    bbox: Optional[BoundingBox] = None


def make_source_id(file_id: str, segment_id: Optional[str], chunk_id: Optional[str], ordinal: int) -> str:
    """Stable citation key for a chunk position."""
    return f"{file_id}:{segment_id or chunk_id or ordinal}"


class VerificationResult(BaseModel):
    """Adjudication outcome for one claim.

    A claim that is not supported never carries a partial citation. A supported
    claim may still have no ``source`` when the chosen evidence could not be
    mapped back; it is then supported but uncited.
    """

    model_config = ConfigDict(populate_by_name=True)

    claim: str
    is_supported: bool = Field(alias="isSupported")
    document_name: Optional[str] = None
    matching_text: Optional[str] = None
    source: Optional[EvidenceMatch] = None

    @model_validator(mode="after")
    def _unsupported_has_no_citation(self) -> "VerificationResult":
        if not self.is_supported and (
            self.document_name is not None or self.matching_text is not None or self.source is not None
        ):
            raise ValueError("Unsupported claims must not carry citation fields")
        return self


class SearchRequest(BaseModel):
    """Knowledge base search request."""

    query: str = Field(min_length=1)
    limit: Optional[float] = None


class SearchResponse(BaseModel):
    """Knowledge base search results."""

    matches: List[EvidenceMatch]
