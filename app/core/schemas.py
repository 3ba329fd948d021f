import math
from typing import Optional, List, Dict, Any, Literal, Tuple, Union
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


MIN_QUERY_LIMIT = 1
MAX_QUERY_LIMIT = 500
DEFAULT_QUERY_LIMIT = 100


# =========================
# Enums
# =========================
class FilterOperator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    LIKE = "like"
    ILIKE = "ilike"
    IS = "is"
    NOT_IS = "not_is"


class OrderDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class RetrievalMethod(str, Enum):
    PGVECTOR_SEARCH = "pgvector_search"
    TEXT_SEARCH = "text_search"
    SUPABASE_DATA_DIRECT = "supabase_data_direct"
    HARDCODED_FALLBACK = "hardcoded_fallback"


class ContextType(str, Enum):
    FIRE = "fire"
    AIR_QUALITY = "air_quality"
    GENERAL = "general"


class ParseFailureKind(str, Enum):
    MALFORMED = "malformed"  # not JSON / wrong shape
    POLICY_VIOLATION = "policy_violation"  # well formed, but not allowed to run


# =========================
# QUERY DESCRIPTOR
# =========================
def clamp_limit(value: int) -> int:
    return max(MIN_QUERY_LIMIT, min(int(value), MAX_QUERY_LIMIT))


class QueryFilter(BaseModel):
    field: str = Field(min_length=1)
    operator: FilterOperator
    value: Any = None


class QueryDescriptor(BaseModel):
    """
    Structured request against the tabular store.

    Shape only: whether the table/fields are allowed to run is
    checked by the parser on top of this.
    """

    table: str = Field(min_length=1)
    filters: List[QueryFilter] = []
    limit: int = DEFAULT_QUERY_LIMIT
    order_by: Optional[str] = Field(default=None, alias="orderBy")
    order_direction: OrderDirection = Field(
        default=OrderDirection.DESC, alias="orderDirection"
    )
    joins: List[str] = []

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("limit", mode="before")
    @classmethod
    def limit_in_range(cls, value: Any) -> int:
        if value is None:
            return DEFAULT_QUERY_LIMIT
        # bool is an int subclass, "true" is never a row count
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("limit must be a number")
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError("limit must be a finite number")
        return clamp_limit(value)

    @field_validator("order_direction", mode="before")
    @classmethod
    def default_direction(cls, value: Any) -> Any:
        return OrderDirection.DESC if value is None else value

    def to_payload(self) -> Dict[str, Any]:
        """JSON shape with camelCase keys, as the model emits it."""
        return self.model_dump(mode="json", by_alias=True)


class ParseSuccess(BaseModel):
    success: Literal[True] = True
    data: QueryDescriptor


class ParseFailure(BaseModel):
    success: Literal[False] = False
    error: str
    kind: ParseFailureKind
    fallback: QueryDescriptor
    validation_errors: List[Dict[str, Any]] = []


ParseResult = Union[ParseSuccess, ParseFailure]


class QueryExecutionResult(BaseModel):
    success: bool
    data: List[Dict[str, Any]] = []
    count: int = 0
    table: Optional[str] = None
    error: Optional[str] = None


# =========================
# RETRIEVAL
# =========================
class RetrievalMetadata(BaseModel):
    category: str
    data_type: str = Field(alias="dataType")
    location: List[float] = Field(min_length=2, max_length=2)
    timestamp: str
    confidence: float = Field(ge=0.0, le=1.0)

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class RetrievalResult(BaseModel):
    title: str = Field(min_length=1)
    content: str
    source: str
    metadata: RetrievalMetadata

    model_config = ConfigDict(frozen=True)


class RetrievalResponse(BaseModel):
    """Envelope returned by the context retriever, whatever tier answered."""

    success: bool
    results: Tuple[RetrievalResult, ...] = ()
    method: RetrievalMethod
    count: int
    timestamp: str
    error: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class RetrievalOptions(BaseModel):
    limit: int = Field(default=5, ge=1, le=MAX_QUERY_LIMIT)
    threshold: float = Field(default=0.78, ge=0.0, le=1.0)
    context_type: ContextType = Field(default=ContextType.GENERAL, alias="contextType")

    model_config = ConfigDict(populate_by_name=True)


# =========================
# API PAYLOADS
# =========================
class ContextRequest(BaseModel):
    query: str = Field(min_length=1)
    limit: Optional[int] = Field(default=None, ge=1, le=MAX_QUERY_LIMIT)
    threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    context_type: ContextType = Field(default=ContextType.GENERAL, alias="contextType")

    model_config = ConfigDict(populate_by_name=True)


class ParseRequest(BaseModel):
    text: str


class GenerateQueryRequest(BaseModel):
    query: str = Field(min_length=1)
    schema_variant: Literal["normalized", "legacy"] = Field(
        default="normalized", alias="schema"
    )

    model_config = ConfigDict(populate_by_name=True)


class GeneratedQueryResponse(BaseModel):
    success: bool
    data: QueryDescriptor
    error: Optional[str] = None


class AskRequest(BaseModel):
    query: str = Field(min_length=1)
    context_type: ContextType = Field(default=ContextType.GENERAL, alias="contextType")
    schema_variant: Literal["normalized", "legacy"] = Field(
        default="normalized", alias="schema"
    )

    model_config = ConfigDict(populate_by_name=True)


class AskResponse(BaseModel):
    query: str
    context: RetrievalResponse
    query_params: QueryDescriptor
    query_result: QueryExecutionResult
    prompt_context: str


class DatabaseStatus(BaseModel):
    connected: bool = False
    normalized_schema: bool = False
    legacy_schema: bool = False
    vector_search: bool = False
    knowledge_base: bool = False
