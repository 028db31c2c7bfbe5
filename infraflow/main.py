"""
FastAPI app: prompt parsing, template listing and the LLM modify endpoint
that EditingSession.submit_modify talks to.
"""

from typing import Any

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from infraflow.config import Settings
from infraflow.context import create_context
from infraflow.errors import InvalidInputError, ModifyErrorCode, SpecIntegrityError
from infraflow.layout import render_to_spec
from infraflow.llm import modify_spec
from infraflow.parser import smart_parse
from infraflow.spec import ModifyResult, RenderEdge, RenderNode, Spec
from infraflow.templates import get_entry, list_templates
from infraflow.validation import load_spec

app = FastAPI(title="Infrastructure Architecture Prompt Parser")

_WIRE = {"alias_generator": to_camel, "populate_by_name": True}

# Failures the client should see as HTTP errors (and retry where transient)
_ERROR_STATUS = {
    ModifyErrorCode.API_RATE_LIMIT: 429,
    ModifyErrorCode.API_TIMEOUT: 504,
    ModifyErrorCode.API_ERROR: 502,
}


# ---------------------------------------------------------------------------
# Dependencies (overridable in tests)
# ---------------------------------------------------------------------------
def get_settings() -> Settings:
    return Settings.from_env()


def get_llm_client() -> Any:
    """None lets the modify path build an OpenAI client from settings."""
    return None


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------
class ParseRequest(BaseModel):
    prompt: str = Field(default="", description="Natural-language architecture request")
    current_spec: dict[str, Any] | None = Field(default=None, description="Spec being edited, if any")

    model_config = {**_WIRE}


class ModifyPayload(BaseModel):
    prompt: str = Field(default="", description="Modification request")
    current_spec: dict[str, Any] | None = Field(default=None, description="Spec to modify")
    nodes: list[RenderNode] = Field(default_factory=list, description="Canvas nodes, used when currentSpec is absent")
    edges: list[RenderEdge] = Field(default_factory=list)

    model_config = {**_WIRE}


def _load_or_422(data: dict[str, Any]) -> Spec:
    try:
        return load_spec(data)
    except SpecIntegrityError as e:
        raise HTTPException(status_code=422, detail={"errors": e.problems})
    except InvalidInputError as e:
        raise HTTPException(status_code=422, detail={"errors": [str(e)]})


def _dump(result: Any) -> dict[str, Any]:
    return result.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.post("/api/parse")
async def parse(req: ParseRequest) -> dict[str, Any]:
    """Run the smart parser; a currentSpec switches it to incremental edits."""
    spec = _load_or_422(req.current_spec) if req.current_spec is not None else None
    result = smart_parse(req.prompt, create_context(spec))
    return _dump(result)


@app.get("/api/modify")
async def modify_status(settings: Settings = Depends(get_settings)) -> dict[str, Any]:
    return {"available": settings.llm_available}


@app.post("/api/modify")
def modify(
    req: ModifyPayload,
    settings: Settings = Depends(get_settings),
    client: Any = Depends(get_llm_client),
):
    """
    Apply an LLM-proposed diff to the posted spec.
    Returns a ModifyResult; transport-level failures also set the HTTP status.
    """
    if not req.prompt.strip():
        raise HTTPException(status_code=422, detail={"errors": ["prompt must not be empty"]})
    if req.current_spec is not None:
        spec = _load_or_422(req.current_spec)
    else:
        spec = render_to_spec(req.nodes, req.edges)

    result: ModifyResult = modify_spec(req.prompt, spec, settings, client)
    detail = result.error_detail
    if detail is not None and detail.code in _ERROR_STATUS:
        headers = {"Retry-After": str(detail.retry_after)} if detail.retry_after else None
        return JSONResponse(status_code=_ERROR_STATUS[detail.code], content=_dump(result), headers=headers)
    return _dump(result)


@app.get("/api/templates")
async def templates() -> dict[str, Any]:
    return {"templates": list_templates()}


@app.get("/api/templates/{template_id}")
async def template(template_id: str) -> dict[str, Any]:
    entry = get_entry(template_id)
    if entry is None:
        raise HTTPException(status_code=404, detail={"errors": [f"Unknown template: {template_id}"]})
    return {
        "id": entry.template_id,
        "keywords": list(entry.keywords),
        "spec": entry.spec.model_dump(mode="json", by_alias=True),
    }


@app.get("/api/health")
async def health():
    return {"status": "ok"}
