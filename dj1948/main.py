import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel, Field

from . import config
from .dj1948_credits import InvalidRegimeConfig, calculate_all_credits, calculate_credit_rate
from .dj1948_export import DeclarationExporter
from .dj1948_models import (
    CategoryAmounts,
    DeclarationData,
    FilerProfile,
    FilingOverrides,
    OnInvalidRegime,
    Qualification,
    RegimeConfig,
    Totals,
)
from .dj1948_template import DeclarationError
from .dj1948_totals import aggregate
from .dj1948_transform import filter_by_taxpayer, list_taxpayers, transform_to_declaration

logging.basicConfig(level=config.LOG_LEVEL)
log = logging.getLogger("uvicorn.error")

app = FastAPI(title="DJ1948 Declaration Service", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)

exporter = DeclarationExporter()


class CreditsRequest(BaseModel):
    regime: RegimeConfig
    amounts: CategoryAmounts = Field(default_factory=CategoryAmounts)


class FilingRequest(BaseModel):
    profile: FilerProfile
    qualifications: List[Qualification] = Field(default_factory=list)
    fiscal_year_label: str
    overrides: FilingOverrides = Field(default_factory=FilingOverrides)
    taxpayer_rut: Optional[str] = None
    on_invalid_regime: Optional[OnInvalidRegime] = None
    csv_bom: Optional[bool] = None


class TaxpayersRequest(BaseModel):
    qualifications: List[Qualification] = Field(default_factory=list)


def _build(req: FilingRequest) -> Tuple[DeclarationData, Totals]:
    quals = filter_by_taxpayer(req.qualifications, req.taxpayer_rut)
    try:
        data = transform_to_declaration(
            quals,
            req.profile,
            req.fiscal_year_label,
            req.overrides,
            on_invalid_regime=req.on_invalid_regime or config.ON_INVALID_REGIME,
        )
    except InvalidRegimeConfig as e:
        raise HTTPException(status_code=400, detail=str(e))
    return data, aggregate(data.rows, data.excess_withdrawals)


def _attachment(content: bytes, doc) -> Response:
    headers = {
        "Content-Disposition": f'attachment; filename="{doc.filename}"',
        "X-Document-Version": doc.document_version_id,
        "X-Content-SHA256": doc.content_sha256,
    }
    return Response(content=content, media_type=doc.media_type, headers=headers)


# -------------------------
# Health
# -------------------------
@app.get("/health")
def health():
    return {"status": "ok", "time": time.time(), "on_invalid_regime": config.ON_INVALID_REGIME.value}


# -------------------------
# Credits for one set of amounts
# -------------------------
@app.post("/dj1948/credits")
def credits_api(req: CreditsRequest) -> Dict[str, Any]:
    log.info("HIT /dj1948/credits regime=%s year=%s", req.regime.tax_regime, req.regime.fiscal_year)
    try:
        credits = calculate_all_credits(req.amounts, req.regime)
        rate = calculate_credit_rate(req.regime)
    except InvalidRegimeConfig as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"credit_rate": str(rate), "credits": credits.model_dump()}


# -------------------------
# Taxpayers present in a batch (one DJ1948 each)
# -------------------------
@app.post("/dj1948/taxpayers")
def taxpayers_api(req: TaxpayersRequest) -> Dict[str, Any]:
    log.info("HIT /dj1948/taxpayers qualifications=%s", len(req.qualifications))
    items = list_taxpayers(req.qualifications)
    return {"count": len(items), "items": items}


# -------------------------
# Filing preview (rows + totals)
# -------------------------
@app.post("/dj1948/rows")
def rows_api(req: FilingRequest) -> Dict[str, Any]:
    log.info("HIT /dj1948/rows qualifications=%s", len(req.qualifications))
    data, totals = _build(req)
    return {
        "declarant": data.declarant.model_dump(),
        "rows": [r.model_dump(mode="json") for r in data.rows],
        "excess_withdrawals": [e.model_dump() for e in data.excess_withdrawals],
        "totals": totals.model_dump(),
        "warnings": data.warnings,
    }


# -------------------------
# Exports
# -------------------------
@app.post("/dj1948/csv")
def csv_api(req: FilingRequest) -> Response:
    log.info("HIT /dj1948/csv qualifications=%s", len(req.qualifications))
    data, totals = _build(req)
    bom = config.CSV_BOM if req.csv_bom is None else req.csv_bom
    try:
        content, doc = exporter.build_document(data, totals, "csv", bom=bom)
    except DeclarationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _attachment(content, doc)


@app.post("/dj1948/xlsx")
def xlsx_api(req: FilingRequest) -> Response:
    log.info("HIT /dj1948/xlsx qualifications=%s", len(req.qualifications))
    data, totals = _build(req)
    try:
        content, doc = exporter.build_document(data, totals, "xlsx")
    except DeclarationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _attachment(content, doc)
