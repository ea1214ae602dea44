"""CSV / XLSX export of a DJ1948 filing.

The exporter only deals with encodings, file names and provenance; the layout
itself comes from the injected serializer.
"""

from __future__ import annotations

import hashlib
import io
import logging
from datetime import date
from typing import Optional

import pandas as pd

from .dj1948_models import DeclarationData, DeclarationDocument, Totals
from .dj1948_template import TemplateSerializer
from .dj1948_transform import clean_rut

logger = logging.getLogger(__name__)

DOC_TYPE = "DJ1948"
SHEET_NAME = "DJ1948"
CSV_MEDIA_TYPE = "text/csv; charset=utf-8"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
UTF8_BOM = b"\xef\xbb\xbf"


def build_filename(doc_type: str, declarant_rut: str, fiscal_year, ext: str, on: Optional[date] = None) -> str:
    """{DocType}_{DeclarantTaxId}_{FiscalYear}_{ISODate}.{ext}"""
    on = on or date.today()
    return f"{doc_type}_{clean_rut(declarant_rut)}_{fiscal_year}_{on.isoformat()}.{ext.lstrip('.')}"


class DeclarationExporter:
    def __init__(self, serializer: Optional[TemplateSerializer] = None):
        self.serializer = serializer or TemplateSerializer()

    def to_csv_bytes(self, data: DeclarationData, totals: Totals, bom: bool = False) -> bytes:
        text = self.serializer.serialize(
            data.declarant,
            data.rows,
            totals,
            data.fiscal_year_label,
            data.excess_withdrawals,
        )
        body = text.encode("utf-8")
        return UTF8_BOM + body if bom else body

    def to_xlsx_bytes(self, data: DeclarationData, totals: Totals) -> bytes:
        grid = self.serializer.to_grid(
            data.declarant,
            data.rows,
            totals,
            data.fiscal_year_label,
            data.excess_withdrawals,
        )
        df = pd.DataFrame(grid)
        buf = io.BytesIO()
        with pd.ExcelWriter(buf, engine="xlsxwriter") as writer:
            # The template carries its own header lines.
            df.to_excel(writer, index=False, header=False, sheet_name=SHEET_NAME)
            ws = writer.sheets[SHEET_NAME]
            ws.set_column(0, 0, 14)
            ws.set_column(1, df.shape[1] - 1, 12)
        return buf.getvalue()

    def build_document(
        self,
        data: DeclarationData,
        totals: Totals,
        fmt: str = "csv",
        *,
        bom: bool = False,
        on: Optional[date] = None,
    ) -> tuple[bytes, DeclarationDocument]:
        """Render the filing and describe it.

        The version id is taken from the SHA-256 of the rendered bytes.
        """
        if fmt == "csv":
            content = self.to_csv_bytes(data, totals, bom=bom)
            media_type = CSV_MEDIA_TYPE
        elif fmt == "xlsx":
            content = self.to_xlsx_bytes(data, totals)
            media_type = XLSX_MEDIA_TYPE
        else:
            raise ValueError(f"unsupported export format: {fmt}")

        sha = hashlib.sha256(content).hexdigest()
        fiscal_year = data.fiscal_year_label.strip()
        doc = DeclarationDocument(
            filename=build_filename(DOC_TYPE, data.declarant.rut, fiscal_year, fmt, on=on),
            media_type=media_type,
            content_sha256=sha,
            document_version_id=f"dj1948_{fiscal_year}_{sha[:12]}",
            row_count=totals.row_count,
            totals=totals,
            warnings=list(data.warnings),
        )
        logger.info("built %s (%d rows, %d bytes)", doc.filename, doc.row_count, len(content))
        return content, doc
