import re
from datetime import date, datetime
from typing import Optional

from jinja2 import Template

from error_reports.db import models
from error_reports.reports.schemas import Report

_TEMPLATE = Template(
    """
Relatório de Erro
=================
Cliente: {{ client_name }}
Técnico: {{ technician_name }}
Data do Erro: {{ error_date }}
Data de Geração: {{ generated_at }}
Status: {{ status }}
-----------------

Descrição do Problema:
{{ report_text }}

-----------------
Links de Anexos:
Mídia: {{ media }}
{% if attestation is not none -%}
Banco de dados salvo no PC: {{ attestation }}
{%- else -%}
ZIP: {{ archive }}
{%- endif %}
"""
)


def _format_error_date(value: Optional[str]) -> str:
    if not value:
        return "N/A"
    try:
        return date.fromisoformat(value.strip()[:10]).strftime("%d/%m/%Y")
    except ValueError:
        return "N/A"


def _format_generated_at(value: Optional[datetime]) -> str:
    if not value:
        return "N/A"
    return value.strftime("%d/%m/%Y %H:%M:%S")


def render_report_text(report: Report) -> str:
    return _TEMPLATE.render(
        client_name=report.clientName,
        technician_name=report.technicianName,
        error_date=_format_error_date(report.errorDate),
        generated_at=_format_generated_at(report.generatedAt),
        status="Concluído" if report.status == models.STATUS_CONCLUDED else "Aberto",
        report_text=report.reportText,
        media="Anexo disponível" if report.mediaUrl else "Nenhum",
        archive="Anexo disponível" if report.zipUrl else "Nenhum",
        attestation=report.databaseSavedOnPC,
    ).strip()


def export_filename(report: Report) -> str:
    client = re.sub(r"[^A-Za-z0-9_\-]+", "_", report.clientName.strip()).strip("_") or "cliente"
    return f"relatorio_{client}_{report.id}.txt"
