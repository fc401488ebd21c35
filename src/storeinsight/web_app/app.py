import io
import json
import os
import zipfile
from pathlib import Path

from flask import Flask, jsonify, request, send_file
from werkzeug.utils import secure_filename

from storeinsight.config import AUTO_MAP_THRESHOLD, MAX_UPLOAD_MB, OWNER_REPORT_TEMPLATE_PATH
from storeinsight.excel.projection import (
    XLSX_MIMETYPE,
    LayoutUnresolvedError,
    build_proforma_workbook,
    proforma_filename,
)
from storeinsight.extract.series import normalize_workbook, tie_out
from storeinsight.ingest.workbook import (
    ALLOWED_EXTENSIONS,
    PayloadError,
    WorkbookUnreadableError,
    grids_from_payload,
    read_workbook,
)
from storeinsight.llm.client import SuggestionError, suggest_header_mapping
from storeinsight.map.fuzzy import (
    REQUIRED_FIELDS,
    auto_map_required_fields,
    detect_facility_period_from_filename,
    detect_vendor,
)
from storeinsight.provenance import provenance_dicts
from storeinsight.reports.budget import extract_budget_tokens
from storeinsight.reports.delinquency import extract_delinquency_tokens
from storeinsight.reports.owner_fields import extract_owner_fields
from storeinsight.reports.performance import MoveActivityError, extract_move_activity
from storeinsight.reports.pptx_tokens import (
    REQUIRED_DELINQUENCY_TOKENS,
    missing_tokens,
    owner_report_values,
    render_owner_report,
    scan_pptx_tokens,
    template_sha256,
)

PPTX_MIMETYPE = "application/vnd.openxmlformats-officedocument.presentationml.presentation"

app = Flask(__name__)
app.config['MAX_CONTENT_LENGTH'] = MAX_UPLOAD_MB * 1024 * 1024


class MissingUploadError(ValueError):
    pass


def allowed_file(filename):
    _, ext = os.path.splitext(filename.lower())
    return ext in ALLOWED_EXTENSIONS


def _uploaded_sheets(field, required=True):
    """Read a multipart workbook upload; None when optional and absent."""
    file = request.files.get(field)
    if not file or not file.filename:
        if required:
            raise MissingUploadError(f"Upload a workbook as '{field}'.")
        return None, None
    filename = secure_filename(file.filename)
    if not allowed_file(filename):
        raise WorkbookUnreadableError(f"'{file.filename}' is not an .xlsx or .xls workbook.")
    return read_workbook(file.read(), filename=filename), filename


def _form_flag(name, default):
    raw = request.form.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {'1', 'true', 'yes', 'on'}


@app.errorhandler(MissingUploadError)
@app.errorhandler(PayloadError)
@app.errorhandler(WorkbookUnreadableError)
def bad_request(e):
    app.logger.info("Rejected request to %s: %s", request.path, e)
    return jsonify({"error": str(e)}), 400


@app.errorhandler(MoveActivityError)
def move_activity_unavailable(e):
    app.logger.info("Move activity rejected (%s): %s", e.code, e)
    return jsonify({"error": str(e), "code": e.code}), 400


@app.errorhandler(LayoutUnresolvedError)
def layout_unresolved(e):
    app.logger.warning("Template layout unresolved: %s", e)
    return jsonify({"error": str(e)}), 422


@app.route('/api/health', methods=['GET'])
def health():
    return jsonify({"status": "ok"})


@app.route('/api/normalize', methods=['POST'])
def normalize():
    if request.files:
        sheets, filename = _uploaded_sheets('file')
        guessed_facility, guessed_period = detect_facility_period_from_filename(filename)
        facility = request.form.get('facility') or guessed_facility
        period = request.form.get('period') or guessed_period
    else:
        payload = request.get_json(silent=True)
        sheets = grids_from_payload(payload)
        facility = payload.get('facility')
        period = payload.get('period')

    result = normalize_workbook(sheets, facility=facility, period=period)
    body = result.to_dict()
    checks = tie_out(result.totals.toi, result.totals.toe, result.totals.noi,
                     months=result.layout.month_tokens if result.layout else None)
    body["checks"] = {"errors": checks.errors, "warnings": checks.warnings}
    app.logger.info(
        "normalize: %d sheet(s), detected=%s, %d series",
        len(sheets), bool(result.detected), len(result.series_by_label),
    )
    return jsonify(body)


@app.route('/api/suggest-mapping', methods=['POST'])
def suggest_mapping():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = {}
    headers = payload.get('headers')
    if not isinstance(headers, list):
        raise PayloadError("Provide 'headers' as a list of strings.")
    headers = [str(h) for h in headers if h is not None]
    required = payload.get('required') or list(REQUIRED_FIELDS)
    raw_threshold = payload.get('threshold')
    try:
        threshold = AUTO_MAP_THRESHOLD if raw_threshold is None else float(raw_threshold)
    except (TypeError, ValueError):
        raise PayloadError("'threshold' must be a number between 0 and 1.")

    result = auto_map_required_fields(headers, required=required, threshold=threshold)
    body = result.to_dict()
    body["vendor"] = detect_vendor(headers, payload.get('filename') or "")
    return jsonify(body)


@app.route('/api/ai/suggest-mapping', methods=['POST'])
def ai_suggest_mapping():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = {}
    headers = payload.get('headers')
    required = payload.get('required') or list(REQUIRED_FIELDS)
    if not isinstance(headers, list) or not isinstance(required, list):
        raise PayloadError("Provide 'headers' (and optionally 'required') as lists.")
    try:
        mapping = suggest_header_mapping(headers, required, payload.get('vendorHint'))
    except SuggestionError as e:
        app.logger.warning("AI suggestion unavailable: %s", e)
        return jsonify({"mapping": {f: None for f in required}, "available": False, "error": str(e)})
    return jsonify({"mapping": mapping, "available": True})


@app.route('/api/export/proforma', methods=['POST'])
def export_proforma():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise PayloadError("Expected a JSON object.")
    series_by_label = payload.get('seriesByLabel')
    aggregates = payload.get('series')
    if not isinstance(series_by_label, dict) and not isinstance(aggregates, dict):
        raise PayloadError("Provide 'seriesByLabel' and/or 'series'.")

    facility = (payload.get('facility') or "Facility").strip()
    period = (payload.get('period') or "Period").strip()
    data, result = build_proforma_workbook(
        facility, period, series_by_label if isinstance(series_by_label, dict) else {},
        aggregates=aggregates if isinstance(aggregates, dict) else None,
        months=payload.get('months'),
    )
    app.logger.info("export: %s %s, %d rows written, skipped=%s", facility, period,
                    len(result.written), result.skipped)
    return send_file(
        io.BytesIO(data),
        mimetype=XLSX_MIMETYPE,
        as_attachment=True,
        download_name=proforma_filename(facility, period),
    )


@app.route('/api/owner-reports/budget-preview', methods=['POST'])
def budget_preview():
    budget_sheets, _ = _uploaded_sheets('budget')
    financial_sheets, _ = _uploaded_sheets('financial', required=False)
    extraction = extract_budget_tokens(budget_sheets, financial_sheets)
    return jsonify({
        "tokens": extraction.tokens,
        "count": extraction.count,
        "details": extraction.details,
        "provenance": provenance_dicts(extraction.provenance),
        "ownerGroup": extraction.owner_group,
        "missing": extraction.missing,
    })


@app.route('/api/owner-reports/delinquency-preview', methods=['POST'])
def delinquency_preview():
    sheets, _ = _uploaded_sheets('file')
    extraction = extract_delinquency_tokens(sheets)
    return jsonify({
        "tokens": extraction.tokens,
        "audit": extraction.audit_rows(),
        "provenance": provenance_dicts(extraction.provenance),
    })


@app.route('/api/owner-reports/preview', methods=['POST'])
def owner_fields_preview():
    sheets, filename = _uploaded_sheets('file')
    extraction = extract_owner_fields(sheets, filename)
    return jsonify({
        "fields": extraction.fields,
        "tokens": extraction.template_tokens(),
        "provenance": provenance_dicts(extraction.provenance),
    })


@app.route('/api/owner-reports/performance-preview', methods=['POST'])
def performance_preview():
    sheets, _ = _uploaded_sheets('file')
    extraction = extract_move_activity(
        sheets,
        current_month=request.form.get('currentMonth'),
        include_current_in_trailing=_form_flag('includeCurrentMonth', True),
    )
    return jsonify({
        "tokens": extraction.tokens,
        "preview": extraction.preview_rows(),
        "metadata": extraction.metadata(),
    })


@app.route('/api/owner-reports/generate', methods=['POST'])
def generate_owner_report():
    budget_sheets, _ = _uploaded_sheets('budget', required=False)
    financial_sheets, _ = _uploaded_sheets('financial', required=False)
    delinquency_sheets, _ = _uploaded_sheets('delinquency', required=False)
    owner_sheets, owner_filename = _uploaded_sheets('owner', required=False)
    move_sheets, _ = _uploaded_sheets('moves', required=False)
    if all(s is None for s in (budget_sheets, delinquency_sheets, owner_sheets, move_sheets)):
        raise MissingUploadError("Upload at least one of 'budget', 'delinquency', 'owner' or 'moves'.")

    template_file = request.files.get('template')
    if template_file and template_file.filename:
        template = template_file.read()
    elif Path(OWNER_REPORT_TEMPLATE_PATH).is_file():
        template = Path(OWNER_REPORT_TEMPLATE_PATH).read_bytes()
    else:
        raise MissingUploadError("Upload a .pptx 'template'; none is configured on the server.")

    raw_overrides = request.form.get('overrides') or "{}"
    try:
        overrides = json.loads(raw_overrides)
    except json.JSONDecodeError as e:
        raise PayloadError(f"'overrides' is not valid JSON: {e}")
    if not isinstance(overrides, dict):
        raise PayloadError("'overrides' must be a JSON object.")

    try:
        found = scan_pptx_tokens(template)
    except zipfile.BadZipFile:
        raise PayloadError("The owner report template is not a .pptx file.")
    gaps = missing_tokens(found, REQUIRED_DELINQUENCY_TOKENS)
    if gaps:
        app.logger.warning("Owner report template lacks placeholders: %s", ", ".join(gaps))

    budget = extract_budget_tokens(budget_sheets, financial_sheets) if budget_sheets else None
    delinquency = extract_delinquency_tokens(delinquency_sheets) if delinquency_sheets else None
    owner_fields = extract_owner_fields(owner_sheets, owner_filename) if owner_sheets else None
    performance = None
    if move_sheets:
        performance = extract_move_activity(
            move_sheets,
            current_month=request.form.get('currentMonth'),
            include_current_in_trailing=_form_flag('includeCurrentMonth', True),
        )
    facility = (request.form.get('facility') or "Facility").strip()
    period = (request.form.get('period') or "Period").strip()
    values = owner_report_values(
        facility, period, budget=budget, delinquency=delinquency,
        owner_fields=owner_fields, performance=performance, overrides=overrides,
    )

    data = render_owner_report(template, values)
    app.logger.info("owner report: %s %s, template %s, %d token(s)",
                    facility, period, template_sha256(template)[:12], len(found))
    download_name = f"Owner-Report-{facility.replace(' ', '-')}-{period.replace(' ', '-')}.pptx"
    return send_file(io.BytesIO(data), mimetype=PPTX_MIMETYPE, as_attachment=True, download_name=download_name)


if __name__ == '__main__':
    port = int(os.environ.get('PORT', '5000'))
    host = os.environ.get('HOST', '127.0.0.1')
    debug = os.environ.get('FLASK_DEBUG', '0').lower() in {'1', 'true', 'yes', 'on'}
    app.run(host=host, port=port, debug=debug)
