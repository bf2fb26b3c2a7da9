from flask import Flask, render_template, request, redirect, url_for, flash, abort, jsonify, send_file, send_from_directory
import io
import os
import logging

import config
from activity_history import ActivityHistory, SEARCH, format_time
from code_parser import UploadError, is_allowed_file, parse_codes, read_upload
from material_backend import (
    MaterialBackend, CRITICALITIES, STOCKING_STATUSES,
    profiles_to_frame, filter_profiles, safe_filename
)

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.secret_key = config.SECRET_KEY

CHART_DIR = os.path.join(app.root_path, config.CHART_DIR)

backend = MaterialBackend(
    api_key=config.AI_INTEGRATIONS_OPENAI_API_KEY,
    base_url=config.AI_INTEGRATIONS_OPENAI_BASE_URL
)
history = ActivityHistory()

if backend.demo_mode:
    logger.warning("API key not detected. Using mock data for demonstration.")


@app.template_filter('relative_time')
def relative_time(timestamp):
    return format_time(timestamp)


@app.route('/')
def index():
    return render_template('index.html', history=history.items(), demo_mode=backend.demo_mode)


@app.route('/search', methods=['POST'])
def search():
    code = request.form.get('code', '').strip()
    if not code:
        flash('Enter a material code to search.')
        return redirect(url_for('index'))

    profile = backend.analyze_material_code(code)
    item = history.record_search(code, profile)
    return redirect(url_for('show_history', item_id=item.id))


@app.route('/upload', methods=['POST'])
def upload():
    file = request.files.get('file')
    try:
        if file is None or not file.filename:
            raise UploadError("Choose a CSV or text file to upload.")
        if not is_allowed_file(file.filename):
            raise UploadError("Only .csv and .txt files are supported.")
        codes = parse_codes(read_upload(file.read()))
        if not codes:
            raise UploadError("No material codes found in the file.")
    except UploadError as e:
        flash(str(e))
        return redirect(url_for('index'))

    logger.info(f"Bulk upload {file.filename}: {len(codes)} codes")
    profiles = backend.generate_bulk_analysis(codes)
    item = history.record_bulk(codes, profiles, file_name=file.filename)
    return redirect(url_for('show_history', item_id=item.id))


@app.route('/history/<item_id>')
def show_history(item_id):
    item = history.get(item_id)
    if item is None:
        abort(404)

    if item.type == SEARCH:
        profile = item.profiles[0]
        chart = None
        try:
            chart = backend.create_plot(profile, CHART_DIR, name=item.id)
        except Exception as e:
            # If plot fails, show the profile without it
            logger.error(f"Chart generation failed for {profile.get('materialCode')}: {e}")
        return render_template('material.html', item=item, profile=profile, chart=chart)

    filters = {
        'material_type': request.args.get('material_type', ''),
        'criticality': request.args.get('criticality', ''),
        'stocking_status': request.args.get('stocking_status', ''),
    }
    summary = profiles_to_frame(item.profiles)
    results = filter_profiles(summary, **filters).to_dict('records')
    material_types = sorted(t for t in summary['Material Type'].dropna().unique())
    return render_template(
        'bulk.html', item=item, results=results, filters=filters,
        material_types=material_types, criticalities=CRITICALITIES,
        stocking_statuses=STOCKING_STATUSES
    )


@app.route('/history/<item_id>/report')
def download_report(item_id):
    item = history.get(item_id)
    if item is None:
        abort(404)

    buffer = io.BytesIO()
    backend.export_results(item.profiles, buffer)
    buffer.seek(0)
    return send_file(
        buffer, as_attachment=True,
        download_name=f"material_analysis_{safe_filename(item.label)}.xlsx",
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    )


@app.route('/charts/<path:filename>')
def chart(filename):
    return send_from_directory(CHART_DIR, filename)


@app.route('/api/materials/<code>')
def api_material(code):
    code = code.strip()
    if not code:
        return jsonify({"error": "Material code must not be blank"}), 400
    return jsonify(backend.analyze_material_code(code))


@app.route('/api/materials/bulk', methods=['POST'])
def api_bulk():
    payload = request.get_json(silent=True)
    codes = payload.get('codes') if isinstance(payload, dict) else None
    if not isinstance(codes, list) or not all(isinstance(c, str) for c in codes):
        return jsonify({"error": "Expected a JSON body like {\"codes\": [\"401121145\"]}"}), 400

    codes = [c.strip() for c in codes if c.strip()]
    return jsonify(backend.generate_bulk_analysis(codes))


if __name__ == '__main__':
    app.run(host='0.0.0.0', port=5000)
