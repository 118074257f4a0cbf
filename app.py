import os
import logging
from flask import Flask, request, jsonify, send_file
from werkzeug.utils import secure_filename

from class_division import ClassDivisionAlgorithm
from create_test_data import create_candidate_test_data
from database import (
    init_db, close_db, get_all_candidates, get_candidate, get_unassigned_candidates,
    add_candidate as insert_candidate, update_candidate as update_candidate_row,
    delete_candidate as delete_candidate_row, delete_all_candidates, get_all_roster_students,
)
from distribution_editor import (
    DistributionHistory, move_candidate, remove_candidate, add_candidate,
    swap_candidates, list_assigned_candidates, find_candidate_class,
)
from excel_handler import ExcelHandler
from models import (
    DivisionError, CandidateLockedError, CandidateNotFoundError, GENDERS, STATUSES,
    STATUS_ACCEPTED, current_academic_year, parse_academic_year,
)
from persistence import (
    commit_distribution, retry_failed, transfer_to_roster, reset_class_assignments,
    update_class_assignment, load_saved_distribution, next_identifier_ordinal,
)

# Set up logging
logging.basicConfig(level=getattr(logging, os.environ.get("LOG_LEVEL", "DEBUG").upper(), logging.DEBUG))

app = Flask(__name__)
app.secret_key = os.environ.get("SESSION_SECRET", "dev-secret-key-change-in-production")

# Configuration
UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER", "uploads")
EXPORT_FOLDER = os.environ.get("EXPORT_FOLDER", "exports")
ALLOWED_EXTENSIONS = {'xlsx', 'xls'}

app.config['DATABASE'] = os.environ.get("SPMB_DATABASE", "spmb.db")
app.config['UPLOAD_FOLDER'] = UPLOAD_FOLDER
app.config['EXPORT_FOLDER'] = EXPORT_FOLDER
app.config['MAX_CONTENT_LENGTH'] = 16 * 1024 * 1024  # 16MB max file size
app.config['INSTITUTION_NAME'] = os.environ.get("INSTITUTION_NAME", "SMP MUSLIMIN CILILIN")
app.config['GRADE_LEVEL'] = int(os.environ.get("GRADE_LEVEL", 7))
app.config['DEFAULT_CLASS_COUNT'] = int(os.environ.get("DEFAULT_CLASS_COUNT", 6))
app.config['ACADEMIC_YEAR'] = os.environ.get("ACADEMIC_YEAR")

# Ensure directories exist
os.makedirs(UPLOAD_FOLDER, exist_ok=True)
os.makedirs(EXPORT_FOLDER, exist_ok=True)

# Initialize database
with app.app_context():
    init_db()

# Initialize handlers
excel_handler = ExcelHandler(EXPORT_FOLDER, app.config['INSTITUTION_NAME'])
class_division = ClassDivisionAlgorithm(app.config['GRADE_LEVEL'])


def allowed_file(filename):
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in ALLOWED_EXTENSIONS


@app.teardown_appcontext
def teardown_db(exception):
    close_db()


def _payload():
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def _int_field(data, name):
    value = data.get(name)
    if value is None or str(value).strip() == '':
        raise ValueError(f"'{name}' is required")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"'{name}' must be a number")


def _academic_year(data=None):
    academic_year = (data or {}).get('academic_year') or app.config.get('ACADEMIC_YEAR') \
        or current_academic_year()
    parse_academic_year(academic_year)
    return academic_year


def _error(message, status=400):
    return jsonify({'success': False, 'message': message}), status


def _draft_history():
    return app.config.get('DRAFT_HISTORY')


def _draft_response(history, message):
    distribution = history.current
    return jsonify({
        'success': True,
        'message': message,
        'distribution': distribution,
        'stats': {name: class_division.get_class_stats(students)
                  for name, students in distribution.items()},
        'unbalanced': class_division.check_class_balance(distribution),
        'can_undo': history.can_undo,
        'can_redo': history.can_redo,
    })


@app.route('/')
def index():
    try:
        academic_year = _academic_year()
    except DivisionError as e:
        return _error(str(e))

    candidates = [dict(c) for c in get_all_candidates()]
    history = _draft_history()
    return jsonify({
        'institution': app.config['INSTITUTION_NAME'],
        'academic_year': academic_year,
        'candidate_count': len(candidates),
        'unassigned_count': len(get_unassigned_candidates()),
        'roster_count': len(get_all_roster_students()),
        'has_draft': history is not None,
    })


@app.route('/candidates')
def list_candidates():
    return jsonify([dict(c) for c in get_all_candidates()])


@app.route('/candidates', methods=['POST'])
def create_candidate():
    try:
        data = _payload()
        full_name = (data.get('full_name') or '').strip()
        gender = (data.get('gender') or '').strip().upper()

        if not full_name or gender not in GENDERS:
            return _error('Full name and gender (L/P) are required')

        candidate = {k: (v.strip() if isinstance(v, str) else v) for k, v in data.items()}
        candidate['full_name'] = full_name
        candidate['gender'] = gender
        academic_year = _academic_year(data)

        candidate_id = insert_candidate(candidate, academic_year)
        if candidate_id is None:
            return _error('Registration number already exists')

        saved = dict(get_candidate(candidate_id))
        return jsonify({
            'success': True,
            'message': f"Candidate registered. Registration No.: {saved['registration_number']}",
            'candidate': saved,
        }), 201

    except DivisionError as e:
        return _error(str(e))
    except Exception as e:
        logging.error(f"Error adding candidate: {str(e)}")
        return _error(f'Error adding candidate: {str(e)}', 500)


def _editable_candidate(candidate_id):
    row = get_candidate(candidate_id)
    if row is None:
        raise CandidateNotFoundError(f"Candidate {candidate_id} not found")
    if row['is_transferred']:
        raise CandidateLockedError(f"Candidate {candidate_id} is already in the student roster")
    return row


def _clean_candidate_changes(data):
    changes = {k: (v.strip() if isinstance(v, str) else v) for k, v in data.items()}
    if 'full_name' in changes and not changes['full_name']:
        raise ValueError('Full name cannot be empty')
    if 'gender' in changes:
        changes['gender'] = (changes['gender'] or '').upper()
        if changes['gender'] not in GENDERS:
            raise ValueError('Gender must be L or P')
    if 'status' in changes and changes['status'] not in STATUSES:
        raise ValueError(f"Status must be one of {', '.join(STATUSES)}")
    return changes


@app.route('/candidates/<int:candidate_id>', methods=['PUT'])
def edit_candidate(candidate_id):
    try:
        _editable_candidate(candidate_id)
        changes = _clean_candidate_changes(_payload())
        if not update_candidate_row(candidate_id, changes):
            return _error('Nothing to update')

        return jsonify({
            'success': True,
            'message': 'Candidate updated',
            'candidate': dict(get_candidate(candidate_id)),
        })

    except CandidateNotFoundError as e:
        return _error(str(e), 404)
    except (DivisionError, ValueError) as e:
        return _error(str(e))
    except Exception as e:
        logging.error(f"Error updating candidate {candidate_id}: {str(e)}")
        return _error(f'Error updating candidate: {str(e)}', 500)


@app.route('/candidates/<int:candidate_id>', methods=['DELETE'])
def remove_candidate_record(candidate_id):
    try:
        _editable_candidate(candidate_id)
        history = _draft_history()
        if history is not None and find_candidate_class(history.current, candidate_id):
            return _error('Candidate is part of the current class division, remove them from it first')

        delete_candidate_row(candidate_id)
        return jsonify({'success': True, 'message': 'Candidate deleted'})

    except CandidateNotFoundError as e:
        return _error(str(e), 404)
    except DivisionError as e:
        return _error(str(e))
    except Exception as e:
        logging.error(f"Error deleting candidate {candidate_id}: {str(e)}")
        return _error(f'Error deleting candidate: {str(e)}', 500)


@app.route('/statistics')
def statistics():
    """Registration totals and per-school rankings for the dashboard"""
    candidates = [dict(c) for c in get_all_candidates()]
    stats = class_division.get_class_stats(candidates)
    total = stats['total']
    rankings = class_division.get_school_rankings(candidates)
    return jsonify({
        'total': total,
        'males': stats['males'],
        'females': stats['females'],
        'male_percentage': round(stats['males'] / total * 100, 1) if total else 0,
        'female_percentage': round(stats['females'] / total * 100, 1) if total else 0,
        'top_schools': [{'school': r['school'], 'count': r['total']} for r in rankings[:8]],
        'school_rankings': rankings,
    })


@app.route('/upload_candidates', methods=['POST'])
def upload_candidates():
    try:
        if 'file' not in request.files:
            return _error('No file selected')

        file = request.files['file']
        if not file.filename:
            return _error('No file selected')

        if not allowed_file(file.filename):
            return _error('Invalid file type. Please upload an Excel file (.xlsx or .xls)')

        filename = secure_filename(file.filename)
        filepath = os.path.join(app.config['UPLOAD_FOLDER'], filename)
        file.save(filepath)

        candidates_df = excel_handler.read_candidate_data(filepath)
        if candidates_df is None:
            return _error('Error processing Excel file. Please check the format.')

        academic_year = _academic_year(request.form)
        added = 0
        duplicates = 0
        for record in candidates_df.to_dict('records'):
            if insert_candidate(record, academic_year) is not None:
                added += 1
            else:
                duplicates += 1

        return jsonify({
            'success': True,
            'message': f'Successfully uploaded {added} candidates ({duplicates} duplicates skipped)',
            'added': added,
            'duplicates': duplicates,
        })

    except DivisionError as e:
        return _error(str(e))
    except Exception as e:
        logging.error(f"Error uploading file: {str(e)}")
        return _error(f'Error uploading file: {str(e)}', 500)


@app.route('/load_sample_data', methods=['POST'])
def load_sample_data():
    try:
        data = _payload()
        count = _int_field(data, 'count') if data.get('count') not in (None, '') else 120
        if count < 1:
            raise ValueError("'count' must be at least 1")
        academic_year = _academic_year(data)

        added = 0
        for candidate in create_candidate_test_data(count):
            if insert_candidate(candidate, academic_year) is not None:
                added += 1

        return jsonify({'success': True, 'message': f'Sample data loaded: {added} candidates', 'added': added})

    except (DivisionError, ValueError) as e:
        return _error(str(e))
    except Exception as e:
        logging.error(f"Error loading sample data: {str(e)}")
        return _error('Error loading sample data', 500)


@app.route('/distribution/generate', methods=['POST'])
def generate_distribution():
    try:
        data = _payload()
        num_classes = int(data.get('num_classes') or app.config['DEFAULT_CLASS_COUNT'])
        academic_year = _academic_year(data)

        unassigned = [dict(c) for c in get_unassigned_candidates(academic_year)]
        distribution = class_division.generate_class_distribution(unassigned, num_classes)

        history = DistributionHistory(distribution)
        app.config['DRAFT_HISTORY'] = history

        return _draft_response(history, f'Generated a division into {len(distribution)} classes')

    except (DivisionError, ValueError) as e:
        return _error(str(e))
    except Exception as e:
        logging.error(f"Error generating distribution: {str(e)}")
        return _error(f'Error generating class division: {str(e)}', 500)


@app.route('/distribution')
def get_distribution():
    history = _draft_history()
    if history is None:
        return _error('No class division available. Please generate one first.', 404)
    return _draft_response(history, 'Current draft')


@app.route('/distribution/candidates')
def get_distribution_candidates():
    """Flat list of placed candidates for the swap picker"""
    history = _draft_history()
    if history is None:
        return _error('No class division available. Please generate one first.', 404)
    return jsonify(list_assigned_candidates(history.current))


def _edit_draft(edit, message):
    history = _draft_history()
    if history is None:
        return _error('No class division available. Please generate one first.', 404)
    try:
        data = _payload()
        current = history.current
        updated = edit(current, data)
        if updated is not current:
            history.push(updated)
        return _draft_response(history, message(data))
    except (DivisionError, ValueError) as e:
        return _error(str(e))
    except Exception as e:
        logging.error(f"Error editing distribution: {str(e)}")
        return _error(f'Error editing class division: {str(e)}', 500)


@app.route('/distribution/move', methods=['POST'])
def move_in_distribution():
    return _edit_draft(
        lambda dist, data: move_candidate(
            dist, _int_field(data, 'candidate_id'), data.get('from_class'), data.get('to_class')
        ),
        lambda data: f"Candidate moved to {data.get('to_class')}",
    )


@app.route('/distribution/remove', methods=['POST'])
def remove_from_distribution():
    return _edit_draft(
        lambda dist, data: remove_candidate(dist, _int_field(data, 'candidate_id'), data.get('from_class')),
        lambda data: f"Candidate removed from {data.get('from_class')}",
    )


@app.route('/distribution/add', methods=['POST'])
def add_to_distribution():
    def edit(dist, data):
        row = get_candidate(_int_field(data, 'candidate_id'))
        if row is None or row['status'] != STATUS_ACCEPTED or row['is_transferred']:
            raise ValueError('Candidate not found or not eligible for class division')
        if row['class_name'] is not None:
            raise ValueError(f"Candidate already has a saved class ({row['class_name']}), reset it first")
        return add_candidate(dist, dict(row), data.get('to_class'))

    return _edit_draft(edit, lambda data: f"Candidate added to {data.get('to_class')}")


@app.route('/distribution/swap', methods=['POST'])
def swap_in_distribution():
    return _edit_draft(
        lambda dist, data: swap_candidates(
            dist,
            _int_field(data, 'first_id'), data.get('first_class'),
            _int_field(data, 'second_id'), data.get('second_class'),
        ),
        lambda data: f"Swapped candidates between {data.get('first_class')} and {data.get('second_class')}",
    )


@app.route('/distribution/undo', methods=['POST'])
def undo_distribution():
    history = _draft_history()
    if history is None:
        return _error('No class division available. Please generate one first.', 404)
    if history.undo() is None:
        return _error('Nothing to undo')
    return _draft_response(history, 'Undo successful')


@app.route('/distribution/redo', methods=['POST'])
def redo_distribution():
    history = _draft_history()
    if history is None:
        return _error('No class division available. Please generate one first.', 404)
    if history.redo() is None:
        return _error('Nothing to redo')
    return _draft_response(history, 'Redo successful')


@app.route('/distribution/balance')
def distribution_balance():
    history = _draft_history()
    if history is None:
        return _error('No class division available. Please generate one first.', 404)
    distribution = history.current
    return jsonify({
        'unbalanced': class_division.check_class_balance(distribution),
        'violations': class_division.validate_distribution(distribution),
    })


@app.route('/distribution/save', methods=['POST'])
def save_distribution():
    history = _draft_history()
    if history is None:
        return _error('No class division available. Please generate one first.', 404)
    try:
        academic_year = _academic_year(_payload())
        distribution = history.current

        violations = class_division.validate_distribution(distribution)
        if violations:
            return _error('; '.join(violations))

        result, assignments = commit_distribution(distribution, academic_year, class_division)

        # The draft is numbered now, further edits must start from a new generation
        app.config.pop('DRAFT_HISTORY', None)
        app.config['LAST_COMMIT'] = {'result': result, 'assignments': assignments}

        if result.ok:
            message = f'Saved the class division for {result.success_count} candidates'
        else:
            message = (f'Saved {result.success_count} candidates, '
                       f'{result.failure_count} failed. Retry the failed ones.')
        return jsonify({'success': result.ok, 'message': message, **result.to_dict()}), \
            200 if result.ok else 207

    except DivisionError as e:
        return _error(str(e))
    except Exception as e:
        logging.error(f"Error saving distribution: {str(e)}")
        return _error(f'Error saving class division: {str(e)}', 500)


@app.route('/distribution/retry', methods=['POST'])
def retry_save():
    last_commit = app.config.get('LAST_COMMIT')
    if not last_commit or last_commit['result'].ok:
        return _error('There are no failed assignments to retry')

    try:
        result = retry_failed(last_commit['result'], last_commit['assignments'])
        app.config['LAST_COMMIT'] = {'result': result, 'assignments': last_commit['assignments']}
        message = f'Retried: {result.success_count} saved, {result.failure_count} still failing'
        return jsonify({'success': result.ok, 'message': message, **result.to_dict()}), \
            200 if result.ok else 207
    except Exception as e:
        logging.error(f"Error retrying save: {str(e)}")
        return _error(f'Error retrying save: {str(e)}', 500)


@app.route('/saved_classes')
def saved_classes():
    distribution = load_saved_distribution()
    return jsonify({
        'distribution': distribution,
        'stats': {name: class_division.get_class_stats(students)
                  for name, students in distribution.items()},
    })


@app.route('/saved_classes/move', methods=['POST'])
def move_saved_candidate():
    try:
        data = _payload()
        candidate_id = _int_field(data, 'candidate_id')
        to_class = (data.get('to_class') or '').strip()
        if not to_class:
            return _error("'to_class' is required")

        if not update_class_assignment(candidate_id, to_class):
            return _error('Could not update the class of this candidate')
        return jsonify({'success': True, 'message': f'Candidate moved to {to_class}'})

    except ValueError as e:
        return _error(str(e))
    except Exception as e:
        logging.error(f"Error moving saved candidate: {str(e)}")
        return _error(f'Error moving candidate: {str(e)}', 500)


@app.route('/reset_classes', methods=['POST'])
def reset_classes():
    try:
        result = reset_class_assignments()
        if result.total == 0:
            return _error('There is no saved class division to reset')
        message = f'Reset {result.success_count} candidates'
        return jsonify({'success': result.ok, 'message': message, **result.to_dict()}), \
            200 if result.ok else 207
    except Exception as e:
        logging.error(f"Error resetting classes: {str(e)}")
        return _error(f'Error resetting classes: {str(e)}', 500)


@app.route('/transfer_students', methods=['POST'])
def transfer_students():
    try:
        academic_year = _academic_year(_payload())
        result = transfer_to_roster(academic_year)
        if result.total == 0:
            return _error('There are no candidates with a class to transfer')

        if result.ok:
            message = f'Transferred {result.success_count} candidates to the student roster'
        else:
            message = f'Transferred {result.success_count} candidates, {result.failure_count} failed'
        return jsonify({'success': result.ok, 'message': message, **result.to_dict()}), \
            200 if result.ok else 207

    except DivisionError as e:
        return _error(str(e))
    except Exception as e:
        logging.error(f"Error transferring students: {str(e)}")
        return _error(f'Error transferring students: {str(e)}', 500)


def _send_export(filepath, error_message):
    if filepath and os.path.exists(filepath):
        return send_file(os.path.abspath(filepath), as_attachment=True,
                         download_name=os.path.basename(filepath))
    return _error(error_message, 500)


@app.route('/export/distribution')
def export_distribution():
    history = _draft_history()
    if history is None:
        return _error('No class division available. Please generate one first.', 404)
    try:
        academic_year = _academic_year(request.args)
        start = next_identifier_ordinal(academic_year, class_division)
        numbered = class_division.apply_identifiers(history.current, academic_year, start)
        filepath = excel_handler.export_class_division(numbered, academic_year)
        return _send_export(filepath, 'Error generating Excel file')
    except DivisionError as e:
        return _error(str(e))


@app.route('/export/saved_classes')
def export_saved_classes():
    distribution = load_saved_distribution()
    if not distribution:
        return _error('There are no saved classes to export')
    try:
        academic_year = _academic_year(request.args)
    except DivisionError as e:
        return _error(str(e))
    filepath = excel_handler.export_class_division(distribution, academic_year)
    return _send_export(filepath, 'Error generating Excel file')


@app.route('/export/candidates')
def export_candidates():
    candidates = [dict(c) for c in get_all_candidates()]
    if not candidates:
        return _error('No candidate data to export')
    try:
        academic_year = _academic_year(request.args)
    except DivisionError as e:
        return _error(str(e))
    filepath = excel_handler.export_all_candidates(candidates, academic_year)
    return _send_export(filepath, 'Error exporting candidates')


@app.route('/clear_data', methods=['POST'])
def clear_data():
    data_type = _payload().get('data_type')

    if data_type == 'draft':
        app.config.pop('DRAFT_HISTORY', None)
        app.config.pop('LAST_COMMIT', None)
        message = 'Draft class division cleared'
    elif data_type == 'candidates':
        delete_all_candidates()
        message = 'Candidate data cleared'
    elif data_type == 'all':
        app.config.pop('DRAFT_HISTORY', None)
        app.config.pop('LAST_COMMIT', None)
        delete_all_candidates()
        message = 'All data cleared'
    else:
        return _error('Unknown data type')

    return jsonify({'success': True, 'message': message})


if __name__ == '__main__':
    app.run(host='0.0.0.0', port=5000, debug=True)
