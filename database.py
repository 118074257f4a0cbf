import sqlite3
from datetime import datetime
from flask import g, current_app

from models import STATUS_ACCEPTED


def get_db():
    """Get a database connection"""
    if 'db' not in g:
        g.db = sqlite3.connect(current_app.config['DATABASE'])
        g.db.row_factory = sqlite3.Row
    return g.db


def close_db(e=None):
    """Close the database connection"""
    db = g.pop('db', None)
    if db is not None:
        db.close()


def init_db():
    """Initialize the database with required tables"""
    db = get_db()

    # Admission candidates (new-student registrations)
    db.execute("""
        CREATE TABLE IF NOT EXISTS candidates (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            registration_number TEXT UNIQUE,
            full_name TEXT NOT NULL,
            nisn TEXT,
            gender TEXT NOT NULL,
            birth_place TEXT,
            birth_date TEXT,
            origin_school TEXT,
            father_name TEXT,
            mother_name TEXT,
            parent_phone TEXT,
            address TEXT,
            academic_year TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'accepted',
            class_name TEXT,
            nis TEXT UNIQUE,
            is_transferred INTEGER NOT NULL DEFAULT 0,
            transferred_at TEXT,
            registered_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT
        )
    """)

    # Permanent student roster
    db.execute("""
        CREATE TABLE IF NOT EXISTS students (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            source_candidate_id INTEGER UNIQUE NOT NULL,
            full_name TEXT NOT NULL,
            nis TEXT NOT NULL,
            class_name TEXT NOT NULL,
            academic_year TEXT NOT NULL,
            gender TEXT NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (source_candidate_id) REFERENCES candidates(id)
        )
    """)

    db.commit()


def query_db(query, args=(), one=False):
    """Execute a query and return results"""
    db = get_db()
    cur = db.execute(query, args)
    rv = cur.fetchall()
    cur.close()
    return (rv[0] if rv else None) if one else rv


def execute_db(query, args=()):
    """Execute a query that doesn't return results, returning the affected row count"""
    db = get_db()
    cur = db.execute(query, args)
    rowcount = cur.rowcount
    db.commit()
    cur.close()
    return rowcount


def now_iso():
    return datetime.now().isoformat(timespec='seconds')


# Candidate operations
def get_all_candidates():
    return query_db("SELECT * FROM candidates ORDER BY registered_at DESC, id DESC")


def get_candidate(candidate_id):
    return query_db("SELECT * FROM candidates WHERE id = ?", [candidate_id], one=True)


def get_unassigned_candidates(academic_year=None):
    query = """SELECT * FROM candidates
        WHERE status = ? AND class_name IS NULL AND is_transferred = 0"""
    args = [STATUS_ACCEPTED]
    if academic_year:
        query += " AND academic_year = ?"
        args.append(academic_year)
    return query_db(query + " ORDER BY id", args)


def get_assigned_candidates():
    """Accepted candidates with a saved class that are not in the roster yet"""
    return query_db(
        """SELECT * FROM candidates
        WHERE status = ? AND class_name IS NOT NULL AND is_transferred = 0
        ORDER BY class_name, nis, id""",
        [STATUS_ACCEPTED]
    )


def get_last_registration_number(prefix):
    row = query_db(
        """SELECT registration_number FROM candidates
        WHERE registration_number LIKE ? ORDER BY registration_number DESC LIMIT 1""",
        [f"{prefix}%"], one=True
    )
    return row['registration_number'] if row else None


def next_registration_number(academic_year):
    """Next PMB number for the year, e.g. PMB20252026007"""
    prefix = f"PMB{academic_year.replace('/', '')}"
    last = get_last_registration_number(prefix)
    next_number = 1
    if last:
        try:
            next_number = int(last[-3:]) + 1
        except ValueError:
            next_number = 1
    return f"{prefix}{str(next_number).zfill(3)}"


def add_candidate(candidate, academic_year):
    """Insert a candidate and return its new id, or None if the registration number is taken"""
    registration_number = candidate.get('registration_number') or next_registration_number(academic_year)
    try:
        cur = get_db().execute(
            """INSERT INTO candidates (registration_number, full_name, nisn, gender, birth_place,
            birth_date, origin_school, father_name, mother_name, parent_phone, address,
            academic_year, status, registered_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                registration_number,
                candidate['full_name'],
                candidate.get('nisn'),
                candidate['gender'],
                candidate.get('birth_place'),
                candidate.get('birth_date'),
                candidate.get('origin_school'),
                candidate.get('father_name'),
                candidate.get('mother_name'),
                candidate.get('parent_phone'),
                candidate.get('address'),
                academic_year,
                candidate.get('status') or STATUS_ACCEPTED,
                now_iso(),
            )
        )
        candidate_id = cur.lastrowid
        get_db().commit()
        cur.close()
        return candidate_id
    except sqlite3.IntegrityError:
        get_db().rollback()
        return None


EDITABLE_CANDIDATE_FIELDS = (
    'full_name', 'nisn', 'gender', 'birth_place', 'birth_date', 'origin_school',
    'father_name', 'mother_name', 'parent_phone', 'address', 'status',
)


def update_candidate(candidate_id, changes):
    """Update registration details of a candidate still in intake, returning the row count"""
    fields = [name for name in EDITABLE_CANDIDATE_FIELDS if name in changes]
    if not fields:
        return 0
    assignments = ", ".join(f"{name} = ?" for name in fields)
    args = [changes[name] for name in fields] + [now_iso(), candidate_id]
    return execute_db(
        f"UPDATE candidates SET {assignments}, updated_at = ? WHERE id = ? AND is_transferred = 0",
        args
    )


def delete_candidate(candidate_id):
    return execute_db("DELETE FROM candidates WHERE id = ? AND is_transferred = 0", (candidate_id,))


def get_highest_nis(prefix):
    """Highest NIS already handed out under a prefix such as '25.26.07', or None"""
    row = query_db(
        """SELECT MAX(nis) AS nis FROM (
            SELECT nis FROM candidates WHERE nis LIKE ?
            UNION ALL
            SELECT nis FROM students WHERE nis LIKE ?
        )""",
        [f"{prefix}.%", f"{prefix}.%"], one=True
    )
    return row['nis'] if row else None


def set_candidate_assignment(candidate_id, class_name, nis):
    return execute_db(
        "UPDATE candidates SET class_name = ?, nis = ?, updated_at = ? WHERE id = ?",
        (class_name, nis, now_iso(), candidate_id)
    )


def set_candidate_class(candidate_id, class_name):
    return execute_db(
        "UPDATE candidates SET class_name = ?, updated_at = ? WHERE id = ?",
        (class_name, now_iso(), candidate_id)
    )


def clear_candidate_assignment(candidate_id):
    return execute_db(
        "UPDATE candidates SET class_name = NULL, nis = NULL, updated_at = ? WHERE id = ?",
        (now_iso(), candidate_id)
    )


def delete_all_candidates():
    execute_db("DELETE FROM candidates WHERE is_transferred = 0")


# Roster operations
def get_all_roster_students():
    return query_db("SELECT * FROM students ORDER BY class_name, nis")
