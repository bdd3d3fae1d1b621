import os

from dotenv import load_dotenv
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

load_dotenv()

from backend.errors import ScheduleError
from background_jobs import scheduler_running, start_scheduler
from models import db
from services import (
    assignment_routes,
    calendar_routes,
    group_routes,
    lecture_routes,
    quiz_routes,
)
from services.validation_service import parse_bool, parse_int

app = Flask(__name__)
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///campus.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
app.config['PERMANENT_SESSION_LIFETIME'] = 365 * 24 * 60 * 60  # 1 year in seconds
app.config['API_SHARED_KEY'] = os.environ.get('API_SHARED_KEY')  # Optional shared key for API callers
app.config['DEFAULT_TIMEZONE'] = os.environ.get('DEFAULT_TIMEZONE', 'UTC')
app.config['ENABLE_STATUS_SWEEPS'] = parse_bool(os.environ.get('ENABLE_STATUS_SWEEPS'), True)
app.config['STATUS_SWEEP_MINUTES'] = parse_int(os.environ.get('STATUS_SWEEP_MINUTES'), 1)
app.config['LECTURE_CONFLICT_HORIZON_WEEKS'] = parse_int(os.environ.get('LECTURE_CONFLICT_HORIZON_WEEKS'), 26)
app.config['TRANSACTION_MAX_RETRIES'] = parse_int(os.environ.get('TRANSACTION_MAX_RETRIES'), 3)
app.config['ADMIN_USERNAME'] = os.environ.get('ADMIN_USERNAME')

db.init_app(app)

with app.app_context():
    db.create_all()


ROUTES = [
    # Calendar
    ('/api/calendar-events/my-schedule', calendar_routes.my_schedule, ['GET']),
    ('/api/calendar-events/week', calendar_routes.week_schedule, ['GET']),
    ('/api/calendar-events/group/<int:group_id>', calendar_routes.group_events, ['GET']),
    ('/api/calendar-events/group/<int:group_id>/availability', calendar_routes.group_availability, ['GET']),
    ('/api/calendar-events', calendar_routes.create_event, ['POST']),
    ('/api/calendar-events/<int:event_id>', calendar_routes.delete_event, ['DELETE']),
    # Lectures
    ('/api/lectures', lecture_routes.create_lecture, ['POST']),
    ('/api/lectures/<int:lecture_id>', lecture_routes.update_lecture, ['PUT']),
    ('/api/lectures/<int:lecture_id>', lecture_routes.delete_lecture, ['DELETE']),
    ('/api/lectures/group/<int:group_id>', lecture_routes.group_lectures, ['GET']),
    # Groups
    ('/api/groups', group_routes.create_group, ['POST']),
    ('/api/groups', group_routes.list_groups, ['GET']),
    ('/api/groups/my-groups', group_routes.my_groups, ['GET']),
    # Assignments
    ('/api/assignments', assignment_routes.create_assignment, ['POST']),
    ('/api/assignments/template/<int:template_id>', assignment_routes.update_template, ['PUT']),
    ('/api/assignments/template/<int:template_id>', assignment_routes.delete_template, ['DELETE']),
    ('/api/assignments/student', assignment_routes.student_assignments, ['GET']),
    ('/api/assignments/teacher/<int:group_id>', assignment_routes.group_assignments, ['GET']),
    ('/api/assignments/student/<int:assignment_id>/submit', assignment_routes.submit_assignment, ['POST']),
    ('/api/assignments/unsubmit/<int:assignment_id>', assignment_routes.unsubmit_assignment, ['PUT']),
    ('/api/assignments/grade/<int:assignment_id>', assignment_routes.grade_assignment, ['PUT']),
    ('/api/assignments/requests', assignment_routes.create_assignment_request, ['POST']),
    ('/api/assignments/requests', assignment_routes.list_assignment_requests, ['GET']),
    ('/api/assignments/requests/<int:request_id>', assignment_routes.review_assignment_request, ['PUT']),
    # Quizzes
    ('/api/quizzes', quiz_routes.create_quiz, ['POST']),
    ('/api/quizzes/template/<int:template_id>', quiz_routes.update_template, ['PUT']),
    ('/api/quizzes/template/<int:template_id>', quiz_routes.delete_template, ['DELETE']),
    ('/api/quizzes/student', quiz_routes.student_quizzes, ['GET']),
    ('/api/quizzes/teacher/<int:group_id>', quiz_routes.group_quizzes, ['GET']),
    ('/api/quizzes/<int:quiz_id>/start', quiz_routes.start_quiz, ['POST']),
    ('/api/quizzes/attempt/<int:attempt_id>/answer', quiz_routes.save_answer, ['POST']),
    ('/api/quizzes/attempt/<int:attempt_id>/submit', quiz_routes.submit_attempt, ['POST']),
    ('/api/quizzes/attempt/<int:attempt_id>/results', quiz_routes.attempt_results, ['GET']),
    ('/api/quizzes/grade/<int:student_quiz_id>', quiz_routes.grade_quiz, ['PUT']),
    ('/api/quizzes/requests', quiz_routes.create_quiz_request, ['POST']),
    ('/api/quizzes/requests', quiz_routes.list_quiz_requests, ['GET']),
    ('/api/quizzes/requests/<int:request_id>', quiz_routes.review_quiz_request, ['PUT']),
]

for rule, view, methods in ROUTES:
    app.add_url_rule(rule, endpoint=f"{view.__module__.rsplit('.', 1)[-1]}.{view.__name__}", view_func=view, methods=methods)


@app.errorhandler(ScheduleError)
def handle_schedule_error(error):
    if error.status_code >= 500:
        app.logger.error(f"{type(error).__name__}: {error.message}")
    return jsonify(error.to_dict()), error.status_code


@app.errorhandler(HTTPException)
def handle_http_error(error):
    return jsonify({'success': False, 'message': error.description}), error.code


@app.errorhandler(Exception)
def handle_unexpected_error(error):
    app.logger.error(f"Unhandled error: {error}", exc_info=error)
    db.session.rollback()
    return jsonify({'success': False, 'message': 'Internal server error'}), 500


@app.route('/health')
def health():
    return jsonify({'success': True, 'data': {'status': 'ok', 'scheduler_running': scheduler_running()}})


_jobs_bootstrapped = False


@app.before_request
def _bootstrap_background_jobs():
    global _jobs_bootstrapped
    if _jobs_bootstrapped:
        return
    start_scheduler(app)
    _jobs_bootstrapped = True


if parse_bool(os.environ.get('BOOTSTRAP_JOBS_ON_IMPORT'), True):
    start_scheduler(app)
    _jobs_bootstrapped = True


if __name__ == '__main__':
    app.run(host='0.0.0.0', debug=True)
